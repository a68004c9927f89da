"""Pydantic configuration for the cloudflared tunnel supervisor."""

import re
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import local_service_url

DEFAULT_CANDIDATE_PATHS = [
    "/usr/local/bin/cloudflared",
    "/opt/homebrew/bin/cloudflared",
    "/usr/bin/cloudflared",
]

INSTALL_COMMAND = "brew install cloudflared"
RELEASES_URL = "https://github.com/cloudflare/cloudflared/releases"

INSTALL_INSTRUCTIONS = f"""To expose your server to the internet, you need to install cloudflared.

Install via Homebrew:
{INSTALL_COMMAND}

Or download from:
{RELEASES_URL}"""


class SupervisorConfig(BaseModel):
    """Settings controlling how cloudflared is located, launched and watched."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    binary_name: str = Field(default="cloudflared", min_length=1, description="Executable name")
    candidate_paths: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CANDIDATE_PATHS),
        description="Absolute paths checked, in order, before the PATH lookup",
    )
    path_lookup_command: str = Field(default="which", min_length=1, description="Command that resolves a name on PATH")
    tunnel_domain: str = Field(default="trycloudflare.com", min_length=3, description="Domain of generated tunnel URLs")
    startup_timeout: float = Field(default=10.0, gt=0, le=300.0, description="Seconds to wait for the public URL")
    read_chunk_size: int = Field(default=4096, ge=1, le=1 << 20, description="Maximum bytes delivered per output chunk")
    terminate_timeout: float = Field(default=5.0, ge=0.1, le=60.0, description="Seconds close() waits for exit")

    @field_validator('binary_name')
    @classmethod
    def validate_binary_name(cls, v: str) -> str:
        """Binary name must be a bare file name"""
        if "/" in v:
            raise ValueError("Binary name must not contain path separators")
        return v

    @field_validator('candidate_paths')
    @classmethod
    def validate_candidate_paths(cls, v: list[str]) -> list[str]:
        """Candidate paths must be absolute"""
        for path in v:
            if not PurePosixPath(path).is_absolute():
                raise ValueError(f"Candidate path must be absolute: {path}")
        return v

    @field_validator('tunnel_domain')
    @classmethod
    def validate_tunnel_domain(cls, v: str) -> str:
        """Domain must look like a DNS name"""
        v = v.lower().strip(".")
        if not re.fullmatch(r"[a-z0-9-]+(\.[a-z0-9-]+)+", v):
            raise ValueError(f"Invalid tunnel domain: {v}")
        return v

    def launch_arguments(self, port: int) -> list[str]:
        """Arguments requesting a quick tunnel to the local ``port``."""
        return ["tunnel", "--url", local_service_url(port)]

    def url_pattern(self) -> re.Pattern[str]:
        """Compiled pattern matching a generated public tunnel URL."""
        return re.compile(rf"https://[a-zA-Z0-9-]+\.{re.escape(self.tunnel_domain)}")
