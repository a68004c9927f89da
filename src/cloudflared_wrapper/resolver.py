"""Locating the cloudflared executable."""

import os
import subprocess

from .config import SupervisorConfig
from .exceptions import BinaryNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutableResolver:
    """Finds cloudflared in well-known install locations or on PATH."""

    def __init__(self, config: SupervisorConfig | None = None):
        self.config = config or SupervisorConfig()

    def resolve(self) -> str:
        """Find the cloudflared binary.

        The configured candidate paths are checked in order first; the PATH
        lookup command only runs when none of them exists.

        Returns:
            Path to the cloudflared binary

        Raises:
            BinaryNotFoundError: If binary cannot be found
        """
        for path in self.config.candidate_paths:
            if os.path.exists(path):
                logger.debug("Found binary at well-known path", binary_path=path)
                return path

        path = self._lookup_on_path()
        if path:
            logger.debug("Found binary on PATH", binary_path=path)
            return path

        raise BinaryNotFoundError(
            f"{self.config.binary_name} binary not found in PATH or common locations"
        )

    def _lookup_on_path(self) -> str | None:
        """Ask the system lookup command for the binary's location"""
        command = [self.config.path_lookup_command, self.config.binary_name]
        try:
            result = subprocess.run(
                command, check=False, capture_output=True, text=True
            )
        except OSError as e:
            logger.warning(
                "Failed to locate binary", command=command, error=str(e)
            )
            return None

        if result.returncode != 0:
            return None

        return result.stdout.strip() or None
