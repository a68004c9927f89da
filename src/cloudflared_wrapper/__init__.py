"""cloudflared wrapper - supervise cloudflared quick tunnels from Python."""

from .config import (
    INSTALL_COMMAND,
    INSTALL_INSTRUCTIONS,
    RELEASES_URL,
    SupervisorConfig,
)
from .dispatch import SerialDispatcher
from .events import EventBus, EventKind, Subscription
from .exceptions import (
    BinaryNotFoundError,
    CloudflaredWrapperError,
    DiscoveryTimeoutError,
    LaunchError,
    ProcessError,
    UnexpectedTerminationError,
)
from .logging import OUTPUT_LOGGER_NAME, get_logger, get_output_logger, setup_logging
from .process import ProcessLauncher, TunnelProcessHandle
from .resolver import ExecutableResolver
from .scanner import OutcomeClaim, decode_chunk, find_tunnel_url
from .supervisor import StartResult, TunnelState, TunnelSupervisor
from .utils import validate_port

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Supervision
    "TunnelSupervisor",
    "StartResult",
    "TunnelState",
    "SupervisorConfig",
    # Building blocks
    "ExecutableResolver",
    "ProcessLauncher",
    "TunnelProcessHandle",
    "SerialDispatcher",
    "OutcomeClaim",
    "decode_chunk",
    "find_tunnel_url",
    # Notifications
    "EventBus",
    "EventKind",
    "Subscription",
    # Install hints
    "INSTALL_COMMAND",
    "INSTALL_INSTRUCTIONS",
    "RELEASES_URL",
    # Exceptions
    "CloudflaredWrapperError",
    "BinaryNotFoundError",
    "ProcessError",
    "LaunchError",
    "DiscoveryTimeoutError",
    "UnexpectedTerminationError",
    # Utilities
    "get_logger",
    "setup_logging",
    "get_output_logger",
    "OUTPUT_LOGGER_NAME",
    "validate_port",
]
