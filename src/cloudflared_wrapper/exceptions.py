"""Custom exceptions for the cloudflared wrapper."""


class CloudflaredWrapperError(Exception):
    """Base exception for all cloudflared wrapper errors."""
    pass


class BinaryNotFoundError(CloudflaredWrapperError):
    """Raised when the cloudflared binary cannot be located."""
    pass


class ProcessError(CloudflaredWrapperError):
    """Raised when cloudflared process operations fail."""
    pass


class LaunchError(ProcessError):
    """Raised when the operating system refuses to spawn cloudflared."""
    pass


class DiscoveryTimeoutError(CloudflaredWrapperError):
    """Recorded when no public URL shows up within the startup window."""
    pass


class UnexpectedTerminationError(ProcessError):
    """Recorded when cloudflared exits before reporting a public URL."""

    def __init__(self, returncode: int | None):
        super().__init__(f"cloudflared exited unexpectedly (returncode={returncode})")
        self.returncode = returncode
