"""
Custom Exception Classes for hlash

Hierarchical exception structure for error handling across services.
Subscription errors are absorbed by the update scheduler; driver errors
surface to the CLI caller.
"""


class HlashError(Exception):
    """Base exception for all hlash errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(HlashError):
    """Startup configuration errors (no safe running state without them)"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class NetworkError(HlashError):
    """Transport or timeout failure while fetching the subscription"""

    def __init__(self, message: str, url: str | None = None, recoverable: bool = True):
        self.url = url
        super().__init__(f"Network Error: {message}", recoverable)


class HTTPStatusError(HlashError):
    """Subscription endpoint answered with a non-200 status"""

    def __init__(self, status_code: int, reason: str = "", url: str | None = None):
        self.status_code = status_code
        self.url = url
        super().__init__(
            f"status error: {status_code} {reason}".rstrip(),
            recoverable=status_code > 404,
        )

    @property
    def retryable(self) -> bool:
        return self.recoverable


class ValidationError(HlashError):
    """Config artifact failed to parse or validate"""

    def __init__(self, path: str, errors: list[str]):
        self.path = path
        self.errors = errors
        super().__init__(f"Validation Error ({path}): {'; '.join(errors)}", recoverable=True)


class FilesystemError(HlashError):
    """Rename, write or mkdir failure"""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"Filesystem Error: {message}", recoverable=True)


class OperationCancelled(HlashError):
    """Shared stop event fired while an operation was in progress"""

    def __init__(self, operation: str = "operation"):
        self.operation = operation
        super().__init__(f"{operation} cancelled", recoverable=True)


class ReloadError(HlashError):
    """Reload request could not be delivered to the engine"""

    def __init__(self, message: str):
        super().__init__(f"Reload Error: {message}", recoverable=True)


class DriverError(HlashError):
    """Service manager call failed"""

    def __init__(self, message: str, action: str | None = None):
        self.action = action
        super().__init__(message, recoverable=False)


class ServiceNotInstalledError(DriverError):
    """Service is not registered with the service manager"""

    def __init__(self, name: str = ""):
        self.name = name
        label = f"service {name}" if name else "service"
        super().__init__(f"{label} is not installed")


class NoServiceSystemError(DriverError):
    """Platform has no recognized service manager"""

    def __init__(self, platform: str = ""):
        self.platform = platform
        super().__init__(f"no service system detected {platform}".rstrip())


class UnknownActionError(HlashError):
    """Unrecognized control verb"""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"unknown control action: {action}", recoverable=False)


class EngineError(HlashError):
    """Proxy engine process or controller API failure"""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(f"Engine Error: {message}", recoverable)
