"""Error types raised by the bootstrap layer."""


class WeblaunchError(Exception):
    """Base class for every error raised by weblaunch."""


class ConfigError(WeblaunchError):
    """Raised when a server configuration lacks a required field."""


class TemplateCompileError(WeblaunchError):
    """Raised when the template set cannot be compiled at startup."""


class ListenBindError(WeblaunchError):
    """Raised when the listening socket cannot be bound."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"cannot listen on {host}:{port}: {reason}")
        self.host = host
        self.port = port


class RenderError(WeblaunchError):
    """Raised when a template fails to render."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"failed to render template {name!r}: {reason}")
        self.name = name


class TemplateNotFoundError(RenderError):
    """Raised when a template name is missing from the compiled registry."""

    def __init__(self, name: str) -> None:
        super().__init__(name, "no such template")


class ShutdownTimeoutError(WeblaunchError):
    """Describes a graceful shutdown that outlived its deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"shutdown did not complete within {timeout:g}s")
        self.timeout = timeout


class YamlDecodeError(WeblaunchError):
    """Raised when a YAML document cannot be decoded into the target schema."""


class FileOpenError(WeblaunchError):
    """Raised when a configuration file cannot be opened."""
