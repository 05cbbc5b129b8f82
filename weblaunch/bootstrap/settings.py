"""Schema of the launcher's YAML settings file."""

from typing import Optional

from pydantic import BaseModel, Field


class ServerSection(BaseModel):
    """The ``server`` section of a settings file."""

    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    directory: Optional[str] = None
    index_path: Optional[str] = None
    templates_path: Optional[str] = None
    shutdown_timeout: Optional[float] = Field(default=None, gt=0)


class LogSection(BaseModel):
    """The ``log`` section of a settings file."""

    level: Optional[str] = None
    destination: Optional[str] = None


class LaunchSettings(BaseModel):
    """Settings file accepted by ``main.py --config``.

    Example::

        server:
          port: 8080
          directory: ./site
        log:
          level: debug
          destination: logs/server.log
    """

    server: ServerSection = Field(default_factory=ServerSection)
    log: LogSection = Field(default_factory=LogSection)
