"""Serve a directory's index page and templates until a shutdown signal arrives."""

import sys
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from weblaunch.bootstrap.config import ServerConfig, merge_launch_settings, parse_cli_args
from weblaunch.bootstrap.logging_setup import AppLogger
from weblaunch.bootstrap.settings import LaunchSettings
from weblaunch.bootstrap.yaml_config import load_config_file
from weblaunch.domain.errors import WeblaunchError
from weblaunch.lifecycle.coordinator import start_server


def register_routes(app: FastAPI) -> None:
    """Add the launcher's own routes next to the index page."""

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"


def main(argv: list[str] | None = None) -> int:
    """Start the server and block until its shutdown has concluded."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    try:
        settings = (
            load_config_file(args.config, LaunchSettings)
            if args.config
            else LaunchSettings()
        )
    except WeblaunchError as error:
        print(f"CONFIG ERROR: {error}", file=sys.stderr)
        return 2
    options = merge_launch_settings(args, settings)

    app_logger = AppLogger()
    log = app_logger.initialize(options.log_level, options.log_destination)
    log.info(
        "Starting HTTP server",
        extra={
            "event": "server_starting",
            "host": options.host,
            "port": options.port,
            "directory": options.directory,
            "log_level": options.log_level,
            "timeout": options.shutdown_timeout,
        },
    )

    config = ServerConfig(
        filesystem=Path(options.directory),
        host=options.host,
        port=options.port,
        log_output=app_logger.handler,
        log_level=options.log_level,
        index_path=options.index_path,
        templates_path=options.templates_path,
        routes_register=register_routes,
        shutdown_timeout=options.shutdown_timeout,
    )
    try:
        completion = start_server(config, logger=app_logger)
    except WeblaunchError as error:
        log.error(
            "Server failed to start: %s",
            error,
            extra={"event": "startup_failed", "error_type": type(error).__name__},
        )
        app_logger.close()
        return 1

    completion.wait()
    app_logger.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
