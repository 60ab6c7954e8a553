"""
TunerBridge Main Application

FastAPI application entry point presenting the DVR as an HDHomeRun tuner.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from tunerbridge import __version__
from tunerbridge.config import TunerBridgeConfig, get_config, load_config
from tunerbridge.context import ServiceContext
from tunerbridge.exceptions import SessionError
from tunerbridge.hdhomerun.api import hdhomerun_router
from tunerbridge.utils.logging_setup import parse_size, setup_logging
from tunerbridge.utils.prompts import Prompter

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[TunerBridgeConfig] = None,
    refresh_guide: bool = True,
    context: Optional[ServiceContext] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Configuration; the global configuration when omitted
        refresh_guide: Refresh the guide as soon as the server starts
        context: Prebuilt service context (tests inject one with mock transports)

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"Starting TunerBridge v{__version__}")

        services = context or ServiceContext.build(config or get_config())
        app.state.context = services
        try:
            await services.start(refresh_guide=refresh_guide)
            yield
        finally:
            logger.info("Shutting down TunerBridge")
            await services.close()

    app = FastAPI(
        title="TunerBridge",
        description="HDHomeRun emulation for a cloud-managed OTA DVR",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.include_router(hdhomerun_router)
    return app


async def _bootstrap_session(config: TunerBridgeConfig, forget: bool) -> None:
    """Make sure a usable session exists before the server starts."""
    services = ServiceContext.build(config, prompter=Prompter())
    try:
        if forget:
            services.session.forget()
        await services.session.ensure_session(interactive=True)
    finally:
        await services.close()


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tunerbridge",
        description="Serve a cloud-managed OTA DVR as an HDHomeRun network tuner",
    )
    parser.add_argument("--config", "-c", help="Path to config.yaml")
    parser.add_argument(
        "--creds",
        action="store_true",
        help="Delete saved credentials and log in again",
    )
    parser.add_argument(
        "--no-guide",
        action="store_true",
        help="Skip the guide refresh at startup",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for running the server.

    Called when running `python -m tunerbridge` or via the console script.
    """
    import uvicorn

    args = _parse_args(argv)
    config = load_config(args.config)

    setup_logging(
        log_level=config.logging.level,
        log_file=config.logging.file,
        max_bytes=parse_size(config.logging.max_size),
        backup_count=config.logging.backup_count,
        log_format=config.logging.format,
    )

    logger.info(f"Starting TunerBridge v{__version__}")

    try:
        asyncio.run(_bootstrap_session(config, forget=args.creds))
    except SessionError as e:
        logger.error(e.message)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(1)

    uvicorn.run(
        create_app(config, refresh_guide=not args.no_guide),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
