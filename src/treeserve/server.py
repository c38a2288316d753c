"""Application factory and listener for ``treeserve``.

``create_app(config)`` builds the ASGI app around one immutable
``ServerConfig``; ``run_server(config)`` binds the listening socket and runs
uvicorn until SIGINT/SIGTERM, draining in-flight requests for
``config.shutdown_grace`` seconds.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
from contextlib import asynccontextmanager

from treeserve.audit import AuditLogger
from treeserve.config import ServerConfig
from treeserve.errors import ConfigError
from treeserve.listing import ListingRenderer
from treeserve.storage import is_mount_point

logger = logging.getLogger(__name__)

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def create_app(config: ServerConfig, renderer: ListingRenderer | None = None):
    """Build the FastAPI application serving ``config.root_directory``."""
    from fastapi import FastAPI, Request
    from fastapi.responses import PlainTextResponse
    from starlette.exceptions import HTTPException as StarletteHTTPException

    from treeserve import __version__
    from treeserve.router import router

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Serving directory: %s", config.root_directory)
        yield
        logger.info("Server stopped gracefully")

    # No docs/openapi routes: every path belongs to the served tree.
    app = FastAPI(
        title="treeserve",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.real_root = os.path.realpath(config.root_directory)
    app.state.renderer = renderer or ListingRenderer()
    app.state.audit = AuditLogger(config.audit_log)

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def plain_text_http_error(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error for %s", request.url.path, exc_info=exc)
        return PlainTextResponse("Internal server error", status_code=500)

    app.include_router(router)
    return app


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket up front so bind failures are config errors.

    Raises:
        ConfigError: the port is in use or needs elevated privileges.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise ConfigError(f"Cannot listen on {host}:{port}: {e.strerror or e}") from e
    sock.set_inheritable(True)
    return sock


def run_server(config: ServerConfig) -> None:
    """Start the server and block until it shuts down.

    SIGINT and SIGTERM both drain in-flight requests and return normally, so
    the process exits 0 after a signal-driven shutdown.
    """
    import uvicorn

    app = create_app(config)
    sock = bind_socket(config.host, config.port)
    try:
        print("\n" + "=" * 50)
        print("TREESERVE FILE SERVER")
        print("=" * 50)
        print(f"\nServing directory: {config.root_directory}")
        if is_mount_point(config.root_directory):
            print(f"Detected mount point at: {config.root_directory}")
        print(f"Listening on: http://localhost:{config.port}\n")

        uv_config = uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_config=None,
            log_level=config.log_level.lower(),
            timeout_graceful_shutdown=int(config.shutdown_grace),
        )
        server = uvicorn.Server(uv_config)

        # uvicorn restores the previous handlers after draining and re-raises
        # the signal it caught; these handlers absorb that second delivery.
        def _request_exit(signum, frame):
            logger.debug("Received signal %s", signal.Signals(signum).name)
            server.should_exit = True

        previous = {sig: signal.signal(sig, _request_exit) for sig in _SHUTDOWN_SIGNALS}
        try:
            server.run(sockets=[sock])
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
    finally:
        sock.close()
