# Request router: method check, path safety, stat, then listing or file.
# Created: 2026-10-17
#
# A single catch-all route. Filesystem work and audit writes happen on worker
# threads; the former is raced against the configured request deadline.

from __future__ import annotations

import asyncio
import logging
import os
import stat
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, Response

from treeserve.audit import AuditLogger, AuditSeverity
from treeserve.config import ServerConfig
from treeserve.content import serve_file
from treeserve.errors import PathRejected, RenderError, StorageUnavailable
from treeserve.listing import ListingRenderer, render_listing
from treeserve.paths import is_within_root, resolve
from treeserve.storage import check_storage_health

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Files"])

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

LISTING_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def get_config(request: Request) -> ServerConfig:
    return request.app.state.config


def get_audit(request: Request) -> AuditLogger:
    return request.app.state.audit


def get_renderer(request: Request) -> ListingRenderer:
    return request.app.state.renderer


def _stat(path: Path) -> os.stat_result:
    return os.stat(path)


def _client(request: Request) -> str:
    return request.client.host if request.client else ""


@router.api_route("/{request_path:path}", methods=ALL_METHODS, include_in_schema=False)
async def handle(
    request: Request,
    config: ServerConfig = Depends(get_config),
    audit: AuditLogger = Depends(get_audit),
    renderer: ListingRenderer = Depends(get_renderer),
):
    """Serve a directory listing or file content for any path under the root."""
    if request.method != "GET":
        raise HTTPException(status_code=405, detail="Method not allowed", headers={"Allow": "GET"})

    raw_path = request.scope["path"]
    try:
        resolved = resolve(config.root_directory, raw_path)
    except PathRejected as e:
        await asyncio.to_thread(
            audit.log_denied, "path_traversal", raw_path, client=_client(request), reason=e.reason
        )
        raise HTTPException(status_code=403, detail="Access denied") from None

    try:
        async with asyncio.timeout(config.request_timeout):
            return await _dispatch(request, resolved, raw_path, config, audit, renderer)
    except TimeoutError:
        logger.warning("Request deadline (%.0fs) exceeded for %s", config.request_timeout, raw_path)
        raise HTTPException(status_code=408, detail="Request timeout") from None


async def _dispatch(
    request: Request,
    resolved: Path,
    raw_path: str,
    config: ServerConfig,
    audit: AuditLogger,
    renderer: ListingRenderer,
) -> Response:
    if config.check_storage:
        try:
            await asyncio.to_thread(check_storage_health, config.root_directory)
        except StorageUnavailable:
            raise HTTPException(status_code=503, detail="Storage temporarily unavailable") from None

    try:
        st = await asyncio.to_thread(_stat, resolved)
    except (FileNotFoundError, NotADirectoryError):
        raise HTTPException(status_code=404, detail="Not found") from None
    except PermissionError:
        await asyncio.to_thread(
            audit.log_denied,
            "permission_denied",
            raw_path,
            client=_client(request),
            severity=AuditSeverity.WARNING,
        )
        raise HTTPException(status_code=403, detail="Access denied") from None
    except OSError as e:
        logger.error("Stat error for %s: %s", resolved, e)
        raise HTTPException(status_code=500, detail="Internal server error") from None

    real = await asyncio.to_thread(os.path.realpath, resolved)
    if not is_within_root(real, request.app.state.real_root):
        await asyncio.to_thread(audit.log_denied, "symlink_escape", raw_path, client=_client(request))
        raise HTTPException(status_code=403, detail="Access denied")

    if stat.S_ISDIR(st.st_mode):
        return await _serve_directory(request, resolved, raw_path, audit, renderer)
    if stat.S_ISREG(st.st_mode):
        return await serve_file(resolved, request, transfer_timeout=config.transfer_timeout)

    logger.info("Refusing to serve non-regular file: %s", raw_path)
    raise HTTPException(status_code=404, detail="Not found")


async def _serve_directory(
    request: Request,
    resolved: Path,
    raw_path: str,
    audit: AuditLogger,
    renderer: ListingRenderer,
) -> Response:
    try:
        body = await asyncio.to_thread(render_listing, resolved, raw_path, renderer)
    except PermissionError:
        await asyncio.to_thread(
            audit.log_denied,
            "permission_denied",
            raw_path,
            client=_client(request),
            severity=AuditSeverity.WARNING,
        )
        raise HTTPException(status_code=403, detail="Access denied") from None
    except RenderError as e:
        logger.error("%s", e)
        raise HTTPException(status_code=500, detail="Internal server error") from None
    except OSError as e:
        logger.error("Failed to read directory %s: %s", resolved, e)
        raise HTTPException(status_code=500, detail="Failed to read directory") from None

    return HTMLResponse(content=body, headers=LISTING_HEADERS)
