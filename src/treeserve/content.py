# Content responder: streams regular files with caching headers.
# Created: 2026-10-17
#
# Range handling (206/416) is Starlette's FileResponse; conditional GETs
# (304) follow the same rules as Starlette's StaticFiles.

from __future__ import annotations

import asyncio
import logging
import os
import stat
from email.utils import parsedate_to_datetime
from pathlib import Path

from fastapi import HTTPException, Request
from fastapi.responses import FileResponse, PlainTextResponse, Response
from starlette.datastructures import Headers
from starlette.staticfiles import NotModifiedResponse
from starlette.types import Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


class DeadlineFileResponse(FileResponse):
    """FileResponse whose whole transfer is bounded by *transfer_timeout*.

    A deadline that fires before the headers go out is answered with 408.
    Mid-transfer the send is abandoned instead; the file is closed by
    FileResponse's own context manager and the server drops the connection.
    """

    def __init__(self, path: str | os.PathLike, *, transfer_timeout: float, **kwargs):
        super().__init__(path, **kwargs)
        self.transfer_timeout = transfer_timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        started = False

        async def tracking_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            async with asyncio.timeout(self.transfer_timeout):
                await super().__call__(scope, receive, tracking_send)
        except TimeoutError:
            logger.warning(
                "Transfer deadline (%.0fs) exceeded for %s", self.transfer_timeout, scope.get("path")
            )
            if not started:
                await PlainTextResponse("Request timeout", status_code=408)(scope, receive, send)


def _http_date(value: str):
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def is_not_modified(response_headers: Headers, request_headers: Headers) -> bool:
    """Decide whether a conditional GET can be answered with 304.

    ``If-None-Match`` wins when present; ``If-Modified-Since`` is consulted
    only without it, and only at one-second resolution.
    """
    if_none_match = request_headers.get("if-none-match")
    if if_none_match is not None:
        etag = response_headers.get("etag")
        if etag is None:
            return False
        tags = [tag.strip().removeprefix("W/") for tag in if_none_match.split(",")]
        return "*" in tags or etag.removeprefix("W/") in tags

    if_modified_since = request_headers.get("if-modified-since")
    last_modified = response_headers.get("last-modified")
    if if_modified_since is None or last_modified is None:
        return False
    since = _http_date(if_modified_since)
    modified = _http_date(last_modified)
    if since is None or modified is None:
        return False
    return modified <= since


def _open_and_stat(path: Path) -> os.stat_result:
    with open(path, "rb") as f:
        return os.fstat(f.fileno())


async def serve_file(path: Path, request: Request, *, transfer_timeout: float = 60.0) -> Response:
    """Build the response for a regular file at *path*.

    Raises:
        HTTPException: 400 for a directory, 403 when the file cannot be
            opened for permission reasons, 500 for any other I/O failure.
    """
    try:
        st = await asyncio.to_thread(_open_and_stat, path)
    except IsADirectoryError:
        raise HTTPException(status_code=400, detail="Cannot serve directory as file") from None
    except PermissionError as e:
        logger.warning("Failed to open file %s: %s", path, e)
        raise HTTPException(status_code=403, detail="Access denied") from None
    except OSError as e:
        logger.error("Failed to open file %s: %s", path, e)
        raise HTTPException(status_code=500, detail="Failed to open file") from None

    if stat.S_ISDIR(st.st_mode):
        raise HTTPException(status_code=400, detail="Cannot serve directory as file")

    response = DeadlineFileResponse(
        path,
        stat_result=st,
        headers={"Accept-Ranges": "bytes"},
        transfer_timeout=transfer_timeout,
    )
    if is_not_modified(response.headers, request.headers):
        return NotModifiedResponse(response.headers)
    return response
