# Listing renderer: directory enumeration, ordering and HTML rendering.
# Created: 2026-10-17

from __future__ import annotations

import logging
import os
import posixpath
import stat
from datetime import datetime
from pathlib import Path

from fastapi.templating import Jinja2Templates
from jinja2 import TemplateError
from pydantic import BaseModel, computed_field

from treeserve.errors import RenderError

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
LISTING_TEMPLATE = "directory.html"

_SIZE_UNITS = "KMGTPE"
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_size(size: int) -> str:
    """Human-readable size in base-1024 units.

    >>> format_size(1023), format_size(1536)
    ('1023 B', '1.5 KB')
    """
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit and exp < len(_SIZE_UNITS) - 1:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {_SIZE_UNITS[exp]}B"


def parent_path(current_path: str) -> str:
    """One level up from *current_path*, or ``""`` at the root."""
    if current_path in ("", "/"):
        return ""
    parent = posixpath.dirname(current_path.rstrip("/"))
    if not parent.endswith("/"):
        parent += "/"
    return parent


class DirectoryEntryView(BaseModel):
    """A single child of a listed directory."""

    name: str
    size_bytes: int = 0
    modified_at: datetime
    is_dir: bool = False

    @computed_field
    @property
    def human_size(self) -> str:
        return "-" if self.is_dir else format_size(self.size_bytes)

    @computed_field
    @property
    def formatted_time(self) -> str:
        return self.modified_at.strftime(_TIME_FORMAT)


class ListingPage(BaseModel):
    """Everything the listing template needs."""

    title: str
    current_path: str
    parent_path: str = ""
    entries: list[DirectoryEntryView] = []

    @computed_field
    @property
    def base_href(self) -> str:
        return self.current_path if self.current_path.endswith("/") else self.current_path + "/"


def sort_entries(entries: list[DirectoryEntryView]) -> list[DirectoryEntryView]:
    """Directories first, then case-insensitive name order."""
    return sorted(entries, key=lambda e: (not e.is_dir, e.name.lower(), e.name))


def read_entries(directory: str | os.PathLike) -> list[DirectoryEntryView]:
    """Enumerate the direct children of *directory*, unsorted.

    Children whose metadata cannot be read are skipped. Failure to open the
    directory itself propagates as ``OSError``.
    """
    entries: list[DirectoryEntryView] = []
    with os.scandir(directory) as it:
        for item in it:
            try:
                st = item.stat()
            except OSError as e:
                logger.warning("Failed to get info for %s: %s", item.name, e)
                continue
            entries.append(
                DirectoryEntryView(
                    name=item.name,
                    size_bytes=st.st_size,
                    modified_at=datetime.fromtimestamp(st.st_mtime),
                    is_dir=stat.S_ISDIR(st.st_mode),
                )
            )
    return entries


def build_page(directory: str | os.PathLike, request_path: str) -> ListingPage:
    current = request_path or "/"
    return ListingPage(
        title=f"File Server - {current}",
        current_path=current,
        parent_path=parent_path(current),
        entries=sort_entries(read_entries(directory)),
    )


class ListingRenderer:
    """Renders a ListingPage to HTML bytes."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR, template_name: str = LISTING_TEMPLATE):
        self.templates = Jinja2Templates(directory=str(templates_dir))
        self.template_name = template_name

    def render(self, page: ListingPage) -> bytes:
        """Render the whole page in memory.

        Raises:
            RenderError: the template is missing or failed during rendering.
        """
        try:
            template = self.templates.get_template(self.template_name)
            return template.render(page=page).encode("utf-8")
        except TemplateError as e:
            raise RenderError(f"Template execution error: {e}") from e


def render_listing(
    directory: str | os.PathLike, request_path: str, renderer: ListingRenderer
) -> bytes:
    """Enumerate *directory* and render it. Blocking; run off the event loop."""
    return renderer.render(build_page(directory, request_path))
