from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, Sequence
from urllib.parse import unquote, urlparse

import requests
from bs4 import BeautifulSoup

from .logging_utils import debug_log
from .substitution import document_root, parse_document, substitute_tree

APPLY_STATUS = "適用しました"
RESTORE_STATUS = "元に戻しました"
UNSUPPORTED_PAGE_STATUS = "対象外のページです"

STATE_UNMODIFIED = "unmodified"
STATE_SUBSTITUTED = "substituted"

SCRIPTABLE_SCHEMES = frozenset({"http", "https", "file"})


class PageLoadError(RuntimeError):
    """Raised when a page source cannot be read or fetched."""


class TargetNotScriptableError(RuntimeError):
    """Raised when code cannot run against the requested page."""


class ApplyError(RuntimeError):
    """Raised when the dictionary cannot be applied to a page."""


class RestoreError(RuntimeError):
    """Raised when a page cannot be reloaded from its source."""


class PageHost(Protocol):
    async def active_target(self) -> str | None: ...

    async def execute(
        self,
        target_id: str,
        func: Callable[..., Any],
        args: Sequence[object] = (),
    ) -> None: ...

    async def reload(self, target_id: str) -> None: ...


@dataclass(slots=True)
class PageDocument:
    id: str
    origin: str
    source: str | None
    scriptable: bool
    soup: BeautifulSoup | None = field(default=None, repr=False)

    @property
    def title(self) -> str:
        if self.soup is not None and self.soup.title and self.soup.title.string:
            return self.soup.title.string.strip()
        return self.origin


def _origin_scheme(origin: str) -> str:
    parsed = urlparse(origin)
    # Windows drive letters parse as one-letter schemes.
    if len(parsed.scheme) <= 1:
        return "file"
    return parsed.scheme.lower()


def read_page_source(origin: str, *, timeout: float = 30.0) -> str:
    scheme = _origin_scheme(origin)
    if scheme in {"http", "https"}:
        try:
            resp = requests.get(origin, timeout=timeout)
        except requests.RequestException as exc:
            raise PageLoadError(f"Failed to fetch {origin}") from exc
        if resp.status_code != 200:
            raise PageLoadError(f"GET {origin} failed with status {resp.status_code}")
        if not resp.encoding or resp.encoding.lower() == "iso-8859-1":
            resp.encoding = resp.apparent_encoding
        return resp.text
    if scheme == "file":
        parsed = urlparse(origin)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(origin)
        try:
            return path.expanduser().read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PageLoadError(f"Failed to read {path}") from exc
    raise PageLoadError(f"Unsupported page origin: {origin}")


class DocumentHost:
    """
    In-process page host. Each page keeps its original source so a reload
    rebuilds the tree from scratch.
    """

    def __init__(self, *, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._pages: dict[str, PageDocument] = {}
        self._active: str | None = None
        self._lock = threading.Lock()

    def open(self, origin: str, *, source: str | None = None) -> PageDocument:
        origin = origin.strip()
        if not origin:
            raise PageLoadError("Page origin must not be blank.")
        scriptable = _origin_scheme(origin) in SCRIPTABLE_SCHEMES
        if scriptable and source is None:
            source = read_page_source(origin, timeout=self.timeout)
        page = PageDocument(
            id=uuid.uuid4().hex[:12],
            origin=origin,
            source=source if scriptable else None,
            scriptable=scriptable,
        )
        if scriptable and page.source is not None:
            page.soup = parse_document(page.source)
        with self._lock:
            self._pages[page.id] = page
            self._active = page.id
        debug_log(f"opened page {page.id} ({origin}) scriptable={scriptable}")
        return page

    def pages(self) -> list[PageDocument]:
        with self._lock:
            return list(self._pages.values())

    def get(self, target_id: str) -> PageDocument | None:
        with self._lock:
            return self._pages.get(target_id)

    def select(self, target_id: str) -> PageDocument:
        with self._lock:
            page = self._pages.get(target_id)
            if page is None:
                raise KeyError(target_id)
            self._active = target_id
            return page

    def render(self, target_id: str) -> str:
        page = self.get(target_id)
        if page is None:
            raise KeyError(target_id)
        with self._lock:
            if page.soup is None:
                return page.source or ""
            return str(page.soup)

    def _scriptable_page(self, target_id: str) -> PageDocument:
        page = self._pages.get(target_id)
        if page is None:
            raise TargetNotScriptableError(f"No page with id {target_id}")
        if not page.scriptable or page.soup is None:
            raise TargetNotScriptableError(f"Page cannot be scripted: {page.origin}")
        return page

    async def active_target(self) -> str | None:
        with self._lock:
            return self._active

    async def execute(
        self,
        target_id: str,
        func: Callable[..., Any],
        args: Sequence[object] = (),
    ) -> None:
        with self._lock:
            page = self._scriptable_page(target_id)
            func(document_root(page.soup), *args)

    async def reload(self, target_id: str) -> None:
        with self._lock:
            page = self._scriptable_page(target_id)
            page.soup = parse_document(page.source or "")


def _substitute_document(root, mapping: Mapping[str, str]) -> None:
    writes = substitute_tree(root, mapping)
    debug_log(f"substitute_tree wrote {writes} node(s)")


class PageApplier:
    """
    Runs the substitution against a host page, and reloads it to undo.

    ``merged_provider`` is called on every ``apply`` so the page always
    sees the dictionary as it is at call time.
    """

    def __init__(self, host: PageHost, merged_provider: Callable[[], Mapping[str, str]]) -> None:
        self.host = host
        self.merged_provider = merged_provider
        self._states: dict[str, str] = {}

    def state(self, target_id: str) -> str:
        return self._states.get(target_id, STATE_UNMODIFIED)

    async def _resolve_target(self, target_id: str | None, error_cls: type[RuntimeError]) -> str:
        if target_id:
            return target_id
        try:
            active = await self.host.active_target()
        except Exception as exc:
            raise error_cls("Failed to query the active page.") from exc
        if not active:
            raise error_cls("No active page.")
        return active

    async def apply(
        self,
        target_id: str | None = None,
        mapping: Mapping[str, str] | None = None,
    ) -> str:
        target = await self._resolve_target(target_id, ApplyError)
        try:
            current = dict(mapping if mapping is not None else self.merged_provider())
            await self.host.execute(target, _substitute_document, (current,))
        except Exception as exc:
            raise ApplyError(f"Failed to apply dictionary to page {target}: {exc}") from exc
        self._states[target] = STATE_SUBSTITUTED
        return target

    async def restore(self, target_id: str | None = None) -> str:
        target = await self._resolve_target(target_id, RestoreError)
        try:
            await self.host.reload(target)
        except Exception as exc:
            raise RestoreError(f"Failed to reload page {target}: {exc}") from exc
        self._states[target] = STATE_UNMODIFIED
        return target


async def apply_with_status(applier: PageApplier, target_id: str | None = None) -> str:
    try:
        await applier.apply(target_id)
    except ApplyError as exc:
        debug_log(str(exc))
        return UNSUPPORTED_PAGE_STATUS
    return APPLY_STATUS


async def restore_with_status(applier: PageApplier, target_id: str | None = None) -> str:
    try:
        await applier.restore(target_id)
    except RestoreError as exc:
        debug_log(str(exc))
        return UNSUPPORTED_PAGE_STATUS
    return RESTORE_STATUS


__all__ = [
    "APPLY_STATUS",
    "ApplyError",
    "DocumentHost",
    "PageApplier",
    "PageDocument",
    "PageHost",
    "PageLoadError",
    "RESTORE_STATUS",
    "RestoreError",
    "STATE_SUBSTITUTED",
    "STATE_UNMODIFIED",
    "TargetNotScriptableError",
    "UNSUPPORTED_PAGE_STATUS",
    "apply_with_status",
    "read_page_source",
    "restore_with_status",
]
