"""
Content hosts: where the managed resources actually live.

The engine never looks inside a resource's content. Everything it needs
(element counts, digests for duplicate detection, snapshots, trimming,
viewport metrics, diagnostic notices) goes through the ``ContentHost``
interface, so the same engine can drive a DOM bridge, a terminal UI or the
in-memory host below.
"""

import hashlib
import html
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Literal

from contentsync.updates.errors import ResourceNotFoundError


@dataclass
class Viewport:
    """Scroll metrics of a resource, in host units (pixels, rows...)."""

    offset: float
    extent: float
    window: float

    @property
    def scrollable(self) -> float:
        return self.extent - self.window


@dataclass
class Notice:
    """A diagnostic placeholder the engine asks the host to display."""

    kind: Literal["cleanup", "recreation"]
    title: str
    detail: str


class ContentHost(ABC):
    """
    Access to resource content.

    Methods taking a ``resource_id`` raise ``ResourceNotFoundError`` when the
    resource does not exist, except ``exists`` and ``ensure``.
    """

    @abstractmethod
    def exists(self, resource_id: str) -> bool: ...

    @abstractmethod
    def ensure(self, resource_id: str) -> None:
        """Create an empty resource if it does not exist yet."""

    @abstractmethod
    def resource_ids(self) -> list[str]: ...

    @abstractmethod
    def element_count(self, resource_id: str) -> int: ...

    @abstractmethod
    def child_digests(self, resource_id: str) -> list[str]:
        """One digest per top-level child, equal for identical children."""

    @abstractmethod
    def serialize(self, resource_id: str) -> str: ...

    @abstractmethod
    def read_content(self, resource_id: str) -> Any:
        """Return an opaque copy of the content, suitable for ``write_content``."""

    @abstractmethod
    def write_content(self, resource_id: str, content: Any) -> None: ...

    @abstractmethod
    def trim(self, resource_id: str, max_elements: int) -> int:
        """Keep a prefix of the content holding at most ``max_elements``. Returns the new count."""

    @abstractmethod
    def write_notice(self, resource_id: str, notice: Notice) -> None:
        """Replace the content with a diagnostic notice."""

    @abstractmethod
    def viewport(self, resource_id: str) -> Viewport | None:
        """Current scroll metrics, or None if the resource has no viewport."""

    @abstractmethod
    def set_offset(self, resource_id: str, offset: float) -> None: ...

    def state_marker_count(self, resource_id: str) -> int | None:
        """
        Count elements carrying retained state: inline event handlers, inline
        styles and per-update markers. An element is counted once per kind.

        Hosts that cannot tell return None, which skips the leak check.
        """
        return None


_OPEN_TAG = re.compile(r"<[A-Za-z]")
_TAG = re.compile(r"<[A-Za-z][^>]*>")
_STATE_MARKERS = (
    re.compile(r"\son(?:click|load|error)\s*="),
    re.compile(r"\sstyle\s*="),
    re.compile(r"\sdata-(?:chart|update)-id\s*="),
)


class InMemoryContentHost(ContentHost):
    """
    Resources held as lists of markup fragments.

    Each fragment is one top-level child. Its element count is the number of
    opening tags it contains, and at least 1 (bare text counts as a node).
    The extent of a resource is ``element_count * row_height``.

    Example:
        host = InMemoryContentHost()
        host.append("queries", '<div class="query-item">SELECT 1</div>')
        host.element_count("queries")  # 1
    """

    def __init__(self, row_height: float = 20.0, window: float = 400.0):
        self.row_height = row_height
        self.default_window = window
        self._fragments: dict[str, list[str]] = {}
        self._offsets: dict[str, float] = {}
        self._windows: dict[str, float] = {}

    def _require(self, resource_id: str) -> list[str]:
        try:
            return self._fragments[resource_id]
        except KeyError:
            raise ResourceNotFoundError(f"Container {resource_id} not found", resource_id) from None

    def exists(self, resource_id: str) -> bool:
        return resource_id in self._fragments

    def ensure(self, resource_id: str) -> None:
        if resource_id not in self._fragments:
            self._fragments[resource_id] = []
            self._offsets[resource_id] = 0.0

    def remove(self, resource_id: str) -> None:
        self._fragments.pop(resource_id, None)
        self._offsets.pop(resource_id, None)
        self._windows.pop(resource_id, None)

    def resource_ids(self) -> list[str]:
        return list(self._fragments)

    def content(self, resource_id: str) -> list[str]:
        return list(self._require(resource_id))

    def append(self, resource_id: str, *fragments: str) -> None:
        self.ensure(resource_id)
        self._fragments[resource_id].extend(fragments)

    def replace(self, resource_id: str, fragments: Iterable[str]) -> None:
        self.ensure(resource_id)
        self._fragments[resource_id] = list(fragments)
        self._reflow(resource_id)

    @staticmethod
    def _count(fragment: str) -> int:
        return max(1, len(_OPEN_TAG.findall(fragment)))

    def element_count(self, resource_id: str) -> int:
        return sum(self._count(fragment) for fragment in self._require(resource_id))

    def state_marker_count(self, resource_id: str) -> int | None:
        tags = [tag for fragment in self._require(resource_id) for tag in _TAG.findall(fragment)]
        return sum(1 for marker in _STATE_MARKERS for tag in tags if marker.search(tag))

    def child_digests(self, resource_id: str) -> list[str]:
        return [hashlib.sha1(fragment.strip().encode("utf-8")).hexdigest() for fragment in self._require(resource_id)]

    def serialize(self, resource_id: str) -> str:
        return "".join(self._require(resource_id))

    def read_content(self, resource_id: str) -> tuple[str, ...]:
        return tuple(self._require(resource_id))

    def write_content(self, resource_id: str, content: Any) -> None:
        self._require(resource_id)
        if isinstance(content, str):
            self._fragments[resource_id] = [content]
        else:
            self._fragments[resource_id] = list(content)
        self._reflow(resource_id)

    def trim(self, resource_id: str, max_elements: int) -> int:
        fragments = self._require(resource_id)
        kept: list[str] = []
        total = 0
        for fragment in fragments:
            count = self._count(fragment)
            if total + count > max_elements:
                break
            kept.append(fragment)
            total += count
        self._fragments[resource_id] = kept
        self._reflow(resource_id)
        return total

    def write_notice(self, resource_id: str, notice: Notice) -> None:
        self._require(resource_id)
        css_class = "cleanup-notice" if notice.kind == "cleanup" else "container-recreation-notice"
        markup = (
            f'<div class="{css_class}">'
            f"<strong>{html.escape(notice.title)}</strong>"
            f"<p>{html.escape(notice.detail)}</p>"
            "</div>"
        )
        self._fragments[resource_id] = [markup]
        self._reflow(resource_id)

    def set_window(self, resource_id: str, window: float) -> None:
        self._require(resource_id)
        self._windows[resource_id] = window
        self._reflow(resource_id)

    def viewport(self, resource_id: str) -> Viewport:
        self._require(resource_id)
        return Viewport(
            offset=self._offsets.get(resource_id, 0.0),
            extent=self.element_count(resource_id) * self.row_height,
            window=self._windows.get(resource_id, self.default_window),
        )

    def set_offset(self, resource_id: str, offset: float) -> None:
        """Set the offset as given. Only content changes clamp it."""
        self._require(resource_id)
        self._offsets[resource_id] = offset

    def _reflow(self, resource_id: str) -> None:
        # Shrinking content pulls the offset back into range, as a layout engine would
        viewport = self.viewport(resource_id)
        max_offset = max(viewport.extent - viewport.window, 0.0)
        if viewport.offset > max_offset:
            self._offsets[resource_id] = max_offset
