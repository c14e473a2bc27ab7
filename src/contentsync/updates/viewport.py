import time
from dataclasses import dataclass, field

from contentsync.config.logging_config import get_logger
from contentsync.updates.config import EngineConfig
from contentsync.updates.host import ContentHost

log = get_logger(__name__)

# Restoring after the extent shrinks below or grows beyond these factors is
# done conservatively.
_LARGE_SHRINK = 0.5
_LARGE_GROWTH = 2.0
_CONSERVATIVE_SCALE = 0.8
_CONSERVATIVE_CAP = 0.9


@dataclass
class SavedViewport:
    offset: float
    extent: float
    window: float
    saved_at: float = field(default_factory=time.monotonic)


@dataclass
class _Observation:
    offset: float
    at: float


class ViewportPreserver:
    """
    Keep a consumer's relative read position across content replacements.

    ``save`` stores the offset normalized against the scrollable range and
    ``restore`` re-applies it to the new extent once, then forgets it. If the
    consumer moved the viewport noticeably since the last save or restore
    (more than ``interaction_threshold`` within ``interaction_window``
    seconds), they are treated as actively interacting and ``save`` leaves
    their position alone.
    """

    def __init__(self, host: ContentHost, config: EngineConfig):
        self.host = host
        self.config = config
        self._saved: dict[str, SavedViewport] = {}
        self._observed: dict[str, _Observation] = {}

    def is_actively_interacting(self, resource_id: str) -> bool:
        observed = self._observed.get(resource_id)
        if observed is None or not self.host.exists(resource_id):
            return False
        viewport = self.host.viewport(resource_id)
        if viewport is None:
            return False
        recent = time.monotonic() - observed.at < self.config.interaction_window
        return recent and abs(viewport.offset - observed.offset) > self.config.interaction_threshold

    def save(self, resource_id: str, force: bool = False) -> bool:
        """
        Record the current viewport of a resource.

        Returns:
            True if a position was saved, False if the resource has no
            viewport or the consumer is actively interacting.
        """
        if not self.host.exists(resource_id):
            log.warning(f"Container {resource_id} not found, viewport not saved")
            return False
        if not force and self.is_actively_interacting(resource_id):
            log.debug(f"Consumer is actively scrolling {resource_id}, skipping save")
            return False
        viewport = self.host.viewport(resource_id)
        if viewport is None:
            return False

        saved = SavedViewport(offset=viewport.offset, extent=viewport.extent, window=viewport.window)
        self._saved[resource_id] = saved
        self._observed[resource_id] = _Observation(offset=viewport.offset, at=saved.saved_at)
        log.debug(
            f"Saved viewport for {resource_id}",
            extra={"offset": saved.offset, "extent": saved.extent},
        )
        return True

    def restore(self, resource_id: str) -> bool:
        """Re-apply and discard the saved viewport. Returns False if nothing was saved."""
        saved = self._saved.pop(resource_id, None)
        if saved is None or not self.host.exists(resource_id):
            log.debug(f"No saved viewport for {resource_id}")
            return False
        viewport = self.host.viewport(resource_id)
        if viewport is None:
            return False

        old_scrollable = saved.extent - saved.window
        new_scrollable = viewport.extent - viewport.window

        if old_scrollable <= 0 or new_scrollable <= 0:
            offset = 0.0
        else:
            ratio = saved.offset / old_scrollable
            change = viewport.extent / saved.extent
            if change < _LARGE_SHRINK or change > _LARGE_GROWTH:
                log.debug(f"Extent of {resource_id} changed {change:.2f}x, using conservative restoration")
                offset = min(round(ratio * new_scrollable * _CONSERVATIVE_SCALE), new_scrollable * _CONSERVATIVE_CAP)
                offset = max(0.0, offset)
            else:
                offset = max(0.0, min(float(round(ratio * new_scrollable)), new_scrollable))

        self.host.set_offset(resource_id, offset)
        self._observed[resource_id] = _Observation(offset=offset, at=time.monotonic())
        log.debug(
            f"Restored viewport for {resource_id}",
            extra={"old_offset": saved.offset, "new_offset": offset},
        )
        return True

    def discard(self, resource_id: str) -> None:
        """Forget the saved viewport without applying it."""
        self._saved.pop(resource_id, None)

    def saved(self, resource_id: str) -> SavedViewport | None:
        return self._saved.get(resource_id)

    def clear(self, resource_id: str) -> None:
        self._saved.pop(resource_id, None)
        self._observed.pop(resource_id, None)

    def clear_all(self) -> None:
        self._saved.clear()
        self._observed.clear()

    def __len__(self) -> int:
        return len(self._saved)
