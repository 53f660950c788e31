"""Debounced, race-free entity lookup behind the autocomplete fields.

One ``EntitySearch`` serves one input stream. Each keystroke bumps a sequence
number and restarts the quiet-period timer; once the timer fires the lookup is
detached from it, so later keystrokes never cancel a request already on the
wire. A finished lookup only lands if its sequence number is still the latest.
"""
from __future__ import annotations
import asyncio
import inspect
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional, Sequence, Union
from . import config
from .log import get_logger

log = get_logger(__name__)

SearchFn = Callable[[str], Union[Awaitable[Sequence[Any]], Sequence[Any]]]


def _noop(*_args) -> None:
    return None


def display_value(entity: Any, key: str) -> str:
    """Read the display field off a dict-like or attribute-style result."""
    if isinstance(entity, Mapping):
        value = entity.get(key)
    else:
        value = getattr(entity, key, None)
    return "" if value is None else str(value)


class EntitySearch:
    def __init__(
        self,
        search: SearchFn,
        display_key: str,
        on_text_change: Optional[Callable[[str], None]] = None,
        on_entity_selected: Optional[Callable[[Any], None]] = None,
        *,
        debounce: float = config.SEARCH_DEBOUNCE,
        min_chars: int = config.SEARCH_MIN_CHARS,
    ):
        self._search = search
        self.display_key = display_key
        self._on_text_change = on_text_change or _noop
        self._on_entity_selected = on_entity_selected or _noop
        self.debounce = debounce
        self.min_chars = min_chars

        self.text = ""
        self.suggestions: list[Any] = []
        self.selected: Any = None
        self.is_open = False
        self.loading = False

        self._seq = 0
        self._timer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def visible_suggestions(self) -> list[Any]:
        """What the dropdown renders: nothing while closed or still loading."""
        if not self.is_open or self.loading:
            return []
        return list(self.suggestions)

    # Input events ---------------------------------------------------------

    def focus(self) -> None:
        self.is_open = True

    def dismiss(self) -> None:
        """Interaction outside the field."""
        self.is_open = False

    def set_text(self, text: str) -> None:
        self.text = text
        self._on_text_change(text)
        self.is_open = True
        seq = self._supersede()
        if len(text) < self.min_chars:
            self.suggestions = []
            self.loading = False
            return
        self._timer = asyncio.get_running_loop().create_task(self._after_quiet_period(seq, text))

    def select(self, entity: Any) -> None:
        self._supersede()
        self.selected = entity
        self._on_entity_selected(entity)
        self.text = display_value(entity, self.display_key)
        self._on_text_change(self.text)
        self.is_open = False
        self.loading = False

    def clear(self) -> None:
        self._supersede()
        self.text = ""
        self._on_text_change("")
        self.selected = None
        self._on_entity_selected(None)
        self.suggestions = []
        self.is_open = False
        self.loading = False

    # Scheduling -----------------------------------------------------------

    def _supersede(self) -> int:
        """Invalidate every earlier lookup and drop the pending timer."""
        self._seq += 1
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        return self._seq

    async def _after_quiet_period(self, seq: int, query: str) -> None:
        await asyncio.sleep(self.debounce)
        task = asyncio.get_running_loop().create_task(self._lookup(seq, query))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _lookup(self, seq: int, query: str) -> None:
        if seq == self._seq:
            self.loading = True
        try:
            result = self._search(query)
            if inspect.isawaitable(result):
                result = await result
            results = list(result)
        except Exception:
            log.warning("entity_search_failed", query=query, exc_info=True)
            results = []

        if seq != self._seq:
            log.debug("entity_search_stale", query=query, seq=seq, latest=self._seq)
            return
        self.suggestions = results
        self.loading = False

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no lookup is in flight."""
        while True:
            pending = [t for t in (self._timer, *self._inflight) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    def close(self) -> None:
        """Drop the pending timer; lookups already issued finish on their own."""
        self._supersede()
