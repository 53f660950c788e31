from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union
from .errors import ClinicError
from .log import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    """One user-facing outcome of a mutation (the toast, in the web client)."""
    title: str
    message: str
    error: Optional[ClinicError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


Notifier = Callable[[Notification], None]
# called with the collection name after a successful mutation, so views refetch it
Invalidator = Callable[[str], Union[Awaitable[None], None]]


def log_notification(note: Notification) -> None:
    if note.ok:
        log.info("notify", title=note.title, message=note.message)
    else:
        log.warning("notify", title=note.title, message=note.message, error=type(note.error).__name__)
