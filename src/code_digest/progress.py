"""Progress notifications and cooperative cancellation shared by the pipeline stages."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from code_digest.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    ProgressCallback = Callable[["ProgressEvent"], None]


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification: `{op, mode: start|progress|end, message?, percent?}`."""

    op: str
    mode: str
    message: str | None = None
    percent: int | None = None


class CancellationToken:
    """Thread-safe cancellation flag, checked by the pipeline between files."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled


def emit(
    callback: ProgressCallback | None,
    op: str,
    mode: str,
    message: str | None = None,
    percent: float | None = None,
) -> None:
    """Deliver a progress event to `callback`.

    Listener failures are logged and never interrupt the pipeline.
    """
    if callback is None:
        return
    pct = None if percent is None else max(0, min(100, int(percent)))
    try:
        callback(ProgressEvent(op=op, mode=mode, message=message, percent=pct))
    except Exception as e:  # noqa: BLE001
        logger.warning("progress_listener_failed", op=op, mode=mode, error=str(e))
