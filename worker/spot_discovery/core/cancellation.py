"""Cooperative cancellation helpers built on threading.Event."""

from __future__ import annotations

import threading
import time
from typing import Optional


def is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def pause(seconds: float, cancel_event: Optional[threading.Event] = None) -> bool:
    """Sleep for ``seconds`` unless cancelled first. Returns True when cancelled."""
    if seconds <= 0:
        return is_cancelled(cancel_event)
    if cancel_event is None:
        time.sleep(seconds)
        return False
    return cancel_event.wait(seconds)
