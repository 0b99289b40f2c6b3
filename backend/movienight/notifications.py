from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Optional

logger = logging.getLogger("movienight.notifications")


@dataclass(frozen=True)
class Toast:
    level: str
    message: str
    key: str


ToastSink = Callable[[Toast], None]


class Toaster:
    """Shows each toast key once until it is dismissed."""

    def __init__(self, sink: Optional[ToastSink] = None) -> None:
        self._sink = sink
        self._shown: set[str] = set()
        self.history: list[Toast] = []

    def notify(self, level: str, message: str, key: Optional[str] = None) -> bool:
        toast = Toast(level=level, message=message, key=key or f"{level}:{message}")
        if toast.key in self._shown:
            return False
        self._shown.add(toast.key)
        self.history.append(toast)
        if self._sink is not None:
            self._sink(toast)
        else:
            logger.info(toast.message, extra={"event": "toast", "reason": toast.key})
        return True

    def dismiss(self, key: str) -> None:
        self._shown.discard(key)
