"""Shared suppression of repeated fetch-failure notifications.

Several views refresh independently against the same store, so one outage
would otherwise raise one notification per view. Create one ``ErrorDeduper``
per process (or per test) and pass it to every view.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable

from rich.console import Console
from rich.text import Text

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


def console_notifier(console: Console | None = None) -> Notifier:
    out = console or Console(file=sys.stderr, highlight=False)

    def notify(message: str) -> None:
        out.print(Text(message, style="red"))

    return notify


class ErrorDeduper:
    """Last-write-wins memory of the most recently shown error message."""

    def __init__(
        self,
        notify: Notifier | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._notify = notify or console_notifier()
        self._clock = clock
        self.last_error_message: str | None = None
        self.last_error_timestamp: float | None = None

    def report(self, message: str, error: BaseException | None = None) -> bool:
        """Log the failure; notify only if it differs from the last one shown.

        Returns True when the notification was shown.
        """
        logger.error(message, exc_info=error)
        if message == self.last_error_message:
            logger.debug("suppressed duplicate notification: %s", message)
            return False
        self.last_error_message = message
        self.last_error_timestamp = self._clock()
        self._notify(message)
        return True

    def reset(self) -> None:
        self.last_error_message = None
        self.last_error_timestamp = None
