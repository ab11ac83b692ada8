"""
Cancellation signal passed by callers into suspending operations
"""

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe, one-way cancellation flag that can also be waited on"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float]) -> bool:
        """
        Suspend for up to timeout seconds, waking early on cancellation

        Args:
            timeout: Seconds to wait

        Returns:
            True if the token was cancelled during (or before) the wait
        """
        return self._event.wait(timeout)
