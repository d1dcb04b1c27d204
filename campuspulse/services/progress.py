from __future__ import annotations

import sys
import threading
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display service with tqdm (TTY only).

One tqdm bar per analysis run, counting records. In non-TTY environments
(CI, log capture) the bar is disabled to avoid ANSI control sequence spam.
Updates come from several worker threads, so they are serialized on a lock.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class ProgressTracker:
    """Record-level progress bar for one dataset analysis run."""

    def __init__(
        self, total_records: int, *, description: str = "Analyzing", initial: int = 0
    ) -> None:
        """Initialize progress tracker.

        Args:
            total_records: Total number of records in the dataset
            description: Description for the progress bar
            initial: Records already analyzed by an earlier run
        """
        self.total_records = total_records
        self.description = description
        self.completed = initial
        self.failed = 0
        self._lock = threading.Lock()

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_records,
                initial=initial,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def record_done(self, failed: bool = False) -> None:
        """Count one finished record (success or exhausted retries)."""
        with self._lock:
            self.completed += 1
            if failed:
                self.failed += 1
            if self.enabled and self.pbar is not None:
                self.pbar.update(1)
                if failed:
                    self.pbar.set_postfix(failed=self.failed)

    def close(self) -> None:
        with self._lock:
            if self.enabled and self.pbar is not None:
                self.pbar.close()
                self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
