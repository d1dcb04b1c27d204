from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord

"""Error log buffering.

Per-field classification failures are buffered in memory while the worker
pool runs and written once per run as JSON Lines to
`<log_dir>/errors-YYYYMMDD-HHMMSS.log` (UTC). The file is only created when
there is something to write.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

DEFAULT_LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """Thread-safe in-memory buffer for error records. Flush writes JSON Lines."""

    def __init__(self, log_dir: Path | str = DEFAULT_LOGS_DIR) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._log_dir = Path(log_dir)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._log_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        with self._lock:
            self._records.append(record)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file.

        Returns:
            The file written to, or None when the buffer was empty
        """
        with self._lock:
            if not self._records:
                return None
            records = list(self._records)
            self._records.clear()
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in records:
                f.write(r.to_json_line() + "\n")
        return fp
