"""Append-only spreadsheet backup (a CSV file standing in for a sheet)."""

from __future__ import annotations

import csv
import os
import threading
from typing import Optional, Sequence

SUBSCRIPTION_HEADER = ("Email", "Source", "SessionId", "SubscribedAt")


class CsvBackupSink:
    def __init__(self, path: str, header: Sequence[str] = SUBSCRIPTION_HEADER):
        self.path = path
        self.header = tuple(header)
        self._lock = threading.Lock()

    def append_row(self, values: Sequence[object]) -> None:
        with self._lock:
            new_file = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
            with open(self.path, "a", newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                if new_file:
                    writer.writerow(self.header)
                writer.writerow(["" if v is None else v for v in values])


def backup_sink_from_path(path: Optional[str]) -> Optional[CsvBackupSink]:
    return CsvBackupSink(path) if path else None
