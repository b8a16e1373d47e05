from __future__ import annotations

import csv
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from .stream import MotionSample

FIELDNAMES = ["seq", "batch", "dx", "dy", "flags"]


class CsvLogger:
    """
    Lazily creates a CSV writer when the first row arrives. Keeping writer
    creation lazy avoids touching the filesystem during dry runs or tests.
    """

    def __init__(self, path: Optional[Path] = None, stream: Optional[TextIO] = None):
        if path is None and stream is None:
            raise ValueError("CsvLogger needs a path or an open stream")
        self.path = path
        self._stream = stream
        self._handle: Optional[csv.DictWriter[str]] = None
        self._file_handle: Optional[TextIO] = None

    def append(self, row: dict) -> None:
        if self._handle is None:
            if self._stream is not None:
                self._file_handle = self._stream
            else:
                assert self.path is not None
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._file_handle = self.path.open("w", newline="", encoding="utf-8")
            self._handle = csv.DictWriter(self._file_handle, fieldnames=FIELDNAMES)
            self._handle.writeheader()
        self._handle.writerow(row)

    def flush(self) -> None:
        if self._file_handle is not None:
            self._file_handle.flush()

    def close(self) -> None:
        if self._file_handle is not None and self._stream is None:
            self._file_handle.close()
        self._file_handle = None
        self._handle = None


class SampleSink:
    """
    Downstream target for a connected stream: records every forwarded sample
    and reports the whole batch as consumed.
    """

    def __init__(self, logger: Optional[CsvLogger] = None) -> None:
        self.logger = logger
        self.samples = 0
        self.batches = 0

    @staticmethod
    def to_path(path: Optional[Path]) -> "SampleSink":
        if path is None:
            return SampleSink(CsvLogger(stream=sys.stdout))
        return SampleSink(CsvLogger(path=path))

    def __call__(self, batch: List[MotionSample]) -> int:
        if self.logger:
            for sample in batch:
                self.logger.append(
                    {
                        "seq": self.samples,
                        "batch": self.batches,
                        "dx": sample.dx,
                        "dy": sample.dy,
                        "flags": sample.flags,
                    }
                )
                self.samples += 1
            self.logger.flush()
        else:
            self.samples += len(batch)
        self.batches += 1
        return len(batch)

    def close(self) -> None:
        if self.logger:
            self.logger.close()
