"""Report sinks for contact audit diagnostic lines."""

from __future__ import annotations

from datetime import datetime
import logging
from pathlib import Path
import sys
from typing import Any, Iterable, Protocol, TextIO


logger = logging.getLogger("contact_auditor.sink")

REPORT_FILE_PREFIX = "contact-audit-"
REPORT_FILE_SUFFIX = ".tsv"
REPORT_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M"


class ReportDestination(Protocol):
    name: str

    def write(self, line: str) -> None: ...

    def close(self) -> None: ...


class ConsoleDestination:
    name = "stdout"

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def write(self, line: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(line)
        stream.flush()

    def close(self) -> None:
        return None


class FileDestination:
    name = "file"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle: Any = self.path.open("w", encoding="utf-8", newline="")

    def write(self, line: str) -> None:
        self._handle.write(line)
        self._handle.flush()

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()


def report_file_name(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime(REPORT_TIMESTAMP_FORMAT)
    return f"{REPORT_FILE_PREFIX}{stamp}{REPORT_FILE_SUFFIX}"


def create_report_file(results_dir: Path, *, now: datetime | None = None) -> FileDestination:
    return FileDestination(Path(results_dir) / report_file_name(now))


class ResultSink:
    """Fans every report line out to the configured destinations.

    Destination failures are logged and never raised: losing a line must not
    stop the audit.
    """

    def __init__(self, destinations: Iterable[ReportDestination] = ()) -> None:
        self.destinations: tuple[ReportDestination, ...] = tuple(destinations)
        self.lines_written = 0
        self.write_failures = 0

    def write(self, line: str) -> None:
        self.lines_written += 1
        for destination in self.destinations:
            try:
                destination.write(line)
            except (OSError, ValueError) as exc:
                self.write_failures += 1
                logger.error("Error while writing result to %s: %s", destination.name, exc)

    def close(self) -> None:
        for destination in self.destinations:
            try:
                destination.close()
            except OSError as exc:
                logger.error("Error while closing %s results destination: %s", destination.name, exc)

    def __enter__(self) -> "ResultSink":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        self.close()
        return False
