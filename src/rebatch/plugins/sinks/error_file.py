# src/rebatch/plugins/sinks/error_file.py
"""Delimited error file: one row per skipped record of a partition."""

import csv
from pathlib import Path
from typing import Any, TextIO

from rebatch.contracts.records import NOT_AVAILABLE, SkipRecord
from rebatch.plugins.config_base import DelimitedConfig

ERROR_COLUMNS = ("phase", "line", "error")


class DelimitedErrorSinkConfig(DelimitedConfig):
    """Configuration for a partition's error file."""


class DelimitedErrorSink:
    """Append skipped records to a delimited error file.

    The file is opened on the first skip, so partitions without skips leave
    no error file behind. Rows are appended and flushed one at a time; a
    restarted partition keeps the rows of its earlier attempts and the header
    is written only to a new or empty file.

    Row layout: the identifying columns (N/A when unknown), then phase,
    input line number, and the error message.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        cfg = DelimitedErrorSinkConfig.from_dict(config)
        self._path = cfg.resolved_path()
        self._delimiter = cfg.delimiter
        self._encoding = cfg.encoding
        self._columns = list(cfg.columns)
        self._file: TextIO | None = None

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: SkipRecord) -> None:
        file = self._file if self._file is not None else self._open()
        row = [record.fields.get(name, NOT_AVAILABLE) for name in self._columns]
        row.append(record.phase.value)
        row.append("" if record.line_number is None else str(record.line_number))
        row.append(record.message)
        self._write_row(file, row)
        file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _open(self) -> TextIO:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        needs_header = not self._path.exists() or self._path.stat().st_size == 0
        file = self._path.open("a", encoding=self._encoding, newline="")
        if needs_header:
            self._write_row(file, [*self._columns, *ERROR_COLUMNS])
        self._file = file
        return file

    def _write_row(self, file: TextIO, row: list[str]) -> None:
        csv.writer(file, delimiter=self._delimiter, lineterminator="\n").writerow(row)
