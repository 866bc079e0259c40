# src/rebatch/plugins/sources/delimited.py
"""Delimited text source plugin.

Reads one record per physical line. Header lines are skipped, blank lines
are ignored and do not count as records. Every line is tokenized with
csv.reader, so quoted fields may contain the delimiter, but a record may not
span lines: the reader offset is a line-level record count.
"""

import csv
from pathlib import Path
from typing import Any, TextIO

from pydantic import Field

from rebatch.contracts.errors import ParseError, ResourceError
from rebatch.contracts.records import RawRecord
from rebatch.plugins.config_base import DelimitedConfig


class DelimitedFileSourceConfig(DelimitedConfig):
    """Configuration for the delimited source plugin."""

    lines_to_skip: int = Field(default=1, ge=0, description="Header lines before the first record")


class DelimitedFileSource:
    """Read records from a delimited text file, one per line.

    Config options:
        path: Input file (required; set per partition from input.file)
        delimiter: Field delimiter (default: ";")
        encoding: File encoding (default: "utf-8")
        columns: Column names, in file order (default: first_name, last_name, age)
        lines_to_skip: Header lines to skip (default: 1)

    A line whose column count differs from len(columns) raises ParseError
    carrying the raw line, and still counts as consumed.
    """

    name = "delimited"
    plugin_version = "1.0.0"

    def __init__(self, config: dict[str, Any]) -> None:
        cfg = DelimitedFileSourceConfig.from_dict(config)
        self._path = cfg.resolved_path()
        self._delimiter = cfg.delimiter
        self._encoding = cfg.encoding
        self._columns = list(cfg.columns)
        self._lines_to_skip = cfg.lines_to_skip

        self._file: TextIO | None = None
        self._line_number = 0
        self._offset = 0

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        if not self._path.is_file():
            raise ResourceError(f"Input file does not exist: {self._path}", path=str(self._path))
        try:
            self._file = self._path.open(encoding=self._encoding, newline="")
        except OSError as e:
            raise ResourceError(f"Cannot open input file {self._path}: {e}", path=str(self._path)) from e
        self._line_number = 0
        self._offset = 0
        for _ in range(self._lines_to_skip):
            if not self._file.readline():
                break
            self._line_number += 1

    def next(self) -> RawRecord | None:
        entry = self._next_line()
        if entry is None:
            return None
        line_number, text = entry
        self._offset += 1

        try:
            values = next(csv.reader([text], delimiter=self._delimiter, strict=True))
        except csv.Error as e:
            raise ParseError(self._parse_message(line_number, text, str(e)), raw_input=text, line_number=line_number) from e
        if len(values) != len(self._columns):
            detail = f"expected {len(self._columns)} fields, found {len(values)}"
            raise ParseError(self._parse_message(line_number, text, detail), raw_input=text, line_number=line_number)

        return RawRecord(
            line_number=line_number,
            raw=text,
            fields={name: value.strip() for name, value in zip(self._columns, values, strict=True)},
        )

    def seek(self, offset: int) -> None:
        """Skip forward to `offset` consumed records without tokenizing them.

        Raises:
            ValueError: If offset is behind the current position
            ResourceError: If the file holds fewer records than offset
        """
        if offset < self._offset:
            raise ValueError(f"Cannot seek backwards from {self._offset} to {offset}")
        while self._offset < offset:
            if self._next_line() is None:
                raise ResourceError(
                    f"Cannot resume {self._path} at record {offset}: the file holds only {self._offset} records",
                    path=str(self._path),
                )
            self._offset += 1

    def current_offset(self) -> int:
        return self._offset

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _next_line(self) -> tuple[int, str] | None:
        if self._file is None:
            raise RuntimeError(f"Source {self._path} is not open")
        while True:
            line = self._file.readline()
            if not line:
                return None
            self._line_number += 1
            text = line.rstrip("\r\n")
            if text.strip():
                return self._line_number, text

    def _parse_message(self, line_number: int, text: str, detail: str) -> str:
        return f"Parsing error at line: {line_number} in resource=[{self._path}], input=[{text}]: {detail}"
