"""Tests for the delimited error file sink."""

from pathlib import Path

from rebatch.contracts.enums import ErrorKind, SkipPhase
from rebatch.contracts.protocols import ErrorSink
from rebatch.contracts.records import SkipRecord
from rebatch.plugins.sinks.error_file import DelimitedErrorSink

HEADER = "first_name;last_name;age;phase;line;error"


def _record(line: int | None = 3, message: str = "must be born") -> SkipRecord:
    return SkipRecord(
        phase=SkipPhase.PROCESS,
        kind=ErrorKind.VALIDATION,
        message=message,
        fields={"first_name": "jill", "last_name": "doe", "age": "0"},
        line_number=line,
    )


class TestDelimitedErrorSink:
    def test_implements_error_sink(self, tmp_path: Path) -> None:
        assert isinstance(DelimitedErrorSink({"path": str(tmp_path / "e.csv")}), ErrorSink)

    def test_no_file_without_skips(self, tmp_path: Path) -> None:
        sink = DelimitedErrorSink({"path": str(tmp_path / "e.csv")})
        sink.close()

        assert not (tmp_path / "e.csv").exists()

    def test_writes_header_then_rows(self, tmp_path: Path) -> None:
        path = tmp_path / "e.csv"
        sink = DelimitedErrorSink({"path": str(path)})

        sink.append(_record())
        sink.append(_record(line=None, message="no line"))
        sink.close()

        assert path.read_text().splitlines() == [HEADER, "jill;doe;0;process;3;must be born", "jill;doe;0;process;;no line"]

    def test_rows_are_flushed_immediately(self, tmp_path: Path) -> None:
        path = tmp_path / "e.csv"
        sink = DelimitedErrorSink({"path": str(path)})

        sink.append(_record())

        assert len(path.read_text().splitlines()) == 2
        sink.close()

    def test_reopening_appends_without_second_header(self, tmp_path: Path) -> None:
        path = tmp_path / "e.csv"
        for _ in range(2):
            sink = DelimitedErrorSink({"path": str(path)})
            sink.append(_record())
            sink.close()

        assert path.read_text().splitlines() == [HEADER, "jill;doe;0;process;3;must be born", "jill;doe;0;process;3;must be born"]

    def test_missing_fields_become_not_available(self, tmp_path: Path) -> None:
        path = tmp_path / "e.csv"
        sink = DelimitedErrorSink({"path": str(path)})
        record = SkipRecord(phase=SkipPhase.READ, kind=ErrorKind.PARSE, message="bad", fields={}, line_number=2)

        sink.append(record)
        sink.close()

        assert path.read_text().splitlines()[1] == "N/A;N/A;N/A;read;2;bad"

    def test_append_after_close_reopens_the_file(self, tmp_path: Path) -> None:
        path = tmp_path / "e.csv"
        sink = DelimitedErrorSink({"path": str(path)})

        sink.append(_record(line=3))
        sink.close()
        sink.append(_record(line=4))
        sink.close()

        assert path.read_text().splitlines() == [HEADER, "jill;doe;0;process;3;must be born", "jill;doe;0;process;4;must be born"]
