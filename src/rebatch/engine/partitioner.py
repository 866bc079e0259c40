# src/rebatch/engine/partitioner.py
"""Partitioner: split a job's input into independently restartable units.

One partition per input file. Each partition writes its skipped records to
an error file beside its input, so the error path is derived from the input
path alone and is identical on every restart.
"""

from pathlib import Path

from rebatch.contracts.errors import ConfigurationError, ResourceError
from rebatch.contracts.parameters import INPUT_DIR, INPUT_FILE, JobParameters
from rebatch.contracts.records import InputSpec, PartitionPlan


def input_spec_from_parameters(parameters: JobParameters) -> InputSpec:
    """Build the InputSpec from the input.dir / input.file job parameters."""
    return InputSpec(
        input_dir=parameters.get_string(INPUT_DIR),
        input_file=parameters.get_string(INPUT_FILE),
    )


class Partitioner:
    """Turns an InputSpec into PartitionPlans.

    Pure: touches only the filesystem (to list inputs), never the state store.

    Example:
        plans = Partitioner(pattern="*.csv").partition(InputSpec(input_dir="/data/in"))
        # [PartitionPlan(index=0, input_path=/data/in/a.csv, error_path=/data/in/a-errors.csv), ...]
    """

    def __init__(self, pattern: str = "*.csv", error_suffix: str = "-errors") -> None:
        if not error_suffix:
            raise ValueError("error_suffix must not be empty")
        self._pattern = pattern
        self._error_suffix = error_suffix

    def error_path_for(self, input_path: Path) -> Path:
        """<same folder>/<stem><error_suffix>.csv"""
        return input_path.with_name(f"{input_path.stem}{self._error_suffix}.csv")

    def is_error_file(self, path: Path) -> bool:
        return path.stem.endswith(self._error_suffix)

    def partition(self, input_spec: InputSpec) -> list[PartitionPlan]:
        """Compute the partitions of a job input.

        A directory yields one plan per file matching the pattern, sorted by
        name, excluding error files written by earlier runs. A single file
        yields one plan.

        Raises:
            ConfigurationError: If neither or both of input_dir and input_file are set
            ResourceError: If the directory or file is missing, or the directory
                holds no matching input
        """
        if input_spec.input_dir and input_spec.input_file:
            raise ConfigurationError(f"Set either {INPUT_DIR} or {INPUT_FILE}, not both")
        if input_spec.input_dir:
            return self._partition_directory(Path(input_spec.input_dir))
        if input_spec.input_file:
            return [self._plan(0, self._require_file(Path(input_spec.input_file)))]
        raise ConfigurationError(f"Job parameter {INPUT_DIR} or {INPUT_FILE} is required")

    def _partition_directory(self, directory: Path) -> list[PartitionPlan]:
        if not directory.is_dir():
            raise ResourceError(f"Input directory does not exist: {directory}", path=str(directory))
        inputs = sorted(
            (path for path in directory.glob(self._pattern) if path.is_file() and not self.is_error_file(path)),
            key=lambda p: p.name,
        )
        if not inputs:
            raise ResourceError(
                f"No input files matching {self._pattern!r} in {directory}",
                path=str(directory),
            )
        return [self._plan(index, path) for index, path in enumerate(inputs)]

    def _require_file(self, path: Path) -> Path:
        if not path.is_file():
            raise ResourceError(f"Input file does not exist: {path}", path=str(path))
        return path

    def _plan(self, index: int, input_path: Path) -> PartitionPlan:
        resolved = input_path.resolve()
        return PartitionPlan(index=index, input_path=resolved, error_path=self.error_path_for(resolved))
