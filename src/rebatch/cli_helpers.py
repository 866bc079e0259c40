"""CLI helper functions for plugin instantiation and orchestrator wiring."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rebatch.contracts.errors import ConfigurationError
from rebatch.contracts.execution import ERROR_FILE_KEY, INPUT_FILE_KEY, StepExecution
from rebatch.contracts.protocols import StepComponents
from rebatch.core.fields import FieldOrder
from rebatch.core.logging import get_logger
from rebatch.plugins.config_base import DelimitedConfig
from rebatch.plugins.sinks.error_file import DelimitedErrorSink

if TYPE_CHECKING:
    from rebatch.core.config import RebatchSettings
    from rebatch.core.state.database import StateDB
    from rebatch.engine.orchestrator import JobOrchestrator
    from rebatch.plugins.manager import PluginManager

logger = get_logger(__name__)

# Source options that also shape the error file
_LAYOUT_KEYS = ("delimiter", "encoding", "columns")


def record_layout(source_options: dict[str, Any]) -> DelimitedConfig:
    """Validated delimiter, encoding, and columns shared by input and error files."""
    options = {key: source_options[key] for key in _LAYOUT_KEYS if key in source_options}
    return DelimitedConfig.from_dict({"path": "<per-partition>", **options})


class PluginStepFactory:
    """Build the collaborators of one step execution from its context.

    Each partition gets its own source and error file, read from the step's
    ExecutionContext. The transform and sink are shared by all partitions.
    """

    def __init__(
        self,
        source_cls: type[Any],
        source_options: dict[str, Any],
        transform: Any,
        sink: Any,
        layout: DelimitedConfig,
    ) -> None:
        self._source_cls = source_cls
        self._source_options = dict(source_options)
        self._transform = transform
        self._sink = sink
        self._layout = layout

    def __call__(self, step: StepExecution) -> StepComponents:
        input_file = step.context.get_str(INPUT_FILE_KEY)
        error_file = step.context.get_str(ERROR_FILE_KEY)
        if input_file is None or error_file is None:
            raise ConfigurationError(f"Step {step.step_name} has no {INPUT_FILE_KEY} or {ERROR_FILE_KEY} in its context")

        source = self._source_cls({**self._source_options, "path": input_file})
        error_sink = DelimitedErrorSink(
            {
                "path": error_file,
                "delimiter": self._layout.delimiter,
                "encoding": self._layout.encoding,
                "columns": list(self._layout.columns),
            }
        )
        return StepComponents(source=source, transform=self._transform, sink=self._sink, error_sink=error_sink)


@dataclass
class JobRuntime:
    """A wired orchestrator plus the resources to release after the run."""

    orchestrator: "JobOrchestrator"
    db: "StateDB"
    plugins: list[Any] = field(default_factory=list)

    def close(self) -> None:
        for plugin in self.plugins:
            close = getattr(plugin, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning("Failed to close plugin", plugin=type(plugin).__name__, error=str(e))
        self.db.close()


def _lookup(manager: "PluginManager", kind: str, name: str) -> type[Any]:
    getter = {
        "source": manager.get_source_by_name,
        "transform": manager.get_transform_by_name,
        "sink": manager.get_sink_by_name,
    }[kind]
    plugin_cls = getter(name)
    if plugin_cls is None:
        raise ConfigurationError(f"Unknown {kind} plugin: '{name}'")
    return plugin_cls


def build_orchestrator(settings: "RebatchSettings", manager: "PluginManager | None" = None) -> JobRuntime:
    """Construct the orchestrator and everything it depends on.

    Plugins are instantiated before the state database is opened, so a bad
    plugin configuration leaves nothing behind.

    Raises:
        ConfigurationError: Unknown plugin name or invalid plugin options
    """
    from rebatch.core.config import sanitize_url
    from rebatch.core.state.database import StateDB
    from rebatch.core.state.store import ExecutionStateStore
    from rebatch.engine.orchestrator import JobOrchestrator
    from rebatch.engine.partitioner import Partitioner
    from rebatch.engine.retry import RetryConfig, RetryManager
    from rebatch.plugins.manager import PluginManager

    if manager is None:
        manager = PluginManager()
        manager.register_builtin_plugins()

    source_cls = _lookup(manager, "source", settings.source.plugin)
    transform = _lookup(manager, "transform", settings.transform.plugin)(dict(settings.transform.options))
    sink = _lookup(manager, "sink", settings.sink.plugin)(dict(settings.sink.options))
    layout = record_layout(dict(settings.source.options))

    db = StateDB.from_url(settings.state.url, echo=settings.state.echo)
    logger.info("State database opened", url=sanitize_url(settings.state.url))

    orchestrator = JobOrchestrator(
        ExecutionStateStore(db),
        Partitioner(settings.job.pattern, settings.job.error_suffix),
        PluginStepFactory(source_cls, dict(settings.source.options), transform, sink, layout),
        settings.job,
        settings.concurrency.max_workers,
        field_order=FieldOrder.of_names(layout.columns),
        delimiter=layout.delimiter,
        retry_manager=RetryManager(RetryConfig.from_settings(settings.retry)),
    )
    return JobRuntime(orchestrator=orchestrator, db=db, plugins=[transform, sink])
