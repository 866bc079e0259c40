"""Batch engine: chunk loop, skip policy, partitioning, and job orchestration."""

from rebatch.engine.chunk import ChunkExecutor, logging_hooks
from rebatch.engine.coordinator import PartitionCoordinator
from rebatch.engine.orchestrator import JobOrchestrator
from rebatch.engine.partitioner import Partitioner, input_spec_from_parameters
from rebatch.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from rebatch.engine.skip import SkipClassifier, SkipPolicy

__all__ = [
    "ChunkExecutor",
    "JobOrchestrator",
    "MaxRetriesExceeded",
    "PartitionCoordinator",
    "Partitioner",
    "RetryConfig",
    "RetryManager",
    "SkipClassifier",
    "SkipPolicy",
    "input_spec_from_parameters",
    "logging_hooks",
]
