from logbook.pipeline.orchestrator import PipelineOrchestrator
from logbook.pipeline.outcome import (
    DocumentStatus,
    Stage,
    StageFailure,
    StageOutcome,
    StageSuccess,
    decide_terminal_status,
)
from logbook.pipeline.repository import PipelineRepository, SqlPipelineRepository

__all__ = [
    "PipelineOrchestrator",
    "DocumentStatus",
    "Stage",
    "StageFailure",
    "StageOutcome",
    "StageSuccess",
    "decide_terminal_status",
    "PipelineRepository",
    "SqlPipelineRepository",
]
