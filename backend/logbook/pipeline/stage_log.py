"""
Stage Log: per-document record of each stage's lifecycle.

Every stage goes through the same wrapper:

    insert  running              (before the stage body runs)
    update  completed | failed   (most recent running entry for that stage)

A stage body that raises becomes a ``StageFailure``; the exception does not
propagate. Failures of the log writes themselves do propagate, so the
orchestrator can treat them as pipeline-level errors.
"""

from __future__ import annotations

import logging
import uuid
from typing import Awaitable, Callable, TypeVar

from logbook.pipeline.outcome import Stage, StageFailure, StageOutcome, StageSuccess
from logbook.pipeline.repository import PipelineRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class StageLog:

    def __init__(self, repository: PipelineRepository, document_id: uuid.UUID) -> None:
        self._repo        = repository
        self._document_id = document_id

    async def start(self, stage: Stage) -> None:
        await self._repo.insert_stage_entry(self._document_id, stage)

    async def complete(self, stage: Stage) -> None:
        await self._repo.finish_stage_entry(self._document_id, stage, "completed")

    async def fail(self, stage: Stage, message: str) -> None:
        await self._repo.finish_stage_entry(self._document_id, stage, "failed", message)

    async def record_instant(self, stage: Stage) -> StageOutcome:
        """Log a stage that had nothing to do as started and completed at once."""
        await self.start(stage)
        await self.complete(stage)
        return StageSuccess(stage)

    async def run(
        self,
        stage:     Stage,
        operation: Callable[[], Awaitable[T]],
    ) -> tuple[StageOutcome, T | None]:
        await self.start(stage)
        try:
            result = await operation()
        except Exception as exc:
            message = _error_text(exc)
            logger.warning(
                "Stage failed | doc=%s stage=%s error=%s",
                self._document_id, stage.value, message,
                exc_info=True,
            )
            await self.fail(stage, message)
            return StageFailure(stage, message), None

        await self.complete(stage)
        logger.info("Stage completed | doc=%s stage=%s", self._document_id, stage.value)
        return StageSuccess(stage), result
