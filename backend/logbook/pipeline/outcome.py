"""
Stage outcomes and the terminal-status decision.

Each stage of a pipeline run produces exactly one ``StageOutcome``:

    StageSuccess(stage)            the stage finished
    StageFailure(stage, message)   the stage raised; ``message`` is the error text

``decide_terminal_status()`` turns the ordered outcomes plus the
categorization confidence into the Document's final status and error text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union


class Stage(str, Enum):
    """Pipeline stages, in execution order."""
    EXTRACTION        = "extraction"
    PII_SCRUB         = "pii_scrub"
    CATEGORIZATION    = "categorization"
    EMBEDDING         = "embedding"
    INDEXING          = "indexing"
    ENTITY_EXTRACTION = "entity_extraction"


class DocumentStatus(str, Enum):
    PENDING            = "pending"
    PROCESSING         = "processing"
    COMPLETED          = "completed"
    FAILED             = "failed"
    FLAGGED_FOR_REVIEW = "flagged_for_review"


CRITICAL_STAGES: frozenset[Stage] = frozenset({Stage.EXTRACTION})

DEFAULT_CONFIDENCE_THRESHOLD = 0.6


@dataclass(frozen=True)
class StageSuccess:
    stage: Stage

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class StageFailure:
    stage:   Stage
    message: str

    @property
    def ok(self) -> bool:
        return False

    def describe(self) -> str:
        return f"{self.stage.value}: {self.message}"


StageOutcome = Union[StageSuccess, StageFailure]


@dataclass(frozen=True)
class TerminalDecision:
    status: DocumentStatus
    error:  str | None


def failures(outcomes: Sequence[StageOutcome]) -> list[StageFailure]:
    return [o for o in outcomes if isinstance(o, StageFailure)]


def decide_terminal_status(
    outcomes:   Sequence[StageOutcome],
    confidence: float | None,
    threshold:  float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> TerminalDecision:
    """
    Pick the terminal status for a finished (or aborted) run.

    failed               any critical stage failed
    flagged_for_review   confidence is known and below ``threshold``
    completed            everything else, including runs with non-fatal failures

    The error text lists every failed stage as ``"stage: message"`` joined
    with ``"; "``, or is None when nothing failed.
    """
    failed = failures(outcomes)
    error = "; ".join(f.describe() for f in failed) or None

    if any(f.stage in CRITICAL_STAGES for f in failed):
        return TerminalDecision(DocumentStatus.FAILED, error)

    if confidence is not None and confidence < threshold:
        return TerminalDecision(DocumentStatus.FLAGGED_FOR_REVIEW, error)

    return TerminalDecision(DocumentStatus.COMPLETED, error)
