"""Rules turning an analysis verdict into points, journal entries and feedback."""

import time
import uuid
from dataclasses import dataclass

from lumina_coach.models.analysis import AnalysisStatus, SpeechAnalysis
from lumina_coach.models.session_state import Mistake, SessionState

INITIAL_POINTS = 1000
POINT_GAIN = 10
POINT_LOSS = 10

WRONG_LANGUAGE_REASON = "Language detected: Bengali"
GRAMMAR_ERROR_REASON = "Grammar error"

_FEEDBACK_LABELS: dict[AnalysisStatus, str] = {
    AnalysisStatus.CORRECT: f"+{POINT_GAIN} Perfect English!",
    AnalysisStatus.MISTAKE: f"-{POINT_LOSS} Small mistake",
    AnalysisStatus.WRONG_LANGUAGE: f"-{POINT_LOSS} Try English only",
}


@dataclass(frozen=True)
class ScoringOutcome:
    """Result of applying one analysis to a session snapshot."""

    state: SessionState
    spoken_reply: str
    ui_feedback: str
    points_delta: int
    mistake: Mistake | None = None


def now_ms() -> int:
    return int(time.time() * 1000)


def new_mistake_id(timestamp_ms: int) -> str:
    """Time-derived id, unique within the same millisecond."""
    return f"{timestamp_ms}-{uuid.uuid4().hex[:12]}"


def feedback_label(status: AnalysisStatus) -> str:
    """Short UI label for a verdict, prefixed with the signed point delta."""
    return _FEEDBACK_LABELS[status]


def build_mistake(
    analysis: SpeechAnalysis,
    transcript: str,
    timestamp_ms: int | None = None,
) -> Mistake:
    """Create the journal entry for a non-correct verdict."""
    if timestamp_ms is None:
        timestamp_ms = now_ms()

    if analysis.feedback:
        reason = analysis.feedback
    elif analysis.status == AnalysisStatus.WRONG_LANGUAGE:
        reason = WRONG_LANGUAGE_REASON
    else:
        reason = GRAMMAR_ERROR_REASON

    return Mistake(
        id=new_mistake_id(timestamp_ms),
        original=transcript,
        corrected=analysis.correction or transcript,
        reason=reason,
        points_deducted=POINT_LOSS,
        timestamp=timestamp_ms,
    )


def apply_analysis(
    state: SessionState,
    analysis: SpeechAnalysis,
    transcript: str,
    timestamp_ms: int | None = None,
) -> ScoringOutcome:
    """Apply one verdict to a snapshot.

    The input snapshot is left untouched; the outcome carries the new one.
    Points are not clamped and may go negative.

    Args:
        state: Current session snapshot.
        analysis: Verdict for ``transcript``.
        transcript: The text that was analyzed.
        timestamp_ms: Override for the journal timestamp (epoch ms).

    Returns:
        ScoringOutcome with the new snapshot, the reply to speak and the
        UI feedback label.
    """
    if analysis.status == AnalysisStatus.CORRECT:
        return ScoringOutcome(
            state=state.model_copy(update={"points": state.points + POINT_GAIN}),
            spoken_reply=analysis.reply,
            ui_feedback=feedback_label(analysis.status),
            points_delta=POINT_GAIN,
        )

    mistake = build_mistake(analysis, transcript, timestamp_ms)
    new_state = state.model_copy(update={
        "points": state.points - POINT_LOSS,
        "mistakes": [*state.mistakes, mistake],
    })
    return ScoringOutcome(
        state=new_state,
        spoken_reply=analysis.reply,
        ui_feedback=feedback_label(analysis.status),
        points_delta=-POINT_LOSS,
        mistake=mistake,
    )
