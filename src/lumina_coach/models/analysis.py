"""Speech analysis contract returned by the language model."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class AnalysisStatus(StrEnum):
    """Verdict for a single utterance."""

    CORRECT = "correct"
    MISTAKE = "mistake"
    WRONG_LANGUAGE = "wrong_language"


class SpeechAnalysis(BaseModel):
    """Structured verdict for one transcript. Not persisted."""

    model_config = ConfigDict(extra="ignore")

    status: AnalysisStatus
    correction: str
    feedback: str
    reply: str


# Returned whenever the model call fails; scored like a correct answer
FALLBACK_ANALYSIS = SpeechAnalysis(
    status=AnalysisStatus.CORRECT,
    correction="",
    feedback="I missed that, could you say it again?",
    reply="I'm sorry, I had a small technical glitch. What were you saying?",
)


def fallback_analysis() -> SpeechAnalysis:
    """Return a fresh copy of the fallback verdict."""
    return FALLBACK_ANALYSIS.model_copy()
