"""One coaching turn: analyze a transcript, score it, commit the result."""

import functools
from collections.abc import Callable

import structlog

from lumina_coach.analysis.client import AnalysisClient
from lumina_coach.config import get_settings
from lumina_coach.scoring.policy import ScoringOutcome, apply_analysis
from lumina_coach.storage.state_store import SessionStore

logger = structlog.get_logger()


@functools.lru_cache
def get_store() -> SessionStore:
    """Process-wide session store, rehydrated on first use."""
    return SessionStore(get_settings().state_path)


@functools.lru_cache
def get_analysis_client() -> AnalysisClient:
    settings = get_settings()
    return AnalysisClient(
        api_key=settings.openai_api_key,
        model=settings.evaluation_model,
        temperature=settings.evaluation_temperature,
        timeout=settings.evaluation_timeout_seconds,
        persona_name=settings.persona_name,
    )


async def coach_turn(
    store: SessionStore,
    client: AnalysisClient,
    transcript: str,
    is_current: Callable[[], bool] | None = None,
) -> ScoringOutcome | None:
    """Run a full turn for one transcript.

    Args:
        store: Session store receiving the result.
        client: Analysis client.
        transcript: Final capture text.
        is_current: Checked after the analysis resolves; returning False
            discards the result.

    Returns:
        The committed outcome, or None when the result was discarded.
    """
    analysis = await client.evaluate(transcript)

    if is_current is not None and not is_current():
        logger.info("stale_analysis_discarded", status=analysis.status.value)
        return None

    outcome = apply_analysis(store.snapshot, analysis, transcript)
    store.apply(outcome)
    logger.info(
        "turn_scored",
        status=analysis.status.value,
        delta=outcome.points_delta,
        points=store.snapshot.points,
    )
    return outcome
