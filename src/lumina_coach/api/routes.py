"""REST API routes for login, state, mistake history and settings."""

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from lumina_coach.analysis.client import AnalysisClient
from lumina_coach.coach import coach_turn, get_analysis_client, get_store
from lumina_coach.models.session_state import User
from lumina_coach.storage.state_store import SessionStore

logger = structlog.get_logger()
router = APIRouter(prefix="/api")

# Login is mocked: this user stands in for an identity provider
MOCK_USER = User(
    name="Alex Johnson",
    email="alex.j@example.com",
    photo="https://picsum.photos/seed/alex/100/100",
)

STATIC_SETTINGS = {
    "daily_goal": "30 mins",
    "voice_gender": "Female",
    "notifications": True,
}


class AnalyzeRequest(BaseModel):
    transcript: str


def require_login(store: SessionStore = Depends(get_store)) -> SessionStore:
    if not store.is_authenticated:
        raise HTTPException(status_code=401, detail="Not signed in")
    return store


def state_summary(store: SessionStore) -> dict:
    state = store.snapshot
    return {
        "points": state.points,
        "mistake_count": len(state.mistakes),
        "user": state.user.model_dump(mode="json") if state.user else None,
        "is_authenticated": state.is_authenticated,
    }


@router.post("/login")
async def login(
    user: User | None = None,
    store: SessionStore = Depends(get_store),
) -> dict:
    """Sign in with the given user, or the mocked one."""
    store.login(user or MOCK_USER)
    logger.info("user_logged_in", email=store.snapshot.user.email)
    return state_summary(store)


@router.post("/logout")
async def logout(store: SessionStore = Depends(get_store)) -> dict:
    store.logout()
    logger.info("user_logged_out")
    return state_summary(store)


@router.get("/state")
async def get_state(store: SessionStore = Depends(get_store)) -> dict:
    """Current points, journal size and user."""
    return state_summary(store)


@router.get("/mistakes")
async def list_mistakes(store: SessionStore = Depends(require_login)) -> list[dict]:
    """Mistake journal, most recent first."""
    return [m.model_dump(mode="json", by_alias=True) for m in store.mistakes_recent_first()]


@router.get("/settings")
async def get_practice_settings() -> dict:
    """Static settings display."""
    return STATIC_SETTINGS


@router.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    store: SessionStore = Depends(require_login),
    client: AnalysisClient = Depends(get_analysis_client),
) -> dict:
    """Analyze and score one transcript without the voice loop."""
    transcript = request.transcript.strip()
    if not transcript:
        raise HTTPException(status_code=422, detail="Transcript is empty")
    outcome = await coach_turn(store, client, transcript)
    return {
        "points": store.snapshot.points,
        "delta": outcome.points_delta,
        "feedback": outcome.ui_feedback,
        "reply": outcome.spoken_reply,
        "mistake": (
            outcome.mistake.model_dump(mode="json", by_alias=True) if outcome.mistake else None
        ),
    }


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
