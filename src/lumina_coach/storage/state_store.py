"""Session snapshot persistence (JSON + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from lumina_coach.models.session_state import Mistake, SessionState, User
from lumina_coach.scoring.policy import INITIAL_POINTS, ScoringOutcome

logger = structlog.get_logger()


def default_state() -> SessionState:
    return SessionState(points=INITIAL_POINTS)


def _lock_path(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


def read_snapshot(path: Path) -> SessionState:
    """Load a snapshot, falling back to the default on any read problem."""
    if not path.exists():
        return default_state()
    try:
        with open(_lock_path(path), "a") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_SH)
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        return SessionState.from_snapshot(data)
    except (OSError, ValueError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning("state_load_failed", path=str(path), error=str(e))
        return default_state()


def write_snapshot(path: Path, state: SessionState) -> None:
    """Overwrite the stored snapshot in full."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(_lock_path(path), "a") as lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            json.dump(state.to_snapshot(), tmp)
        os.replace(tmp.name, path)


class SessionStore:
    """Holds the current session snapshot and mirrors it to disk.

    Every mutator reads the latest snapshot, builds a new one and saves it
    before returning, so completion callbacks can call them in any order.

    Args:
        path: JSON file holding the persisted snapshot.
    """

    def __init__(self, path: Path):
        self.path = path
        self._state = read_snapshot(path)
        logger.info(
            "state_loaded",
            path=str(path),
            points=self._state.points,
            mistakes=len(self._state.mistakes),
        )

    @property
    def snapshot(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def mistakes_recent_first(self) -> list[Mistake]:
        return list(reversed(self._state.mistakes))

    def login(self, user: User) -> SessionState:
        return self._commit(
            self._state.model_copy(update={"user": user, "is_authenticated": True})
        )

    def logout(self) -> SessionState:
        return self._commit(
            self._state.model_copy(update={"user": None, "is_authenticated": False})
        )

    def adjust_points(self, delta: int) -> SessionState:
        return self._commit(
            self._state.model_copy(update={"points": self._state.points + delta})
        )

    def append_mistake(self, mistake: Mistake) -> SessionState:
        return self._commit(
            self._state.model_copy(update={"mistakes": [*self._state.mistakes, mistake]})
        )

    def apply(self, outcome: ScoringOutcome) -> SessionState:
        """Commit a scoring outcome against the latest snapshot.

        Only the delta and the journal entry are replayed, so an outcome
        computed from an older snapshot does not overwrite newer changes.
        """
        state = self._state
        update: dict = {"points": state.points + outcome.points_delta}
        if outcome.mistake is not None:
            update["mistakes"] = [*state.mistakes, outcome.mistake]
        return self._commit(state.model_copy(update=update))

    def _commit(self, new_state: SessionState) -> SessionState:
        # Only a snapshot that reached disk becomes current
        write_snapshot(self.path, new_state)
        self._state = new_state
        logger.debug(
            "state_saved",
            points=new_state.points,
            mistakes=len(new_state.mistakes),
            authenticated=new_state.is_authenticated,
        )
        return new_state
