"""Session snapshot models: user, mistake journal entries and points."""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SNAPSHOT_VERSION = 1

# Persisted JSON uses camelCase keys (points, isAuthenticated, pointsDeducted, ...)
_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(BaseModel):
    """Mocked signed-in user."""

    model_config = _CAMEL

    name: str
    email: str
    photo: str | None = None


class Mistake(BaseModel):
    """A single journal entry. Never edited once recorded."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    original: str
    corrected: str
    reason: str
    points_deducted: int = Field(gt=0)
    timestamp: int  # epoch milliseconds


class SessionState(BaseModel):
    """Full serializable session snapshot."""

    model_config = _CAMEL

    points: int = 1000
    mistakes: list[Mistake] = Field(default_factory=list)
    user: User | None = None
    is_authenticated: bool = False

    @model_validator(mode="after")
    def _sync_auth_flag(self) -> "SessionState":
        # The flag always follows the presence of a user
        self.is_authenticated = self.user is not None
        return self

    def to_snapshot(self) -> dict:
        """Dump to the persisted (camelCase, versioned) shape."""
        data = self.model_dump(mode="json", by_alias=True)
        data["version"] = SNAPSHOT_VERSION
        return data

    @classmethod
    def from_snapshot(cls, data: dict) -> "SessionState":
        """Rebuild a snapshot written by :meth:`to_snapshot`.

        Unversioned snapshots are treated as version 1.

        Raises:
            ValueError: If the snapshot version is not supported.
            pydantic.ValidationError: If the payload does not match the model.
        """
        if not isinstance(data, dict):
            raise ValueError("Snapshot must be a JSON object")
        version = data.get("version", 1)
        if not isinstance(version, int) or version > SNAPSHOT_VERSION or version < 1:
            raise ValueError(f"Unsupported snapshot version: {version!r}")
        payload = {k: v for k, v in data.items() if k != "version"}
        return cls.model_validate(payload)
