"""Persisted session, turn and provider-response records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TurnRole(str, Enum):
    USER = "user"
    AI = "ai"


class TurnRecord(BaseModel):
    """One user or AI turn in a session thread."""

    model_config = ConfigDict(extra="forbid")

    id: str
    role: TurnRole
    thread_id: str
    sequence: int
    text: str = ""
    user_turn_id: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("turn id must be non-empty")
        return v2


class ProviderResponseRecord(BaseModel):
    """A provider's output for one step type of an AI turn.

    ``(ai_turn_id, provider_id, response_type, response_index)`` is unique
    within a session.
    """

    model_config = ConfigDict(extra="forbid")

    ai_turn_id: str
    provider_id: str
    response_type: str
    response_index: int = 0
    text: str = ""
    status: str = "completed"
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("response_index")
    @classmethod
    def _index_ge_0(cls, v: int) -> int:
        if v < 0:
            raise ValueError("response_index must be >= 0")
        return v

    def key(self) -> tuple[str, str, str, int]:
        return (self.ai_turn_id, self.provider_id, self.response_type, self.response_index)


class SessionRecord(BaseModel):
    """Everything stored for one session."""

    model_config = ConfigDict(extra="forbid")

    session_id: str
    title: str = ""
    turns: list[TurnRecord] = Field(default_factory=list)
    responses: list[ProviderResponseRecord] = Field(default_factory=list)
    provider_contexts: dict[str, dict[str, Any]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
