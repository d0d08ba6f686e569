"""
Token records and their lifecycle.

State machine per record::

    ACTIVE ──delete──▶ DELETED ─────┐
       │                            ├──cleanup/clear──▶ (removed)
       └──failed decrypt──▶ QUARANTINED ┘

Only ACTIVE records hand out secrets. Transitions are methods on
:class:`StoredToken`; nothing else assigns ``state`` directly.
"""
import uuid
from enum import Enum
from typing import Optional
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"
    QUARANTINED = "quarantined"


class TokenInfo(BaseModel):
    """Public view of a stored token. Never carries the envelope."""

    id: str
    provider: str
    token_name: str
    is_active: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None


class StoredToken(BaseModel):
    """One encrypted credential owned by a user."""

    id: str = Field(default_factory=lambda: f"token_{uuid.uuid4().hex}")
    user_id: str
    provider: str
    envelope: str = Field(repr=False)
    display_name: str
    state: TokenState = TokenState.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state is TokenState.ACTIVE

    def _leave_active(self, target: TokenState) -> None:
        if not self.is_active:
            raise ValueError(
                f"Token {self.id} is {self.state.value}, not active"
            )
        self.state = target
        self.deactivated_at = utcnow()

    def mark_deleted(self) -> None:
        """ACTIVE → DELETED (user removed or replaced the credential)."""
        self._leave_active(TokenState.DELETED)

    def quarantine(self) -> None:
        """ACTIVE → QUARANTINED (envelope could not be decrypted)."""
        self._leave_active(TokenState.QUARANTINED)

    def reseal(self, envelope: str) -> None:
        """Replace the envelope of an ACTIVE record (master secret rotation)."""
        if not self.is_active:
            raise ValueError(f"Token {self.id} is {self.state.value}, not active")
        self.envelope = envelope

    def touch(self) -> None:
        self.last_used_at = utcnow()

    def info(self) -> TokenInfo:
        return TokenInfo(
            id=self.id,
            provider=self.provider,
            token_name=self.display_name,
            is_active=self.is_active,
            created_at=self.created_at,
            last_used_at=self.last_used_at,
        )
