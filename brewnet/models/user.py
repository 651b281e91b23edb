"""
User Models.

``Session`` is the locally held, immutable representation of the current
identity.  ``IdentityRecord`` mirrors a row of the backend ``users`` table
and is projected into a ``Session`` after every successful fetch.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from brewnet.utils.pro_expiry import can_like, is_pro_active, parse_pro_end

DEFAULT_LIKES: int = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """The single active identity for the running process.

    Instances are frozen.  Profile-completion updates, refreshes and
    import confirmations produce a new value via ``model_copy(update=...)``;
    ``id`` is never changed on a copy.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    name: str
    created_at: datetime = Field(default_factory=_utcnow)
    last_login_at: datetime = Field(default_factory=_utcnow)
    is_guest: bool = False
    profile_setup_completed: bool = False
    is_pro: bool = False
    pro_end: Optional[str] = None  # raw backend string; format has drifted
    likes_remaining: int = DEFAULT_LIKES

    @property
    def pro_end_date(self) -> Optional[datetime]:
        """Parsed ``pro_end``, or ``None`` when absent or unparseable."""
        if self.pro_end is None:
            return None
        return parse_pro_end(self.pro_end)

    @property
    def is_pro_active(self) -> bool:
        return is_pro_active(self.is_pro, self.pro_end)

    @property
    def can_like(self) -> bool:
        return can_like(self.is_pro, self.pro_end, self.likes_remaining)


class IdentityRecord(BaseModel):
    """Remote-canonical user profile (backend ``users`` table).

    Column names follow the backend's snake_case schema so rows validate
    directly.  Unknown columns are ignored.
    """

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    email: str
    name: str
    phone_number: Optional[str] = None
    is_guest: bool = False
    profile_image: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    location: Optional[str] = None
    skills: Optional[str] = None
    interests: Optional[str] = None
    profile_setup_completed: bool = False
    is_pro: bool = False
    pro_start: Optional[str] = None
    pro_end: Optional[str] = None
    likes_remaining: int = DEFAULT_LIKES
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_session(self) -> Session:
        """Project this record into a fresh ``Session`` value."""
        return Session(
            id=self.id,
            email=self.email,
            name=self.name,
            created_at=_parse_or_now(self.created_at),
            last_login_at=_parse_or_now(self.last_login_at),
            is_guest=self.is_guest,
            profile_setup_completed=self.profile_setup_completed,
            is_pro=self.is_pro,
            pro_end=self.pro_end,
            likes_remaining=self.likes_remaining,
        )

    @classmethod
    def new(
        cls,
        user_id: str,
        email: str,
        name: str,
        phone_number: Optional[str] = None,
    ) -> "IdentityRecord":
        """Build the initial record for a freshly signed-up identity."""
        now: str = _utcnow().isoformat()
        return cls(
            id=user_id,
            email=email,
            name=name,
            phone_number=phone_number,
            created_at=now,
            last_login_at=now,
            updated_at=now,
        )


def _parse_or_now(value: Optional[str]) -> datetime:
    if value:
        parsed = parse_pro_end(value)
        if parsed is not None:
            return parsed
    return _utcnow()


PHONE_EMAIL_DOMAIN: str = "phone.brewnet.local"


def phone_placeholder_email(phone_number: str) -> str:
    """Return the stand-in email stored for phone-registered accounts.

    The backend's ``users.email`` column is NOT NULL, so phone users get
    ``<digits>@phone.brewnet.local``.
    """
    digits: str = "".join(ch for ch in phone_number if ch.isdigit())
    return f"{digits}@{PHONE_EMAIL_DOMAIN}"
