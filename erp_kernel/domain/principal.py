"""
Principal and credential value objects.

The principal is the sole ownership root for the token and role used in
every authorization check.  Exactly one is active per client session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Credentials:
    """Login credentials as supplied by the user."""

    login: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated actor."""

    id: str
    display_name: str
    role: str
    token: str = field(repr=False)
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at
