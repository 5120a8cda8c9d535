"""
Identity provider -- credential checks and bearer token issuance.

Responsibility:
    Authenticates users against the ``users`` directory, issues opaque
    bearer tokens with a bounded lifetime, resolves tokens back to a
    Principal and revokes them on logout.

Architecture position:
    Kernel > Services.  SessionStore and the gateway depend on the
    ``IdentityProvider`` protocol, not on this implementation.

Invariants enforced:
    - Passwords are stored as salted PBKDF2-SHA256 digests.
    - Raw tokens never touch the database; only their SHA-256 digest does.
    - A token resolves iff it is unrevoked, unexpired and its user is active.

Failure modes:
    - AuthenticationError on unknown login, wrong password or inactive user
      (one message for all three).
    - IdentityProviderUnavailableError when the directory cannot be reached.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.engine import session_scope
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.principal import Credentials, Principal
from erp_kernel.exceptions import (
    AuthenticationError,
    IdentityProviderUnavailableError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.identity import SessionTokenModel, UserModel

logger = get_logger("services.identity")

_HASH_SCHEME = "pbkdf2_sha256"


class IdentityProvider(Protocol):
    """What the session layer needs from an identity backend."""

    def authenticate(self, credentials: Credentials) -> Principal:
        ...

    def resolve_token(self, token: str) -> Principal | None:
        ...

    def revoke(self, token: str) -> None:
        ...


def hash_password(password: str, iterations: int = 120_000) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), iterations,
    )
    return f"{_HASH_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt, expected = encoded.split("$")
        rounds = int(iterations)
        salt_bytes = salt.encode("ascii")
        expected_bytes = expected.encode("ascii")
    except ValueError:
        # Corrupt stored hash: treat as a mismatch.
        return False
    if scheme != _HASH_SCHEME or rounds < 1:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt_bytes, rounds,
    )
    return hmac.compare_digest(digest.hex().encode("ascii"), expected_bytes)


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class DirectoryIdentityProvider:
    """
    SQLAlchemy-backed identity provider.

    The principal id is the user's login, which is what audit entries and
    decision stamps record.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        token_ttl_minutes: int = 480,
        hash_iterations: int = 120_000,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._ttl = timedelta(minutes=token_ttl_minutes)
        self._hash_iterations = hash_iterations

    def register_user(
        self,
        login: str,
        display_name: str,
        role: str,
        password: str,
        is_active: bool = True,
    ) -> UUID:
        """Create a directory user.  Raises ValidationError on a taken login."""
        login = (login or "").strip()
        if not login:
            raise ValidationError("login", "login is required")
        if not password:
            raise ValidationError("password", "password is required")
        try:
            with session_scope(self._session_factory) as session:
                user = UserModel(
                    login=login,
                    display_name=display_name,
                    role=role,
                    password_hash=hash_password(password, self._hash_iterations),
                    is_active=is_active,
                )
                session.add(user)
                session.flush()
                user_id = user.id
        except IntegrityError:
            raise ValidationError("login", f"login '{login}' is already taken") from None
        logger.info("user_registered", extra={"login": login, "role": role})
        return user_id

    def set_active(self, login: str, is_active: bool) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                update(UserModel)
                .where(UserModel.login == login)
                .values(is_active=is_active)
            )

    def authenticate(self, credentials: Credentials) -> Principal:
        """Check credentials and issue a fresh token."""
        now = self._clock.now()
        token = secrets.token_urlsafe(32)
        expires_at = now + self._ttl
        try:
            with session_scope(self._session_factory) as session:
                user = session.execute(
                    select(UserModel).where(UserModel.login == credentials.login)
                ).scalar_one_or_none()
                if (
                    user is None
                    or not user.is_active
                    or not verify_password(credentials.password, user.password_hash)
                ):
                    logger.warning("login_rejected", extra={"login": credentials.login})
                    raise AuthenticationError("invalid credentials")
                session.add(SessionTokenModel(
                    user_id=user.id,
                    token_hash=token_digest(token),
                    issued_at=now,
                    expires_at=expires_at,
                ))
                principal = Principal(
                    id=user.login,
                    display_name=user.display_name,
                    role=user.role,
                    token=token,
                    expires_at=expires_at,
                )
        except OperationalError as exc:
            raise IdentityProviderUnavailableError(str(exc.orig)) from exc

        logger.info(
            "login_succeeded",
            extra={"login": principal.id, "role": principal.role},
        )
        return principal

    def resolve_token(self, token: str) -> Principal | None:
        """Principal for a live token, or None."""
        if not token:
            return None
        now = self._clock.now()
        session = self._session_factory()
        try:
            row = session.execute(
                select(SessionTokenModel, UserModel)
                .join(UserModel, SessionTokenModel.user_id == UserModel.id)
                .where(SessionTokenModel.token_hash == token_digest(token))
            ).one_or_none()
        except OperationalError as exc:
            raise IdentityProviderUnavailableError(str(exc.orig)) from exc
        finally:
            session.close()

        if row is None:
            return None
        issued, user = row
        if not issued.is_valid(now) or not user.is_active:
            return None
        return Principal(
            id=user.login,
            display_name=user.display_name,
            role=user.role,
            token=token,
            expires_at=issued.expires_at,
        )

    def revoke(self, token: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.execute(
                    update(SessionTokenModel)
                    .where(
                        SessionTokenModel.token_hash == token_digest(token),
                        SessionTokenModel.revoked_at.is_(None),
                    )
                    .values(revoked_at=self._clock.now())
                )
        except OperationalError as exc:
            raise IdentityProviderUnavailableError(str(exc.orig)) from exc
