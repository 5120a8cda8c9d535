"""
SessionStore -- the single active principal of a client session.

Responsibility:
    Owns the principal and its bearer token for the lifetime of a session:
    restores a persisted token at start, logs in and out, and hands the
    principal to protected operations.

Architecture position:
    Kernel > Services.  Depends on the IdentityProvider protocol and a
    TokenStore for persistence between process runs.

Invariants enforced:
    - At most one principal is active per store.
    - Reads do not re-verify the token with the provider; a stale token
      fails at the next protected call.
    - Logout always clears local state, even when revocation fails.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Protocol

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.principal import Credentials, Principal
from erp_kernel.exceptions import AuthenticationError, IdentityProviderUnavailableError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.identity_service import IdentityProvider

logger = get_logger("services.session")


class TokenStore(Protocol):
    def load(self) -> str | None:
        ...

    def save(self, token: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryTokenStore:
    """Keeps the token for the life of the process."""

    def __init__(self, token: str | None = None):
        self._token = token

    def load(self) -> str | None:
        return self._token

    def save(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenStore:
    """Persists the token as ``{"token": ...}`` in a JSON file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def load(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("token_file_unreadable", extra={"path": str(self._path)})
            return None
        token = data.get("token") if isinstance(data, dict) else None
        return token or None

    def save(self, token: str) -> None:
        """Write the token readable by the owner only."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            # The mode argument is ignored for a file that already exists.
            os.chmod(self._path, 0o600)
            fh.write(json.dumps({"token": token}))

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


class SessionStore:
    """Process- or session-scoped holder of the active principal."""

    def __init__(
        self,
        provider: IdentityProvider,
        token_store: TokenStore | None = None,
        clock: Clock | None = None,
    ):
        self._provider = provider
        self._token_store = token_store or MemoryTokenStore()
        self._clock = clock or SystemClock()
        self._principal: Principal | None = None
        self._lock = threading.Lock()

    def start(self) -> Principal | None:
        """Restore a persisted token if the provider still accepts it."""
        token = self._token_store.load()
        if token is None:
            return None
        try:
            principal = self._provider.resolve_token(token)
        except IdentityProviderUnavailableError:
            # Keep the token; it may still be good once the provider is back.
            logger.warning("session_restore_deferred")
            return None
        with self._lock:
            if principal is None:
                self._token_store.clear()
                self._principal = None
                logger.info("session_restore_rejected")
                return None
            self._principal = principal
        logger.info("session_restored", extra={"principal_id": principal.id})
        return principal

    def login(self, credentials: Credentials) -> Principal:
        principal = self._provider.authenticate(credentials)
        with self._lock:
            self._principal = principal
            self._token_store.save(principal.token)
        return principal

    def logout(self) -> None:
        with self._lock:
            principal = self._principal
            self._principal = None
            self._token_store.clear()
        if principal is None:
            return
        try:
            self._provider.revoke(principal.token)
        except Exception:
            logger.warning(
                "token_revoke_failed",
                extra={"principal_id": principal.id},
                exc_info=True,
            )
        logger.info("logged_out", extra={"principal_id": principal.id})

    def current_principal(self) -> Principal | None:
        with self._lock:
            return self._principal

    def require_principal(self) -> Principal:
        """The active principal, or AuthenticationError.

        An expired principal is torn down here.
        """
        with self._lock:
            principal = self._principal
            if principal is not None and principal.is_expired(self._clock.now()):
                self._principal = None
                self._token_store.clear()
                logger.info("session_expired", extra={"principal_id": principal.id})
                principal = None
        if principal is None:
            raise AuthenticationError("no active session")
        return principal
