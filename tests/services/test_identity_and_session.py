"""
Tests for DirectoryIdentityProvider and SessionStore.

Invariants tested:
- Tokens are stored only as digests and resolve back to the principal.
- Revoked, expired and deactivated tokens resolve to nothing.
- A session holds at most one principal; logout always clears it.
"""

import json
import os
import stat

import pytest
from sqlalchemy import select

from erp_kernel.domain.principal import Credentials
from erp_kernel.exceptions import (
    AuthenticationError,
    IdentityProviderUnavailableError,
    ValidationError,
)
from erp_kernel.models.identity import SessionTokenModel
from erp_kernel.services.identity_service import (
    hash_password,
    token_digest,
    verify_password,
)
from erp_kernel.services.session_store import (
    FileTokenStore,
    MemoryTokenStore,
    SessionStore,
)


@pytest.fixture
def registered(identity_provider):
    identity_provider.register_user("approver.one", "Asha Rao", "Approver", "s3cret!")
    return identity_provider


class TestPasswordHashing:
    def test_round_trip(self):
        encoded = hash_password("hunter2", iterations=1_000)
        assert encoded.startswith("pbkdf2_sha256$1000$")
        assert verify_password("hunter2", encoded)
        assert not verify_password("hunter3", encoded)

    def test_salted(self):
        assert hash_password("same", iterations=1_000) != hash_password("same", iterations=1_000)

    def test_malformed_hash(self):
        assert verify_password("x", "not-a-hash") is False
        assert verify_password("x", "md5$1$salt$abc") is False

    @pytest.mark.parametrize("encoded", [
        "pbkdf2_sha256$x$salt$digest",
        "pbkdf2_sha256$$salt$digest",
        "pbkdf2_sha256$0$salt$digest",
        "pbkdf2_sha256$1000$s\u00e4lt$digest",
        "pbkdf2_sha256$1000$salt$d\u00efgest",
    ])
    def test_corrupt_stored_hash_is_mismatch(self, encoded):
        assert verify_password("x", encoded) is False


class TestDirectoryIdentityProvider:
    def test_authenticate(self, registered, clock):
        principal = registered.authenticate(Credentials("approver.one", "s3cret!"))
        assert principal.id == "approver.one"
        assert principal.display_name == "Asha Rao"
        assert principal.role == "Approver"
        assert principal.token
        assert (principal.expires_at - clock.now()).total_seconds() == 3600

    def test_token_stored_as_digest(self, registered, session):
        principal = registered.authenticate(Credentials("approver.one", "s3cret!"))
        stored = session.execute(select(SessionTokenModel.token_hash)).scalars().all()
        assert stored == [token_digest(principal.token)]
        assert principal.token not in stored

    def test_wrong_password(self, registered):
        with pytest.raises(AuthenticationError) as exc_info:
            registered.authenticate(Credentials("approver.one", "guess"))
        assert exc_info.value.reason == "invalid credentials"

    def test_unknown_login(self, registered):
        with pytest.raises(AuthenticationError) as exc_info:
            registered.authenticate(Credentials("nobody", "s3cret!"))
        assert exc_info.value.reason == "invalid credentials"

    def test_inactive_user_cannot_log_in(self, registered):
        registered.set_active("approver.one", False)
        with pytest.raises(AuthenticationError):
            registered.authenticate(Credentials("approver.one", "s3cret!"))

    def test_duplicate_login(self, registered):
        with pytest.raises(ValidationError) as exc_info:
            registered.register_user("approver.one", "Other", "Viewer", "pw")
        assert exc_info.value.field == "login"

    @pytest.mark.parametrize("login,password,field", [
        ("  ", "pw", "login"),
        ("someone", "", "password"),
    ])
    def test_register_requires_login_and_password(self, identity_provider, login, password, field):
        with pytest.raises(ValidationError) as exc_info:
            identity_provider.register_user(login, "Someone", "Viewer", password)
        assert exc_info.value.field == field

    def test_resolve_token(self, registered):
        token = registered.authenticate(Credentials("approver.one", "s3cret!")).token
        principal = registered.resolve_token(token)
        assert principal is not None
        assert principal.id == "approver.one"
        assert principal.token == token

    def test_resolve_unknown_token(self, registered):
        assert registered.resolve_token("forged") is None
        assert registered.resolve_token("") is None

    def test_revoked_token(self, registered):
        token = registered.authenticate(Credentials("approver.one", "s3cret!")).token
        registered.revoke(token)
        assert registered.resolve_token(token) is None

    def test_expired_token(self, registered, clock):
        token = registered.authenticate(Credentials("approver.one", "s3cret!")).token
        clock.advance(3600)
        assert registered.resolve_token(token) is None

    def test_deactivated_user_token(self, registered):
        token = registered.authenticate(Credentials("approver.one", "s3cret!")).token
        registered.set_active("approver.one", False)
        assert registered.resolve_token(token) is None

    def test_each_login_issues_a_new_token(self, registered):
        first = registered.authenticate(Credentials("approver.one", "s3cret!")).token
        second = registered.authenticate(Credentials("approver.one", "s3cret!")).token
        assert first != second
        assert registered.resolve_token(first) is not None
        assert registered.resolve_token(second) is not None


class _UnavailableProvider:
    def authenticate(self, credentials):
        raise IdentityProviderUnavailableError()

    def resolve_token(self, token):
        raise IdentityProviderUnavailableError()

    def revoke(self, token):
        raise IdentityProviderUnavailableError()


class TestSessionStore:
    def test_login_and_require(self, registered, clock):
        store = SessionStore(registered, clock=clock)
        principal = store.login(Credentials("approver.one", "s3cret!"))
        assert store.current_principal() == principal
        assert store.require_principal() == principal

    def test_require_without_login(self, registered, clock):
        store = SessionStore(registered, clock=clock)
        assert store.current_principal() is None
        with pytest.raises(AuthenticationError) as exc_info:
            store.require_principal()
        assert exc_info.value.reason == "no active session"

    def test_failed_login_leaves_no_principal(self, registered, clock):
        store = SessionStore(registered, clock=clock)
        with pytest.raises(AuthenticationError):
            store.login(Credentials("approver.one", "wrong"))
        assert store.current_principal() is None

    def test_logout_revokes(self, registered, clock):
        tokens = MemoryTokenStore()
        store = SessionStore(registered, tokens, clock)
        token = store.login(Credentials("approver.one", "s3cret!")).token

        store.logout()

        assert store.current_principal() is None
        assert tokens.load() is None
        assert registered.resolve_token(token) is None

    def test_logout_when_revoke_fails(self, registered, clock, captured_logs):
        principal = registered.authenticate(Credentials("approver.one", "s3cret!"))
        tokens = MemoryTokenStore(principal.token)
        store = SessionStore(registered, tokens, clock)
        assert store.start() == principal

        store._provider = _UnavailableProvider()
        store.logout()

        assert store.current_principal() is None
        assert tokens.load() is None
        messages = [r["message"] for r in captured_logs()]
        assert "token_revoke_failed" in messages
        assert "logged_out" in messages

    def test_logout_without_session_is_noop(self, registered, clock):
        SessionStore(registered, clock=clock).logout()

    def test_expired_principal_torn_down(self, registered, clock):
        tokens = MemoryTokenStore()
        store = SessionStore(registered, tokens, clock)
        store.login(Credentials("approver.one", "s3cret!"))

        clock.advance(3600)

        with pytest.raises(AuthenticationError):
            store.require_principal()
        assert store.current_principal() is None
        assert tokens.load() is None

    def test_restore_from_file(self, registered, clock, tmp_path):
        path = tmp_path / "session" / "token.json"
        first = SessionStore(registered, FileTokenStore(path), clock)
        principal = first.login(Credentials("approver.one", "s3cret!"))
        assert json.loads(path.read_text()) == {"token": principal.token}

        second = SessionStore(registered, FileTokenStore(path), clock)
        restored = second.start()
        assert restored is not None
        assert restored.id == "approver.one"
        assert second.require_principal().token == principal.token

    def test_restore_rejected_token_clears_file(self, registered, clock, tmp_path):
        path = tmp_path / "token.json"
        path.write_text(json.dumps({"token": "stale"}))
        store = SessionStore(registered, FileTokenStore(path), clock)

        assert store.start() is None
        assert not path.exists()

    def test_restore_deferred_when_provider_down(self, clock, tmp_path):
        path = tmp_path / "token.json"
        path.write_text(json.dumps({"token": "kept"}))
        store = SessionStore(_UnavailableProvider(), FileTokenStore(path), clock)

        assert store.start() is None
        assert path.exists()

    def test_unreadable_token_file(self, registered, clock, tmp_path):
        path = tmp_path / "token.json"
        path.write_text("{not json")
        assert FileTokenStore(path).load() is None
        assert SessionStore(registered, FileTokenStore(path), clock).start() is None

    @pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
    def test_token_file_owner_only(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text("{}")
        os.chmod(path, 0o644)

        FileTokenStore(path).save("secret-token")

        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert FileTokenStore(path).load() == "secret-token"

    def test_clear_missing_file(self, tmp_path):
        FileTokenStore(tmp_path / "absent.json").clear()
