"""
tests/test_auth_context.py -- Unit tests for auth/context.py.

AuthContext is exercised directly over a Session dict, a cookie dict and an
in-memory UserStore. No HTTP involved: cookie writes are inspected through
pending_cookies.

Coverage:
  - Session resolution: exact user, both slots at once, once per request,
    stale ids raise IdentityNotFoundError
  - Cookie resolution: live match logs in and rotates the token keeping the
    expiry; unknown or expired tokens write nothing
  - Session takes precedence over the cookie; admins never come from cookies
  - Remember-cookie handling: refresh / issue / forget branches
  - Logout: both slots cleared, token forgotten, session reset on kill
  - resolve_discarding_stale treats a deleted identity as anonymous
  - login_as rejects an identity in the wrong slot
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.exceptions import IdentityNotFoundError
from auth.models import IdentityKind
from auth.tokens import remember_me


def _remembered(user_store, user):
    remember_me(user_store, user)
    return user_store.get_by_id(user.id)


class TestResolveSession:
    def test_returns_the_session_user_and_leaves_cookie_alone(self, seeded, make_auth):
        auth = make_auth({"user_id": seeded.member.id})
        user = auth.resolve()
        assert user.id == seeded.member.id
        assert auth.current_user.id == seeded.member.id
        assert auth.pending_cookies == []

    def test_resolves_user_once_per_request(self, seeded, make_auth, user_store, monkeypatch):
        calls = []
        original = user_store.get_by_id

        def spy(user_id):
            calls.append(user_id)
            return original(user_id)

        monkeypatch.setattr(user_store, "get_by_id", spy)
        auth = make_auth({"user_id": seeded.member.id})
        auth.resolve()
        auth.resolve()
        auth.is_logged_in(IdentityKind.USER)
        assert calls == [seeded.member.id]

    def test_stamps_last_login(self, seeded, make_auth, user_store):
        before = datetime.now(timezone.utc)
        make_auth({"user_id": seeded.member.id}).resolve()
        assert user_store.get_by_id(seeded.member.id).last_login >= before

    def test_user_and_admin_resolve_independently(self, seeded, make_auth):
        auth = make_auth({"user_id": seeded.member.id, "admin_id": seeded.admin.id})
        auth.resolve()
        assert auth.current_user.id == seeded.member.id
        assert auth.current_admin.id == seeded.admin.id

    def test_admin_only_session(self, seeded, make_auth):
        auth = make_auth({"admin_id": seeded.admin.id})
        assert auth.is_logged_in(IdentityKind.ADMIN)
        assert auth.current_user is None

    def test_stale_user_id_raises(self, seeded, make_auth, user_store):
        user_store.delete_user(seeded.member.id)
        auth = make_auth({"user_id": seeded.member.id})
        with pytest.raises(IdentityNotFoundError) as exc_info:
            auth.resolve()
        assert exc_info.value.kind == "user"

    def test_stale_admin_id_raises(self, seeded, make_auth, user_store):
        user_store.delete_admin(seeded.admin.id)
        auth = make_auth({"admin_id": seeded.admin.id})
        with pytest.raises(IdentityNotFoundError):
            auth.is_logged_in(IdentityKind.ADMIN)

    def test_empty_session_is_anonymous(self, seeded, make_auth):
        auth = make_auth()
        assert auth.resolve() is None
        assert not auth.is_logged_in(IdentityKind.USER)
        assert not auth.is_logged_in(IdentityKind.ADMIN)


class TestResolveCookie:
    def test_live_token_logs_in_and_rotates_keeping_expiry(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        old_token, expiry = user.remember_token, user.remember_token_expires_at

        auth = make_auth(cookies={"auth_token": old_token})
        resolved = auth.resolve()

        assert resolved.id == user.id
        assert auth.session["user_id"] == user.id
        stored = user_store.get_by_id(user.id)
        assert stored.remember_token != old_token
        assert stored.remember_token_expires_at == expiry
        assert auth.pending_cookies == [("auth_token", stored.remember_token, expiry)]

    def test_unknown_token_writes_nothing(self, seeded, make_auth, user_store):
        auth = make_auth(cookies={"auth_token": "abc"})
        assert auth.resolve() is None
        assert auth.pending_cookies == []
        assert user_store.get_by_id(seeded.member.id).last_login is None
        assert "user_id" not in auth.session

    def test_expired_token_writes_nothing(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        user.remember_token_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        user_store.save_user(user)

        auth = make_auth(cookies={"auth_token": user.remember_token})
        assert auth.resolve() is None
        assert auth.pending_cookies == []
        assert user_store.get_by_id(user.id).remember_token == user.remember_token

    def test_empty_cookie_is_ignored(self, seeded, make_auth):
        auth = make_auth(cookies={"auth_token": ""})
        assert auth.resolve_cookie() is None
        assert auth.pending_cookies == []

    def test_session_takes_precedence_over_cookie(self, seeded, make_auth, user_store):
        owner = _remembered(user_store, seeded.owner)
        auth = make_auth({"user_id": seeded.member.id}, {"auth_token": owner.remember_token})
        assert auth.resolve().id == seeded.member.id
        assert auth.pending_cookies == []
        assert user_store.get_by_id(owner.id).remember_token == owner.remember_token

    def test_cookie_never_logs_in_an_admin(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        auth = make_auth(cookies={"auth_token": user.remember_token})
        assert not auth.is_logged_in(IdentityKind.ADMIN)
        assert auth.current_user is None
        assert auth.pending_cookies == []


class TestRememberCookie:
    def test_validity_check_is_idempotent(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        auth = make_auth({"user_id": user.id}, {"auth_token": user.remember_token})
        auth.resolve()
        first = auth.remember_cookie_is_valid()
        assert first is True
        assert auth.remember_cookie_is_valid() is first

    def test_invalid_without_current_user(self, seeded, make_auth):
        assert make_auth(cookies={"auth_token": "abc"}).remember_cookie_is_valid() is False

    def test_issue_new_cookie_sets_future_expiry(self, seeded, make_auth, user_store):
        auth = make_auth({"user_id": seeded.member.id})
        auth.resolve()
        auth.handle_remember_cookie(True)

        stored = user_store.get_by_id(seeded.member.id)
        assert stored.remember_token
        assert stored.remember_token_expires_at > datetime.now(timezone.utc) + timedelta(days=13)
        assert auth.pending_cookies == [("auth_token", stored.remember_token, stored.remember_token_expires_at)]
        assert auth.remember_cookie_is_valid()

    def test_reissue_replaces_expiry_but_refresh_keeps_it(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        user.remember_token_expires_at = datetime.now(timezone.utc) + timedelta(days=1)
        user_store.save_user(user)

        refreshing = make_auth({"user_id": user.id}, {"auth_token": user.remember_token})
        refreshing.resolve()
        refreshing.handle_remember_cookie(True)
        assert user_store.get_by_id(user.id).remember_token_expires_at == user.remember_token_expires_at

        reissuing = make_auth({"user_id": user.id}, {"auth_token": "stale"})
        reissuing.resolve()
        reissuing.handle_remember_cookie(True)
        assert user_store.get_by_id(user.id).remember_token_expires_at > user.remember_token_expires_at

    def test_stale_cookie_without_remember_me_forgets(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        auth = make_auth({"user_id": user.id}, {"auth_token": "stale"})
        auth.resolve()
        auth.handle_remember_cookie(False)

        stored = user_store.get_by_id(user.id)
        assert stored.remember_token is None
        assert stored.remember_token_expires_at is None
        assert auth.pending_cookies == [("auth_token", "", None)]

    def test_no_current_user_is_a_noop(self, seeded, make_auth):
        auth = make_auth()
        auth.handle_remember_cookie(True)
        assert auth.pending_cookies == []


class TestResolveDiscardingStale:
    def test_stale_user_counts_as_anonymous(self, seeded, make_auth, user_store):
        user_store.delete_user(seeded.member.id)
        auth = make_auth({"user_id": seeded.member.id})
        assert auth.resolve_discarding_stale() is None
        assert auth.current_user is None

    def test_logout_after_stale_clears_slots(self, seeded, make_auth, user_store):
        user_store.delete_user(seeded.member.id)
        auth = make_auth({"user_id": seeded.member.id, "admin_id": seeded.admin.id})
        auth.resolve_discarding_stale()
        auth.logout_killing_session()
        assert auth.session == {}
        assert auth.session.reset_requested

    def test_live_session_resolves_normally(self, seeded, make_auth):
        auth = make_auth({"user_id": seeded.member.id})
        assert auth.resolve_discarding_stale().id == seeded.member.id


class TestLoginAs:
    def test_user_in_admin_slot_is_rejected(self, seeded, make_auth):
        auth = make_auth()
        with pytest.raises(ValueError):
            auth.login_as(seeded.member, IdentityKind.ADMIN)
        assert auth.session == {}

    def test_admin_in_user_slot_is_rejected(self, seeded, make_auth):
        with pytest.raises(ValueError):
            make_auth().login_as(seeded.admin)

    def test_admin_login_fills_only_admin_slot(self, seeded, make_auth):
        auth = make_auth()
        auth.login_as(seeded.admin, IdentityKind.ADMIN)
        assert auth.session == {"admin_id": seeded.admin.id}
        assert auth.current_admin is seeded.admin
        assert auth.current_user is None

    def test_none_clears_the_slot(self, seeded, make_auth):
        auth = make_auth({"user_id": seeded.member.id})
        auth.resolve()
        auth.login_as(None)
        assert "user_id" not in auth.session
        assert auth.current_user is None


class TestLogout:
    @pytest.mark.parametrize("slots", [("user_id",), ("admin_id",), ("user_id", "admin_id")])
    def test_clears_both_slots(self, seeded, make_auth, slots):
        ids = {"user_id": seeded.member.id, "admin_id": seeded.admin.id}
        auth = make_auth({slot: ids[slot] for slot in slots} | {"theme": "dark"})
        auth.resolve()
        auth.logout_keeping_session()
        assert "user_id" not in auth.session
        assert "admin_id" not in auth.session
        assert auth.session["theme"] == "dark"
        assert auth.current_user is None
        assert auth.current_admin is None

    def test_forgets_token_and_stamps_last_logout(self, seeded, make_auth, user_store):
        user = _remembered(user_store, seeded.member)
        auth = make_auth({"user_id": user.id}, {"auth_token": user.remember_token})
        auth.resolve()
        auth.logout_keeping_session()

        stored = user_store.get_by_id(user.id)
        assert stored.remember_token is None
        assert stored.last_logout is not None
        assert auth.pending_cookies[-1] == ("auth_token", None, None)
        assert "auth_token" not in auth.cookies

    def test_killing_session_resets_it(self, seeded, make_auth):
        auth = make_auth({"user_id": seeded.member.id, "theme": "dark"})
        auth.resolve()
        auth.logout(kill_session=True)
        assert auth.session == {}
        assert auth.session.reset_requested

    def test_anonymous_logout_still_kills_cookie(self, seeded, make_auth):
        auth = make_auth(cookies={"auth_token": "abc"})
        auth.logout(kill_session=False)
        assert auth.pending_cookies == [("auth_token", None, None)]
        assert not auth.session.reset_requested
