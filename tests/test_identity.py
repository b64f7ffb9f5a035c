"""Tests for the identity providers."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from tarologist.identity import (
    USER_CACHE_KEY,
    AuthErrorKind,
    FirebaseIdentityProvider,
    IdentityError,
    LocalIdentityProvider,
    error_kind_for,
    handle_from_email,
    pseudo_email,
)


def _error(message, status=400):
    return httpx.Response(status, json={"error": {"code": status, "message": message}})


class FakeIdentityServer:
    """Answers the handful of REST endpoints the provider calls."""

    def __init__(self):
        self.requests = []
        self.accounts = {"reader@example.com": {"localId": "uid-1", "password": "secret1"}}
        self.expired_tokens = set()
        self.offline = False

    def __call__(self, request):
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path.endswith("accounts:signInWithPassword"):
            body = json.loads(request.content)
            account = self.accounts.get(body["email"])
            if account is None:
                return _error("EMAIL_NOT_FOUND")
            if account["password"] != body["password"]:
                return _error("INVALID_LOGIN_CREDENTIALS")
            return self._session(body["email"], account, "token-1")
        if path.endswith("accounts:signUp"):
            body = json.loads(request.content)
            if body["email"] in self.accounts:
                return _error("EMAIL_EXISTS")
            if len(body["password"]) < 6:
                return _error("WEAK_PASSWORD : Password should be at least 6 characters")
            account = {"localId": f"uid-{len(self.accounts) + 1}", "password": body["password"]}
            self.accounts[body["email"]] = account
            return self._session(body["email"], account, "token-new")
        if path.endswith("accounts:lookup"):
            token = json.loads(request.content)["idToken"]
            if token in self.expired_tokens:
                return _error("TOKEN_EXPIRED")
            users = [{"localId": a["localId"], "email": e} for e, a in self.accounts.items()]
            return httpx.Response(200, json={"users": users[:1]})
        if path.endswith("/token"):
            form = parse_qs(request.content.decode("utf-8"))
            assert form["grant_type"] == ["refresh_token"]
            return httpx.Response(200, json={"id_token": "token-refreshed", "refresh_token": "refresh-2",
                                             "user_id": "uid-1"})
        return _error("UNKNOWN", status=404)

    @staticmethod
    def _session(email, account, token):
        return httpx.Response(200, json={"localId": account["localId"], "email": email,
                                         "idToken": token, "refreshToken": "refresh-1"})


@pytest.fixture
def server():
    return FakeIdentityServer()


@pytest.fixture
def provider(server, cache):
    client = httpx.Client(transport=httpx.MockTransport(server))
    return FirebaseIdentityProvider("test-key", cache=cache, client=client)


class TestHandles:
    def test_pseudo_email_round_trip(self):
        assert pseudo_email(" reader ") == "reader@example.com"
        assert handle_from_email("reader@example.com") == "reader"

    def test_foreign_domain_is_kept(self):
        assert handle_from_email("someone@other.org") == "someone@other.org"
        assert handle_from_email(None) == "неизвестно"

    def test_provider_messages(self):
        assert error_kind_for("EMAIL_EXISTS") == AuthErrorKind.ALREADY_IN_USE
        assert error_kind_for("WEAK_PASSWORD : Password should be at least 6 characters") == \
            AuthErrorKind.WEAK_PASSWORD
        assert error_kind_for("SOMETHING_NEW") == AuthErrorKind.UNKNOWN


class TestFirebaseProvider:
    def test_sign_in_sends_api_key(self, provider, server):
        user = provider.sign_in("reader@example.com", "secret1")
        assert user.uid == "uid-1"
        assert user.handle == "reader"
        assert server.requests[0].url.params["key"] == "test-key"

    @pytest.mark.parametrize("email,password,kind", [
        ("reader@example.com", "wrong", AuthErrorKind.WRONG_PASSWORD),
        ("ghost@example.com", "secret1", AuthErrorKind.USER_NOT_FOUND),
    ])
    def test_sign_in_errors(self, provider, email, password, kind):
        with pytest.raises(IdentityError) as info:
            provider.sign_in(email, password)
        assert info.value.kind == kind
        assert provider.current_user() is None

    def test_sign_up_errors(self, provider):
        with pytest.raises(IdentityError) as info:
            provider.sign_up("reader@example.com", "secret1")
        assert info.value.kind == AuthErrorKind.ALREADY_IN_USE
        with pytest.raises(IdentityError) as info:
            provider.sign_up("new@example.com", "123")
        assert info.value.kind == AuthErrorKind.WEAK_PASSWORD

    def test_network_failure(self, provider, server):
        server.offline = True
        with pytest.raises(IdentityError) as info:
            provider.sign_in("reader@example.com", "secret1")
        assert info.value.kind == AuthErrorKind.NETWORK
        assert info.value.http_status == 503

    def test_listeners_hear_changes(self, provider):
        seen = []
        provider.add_state_listener(lambda user: seen.append(user.uid if user else None))
        provider.sign_in("reader@example.com", "secret1")
        provider.sign_out()
        assert seen == [None, "uid-1", None]

    def test_user_survives_restart(self, provider, server, cache):
        provider.sign_in("reader@example.com", "secret1")
        assert cache.get(USER_CACHE_KEY) is not None

        client = httpx.Client(transport=httpx.MockTransport(server))
        restarted = FirebaseIdentityProvider("test-key", cache=cache, client=client)
        assert restarted.current_user().uid == "uid-1"

        restarted.sign_out()
        assert cache.get(USER_CACHE_KEY) is None

    def test_unreadable_stored_user_is_dropped(self, server, cache):
        cache.set(USER_CACHE_KEY, b"{broken")
        client = httpx.Client(transport=httpx.MockTransport(server))
        assert FirebaseIdentityProvider("test-key", cache=cache, client=client).current_user() is None
        assert cache.get(USER_CACHE_KEY) is None

    def test_reload_refreshes_expired_token(self, provider, server):
        provider.sign_in("reader@example.com", "secret1")
        server.expired_tokens.add("token-1")
        user = provider.reload()
        assert user.id_token == "token-refreshed"
        assert user.refresh_token == "refresh-2"
        assert provider.current_user().id_token == "token-refreshed"

    def test_reload_missing_account(self, provider, server):
        provider.sign_in("reader@example.com", "secret1")
        server.accounts.clear()
        with pytest.raises(IdentityError) as info:
            provider.reload()
        assert info.value.kind == AuthErrorKind.USER_NOT_FOUND

    def test_reload_without_user(self, provider):
        with pytest.raises(IdentityError):
            provider.reload()


class TestLocalProvider:
    def test_sign_up_then_sign_in(self):
        local = LocalIdentityProvider()
        created = local.sign_up("reader@example.com", "secret1")
        local.sign_out()
        assert local.sign_in("reader@example.com", "secret1").uid == created.uid

    @pytest.mark.parametrize("email,password,kind", [
        ("not-an-email", "secret1", AuthErrorKind.INVALID_CREDENTIAL_FORMAT),
        ("reader@example.com", "", AuthErrorKind.INVALID_CREDENTIAL_FORMAT),
        ("new@example.com", "123", AuthErrorKind.WEAK_PASSWORD),
        ("reader@example.com", "secret1", AuthErrorKind.ALREADY_IN_USE),
    ])
    def test_sign_up_errors(self, email, password, kind):
        local = LocalIdentityProvider()
        local.sign_up("reader@example.com", "secret1")
        with pytest.raises(IdentityError) as info:
            local.sign_up(email, password)
        assert info.value.kind == kind

    def test_disabled_account(self):
        local = LocalIdentityProvider()
        local.sign_up("reader@example.com", "secret1")
        local.disable("reader@example.com")
        with pytest.raises(IdentityError) as info:
            local.reload()
        assert info.value.kind == AuthErrorKind.DISABLED
        local.sign_out()
        with pytest.raises(IdentityError) as info:
            local.sign_in("reader@example.com", "secret1")
        assert info.value.kind == AuthErrorKind.DISABLED

    def test_error_response_body(self):
        error = IdentityError(AuthErrorKind.ALREADY_IN_USE)
        body = error.to_response()
        assert body["error"]["kind"] == "already_in_use"
        assert body["error"]["message"] == "Этот логин уже занят"
        assert error.http_status == 400
