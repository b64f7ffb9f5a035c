"""Identity provider client.

Users pick a handle; the provider only accepts e-mail credentials, so the
handle is turned into a pseudo-email (`handle@<domain>`) before every call.

`LocalIdentityProvider` keeps accounts in process memory for local runs.
`FirebaseIdentityProvider` speaks to the Firebase Auth REST API over httpx
and keeps the signed-in user in the local cache so a restarted process can
`reload()` it against the server.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import secrets
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from .cache import LocalCache
from .errors import TarologistError

log = logging.getLogger("tarologist.identity")

IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"
TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
USER_CACHE_KEY = "identityUser"


def pseudo_email(handle: str, domain: str = "example.com") -> str:
    return f"{handle.strip()}@{domain}"


def handle_from_email(email: Optional[str], domain: str = "example.com") -> str:
    if not email:
        return "неизвестно"
    suffix = f"@{domain}"
    return email[: -len(suffix)] if email.endswith(suffix) else email


class AuthErrorKind(str, enum.Enum):
    INVALID_CREDENTIAL_FORMAT = "invalid_credential_format"
    WRONG_PASSWORD = "wrong_password"
    USER_NOT_FOUND = "user_not_found"
    ALREADY_IN_USE = "already_in_use"
    DISABLED = "disabled"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    WEAK_PASSWORD = "weak_password"
    TOKEN_EXPIRED = "token_expired"
    INVALID_TOKEN = "invalid_token"
    UNKNOWN = "unknown"


USER_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIAL_FORMAT: "Некорректный логин или пароль",
    AuthErrorKind.WRONG_PASSWORD: "Неверный пароль",
    AuthErrorKind.USER_NOT_FOUND: "Пользователь не найден",
    AuthErrorKind.ALREADY_IN_USE: "Этот логин уже занят",
    AuthErrorKind.DISABLED: "Аккаунт отключен",
    AuthErrorKind.RATE_LIMITED: "Слишком много попыток, попробуйте позже",
    AuthErrorKind.NETWORK: "Нет соединения с сервером",
    AuthErrorKind.WEAK_PASSWORD: "Пароль должен содержать не менее 6 символов",
    AuthErrorKind.TOKEN_EXPIRED: "Сессия истекла, войдите снова",
    AuthErrorKind.INVALID_TOKEN: "Сессия недействительна, войдите снова",
    AuthErrorKind.UNKNOWN: "Произошла ошибка, попробуйте еще раз",
}

_HTTP_STATUS = {
    AuthErrorKind.RATE_LIMITED: 429,
    AuthErrorKind.NETWORK: 503,
    AuthErrorKind.TOKEN_EXPIRED: 401,
    AuthErrorKind.INVALID_TOKEN: 401,
    AuthErrorKind.DISABLED: 403,
}

_PROVIDER_CODES = {
    "INVALID_EMAIL": AuthErrorKind.INVALID_CREDENTIAL_FORMAT,
    "MISSING_EMAIL": AuthErrorKind.INVALID_CREDENTIAL_FORMAT,
    "MISSING_PASSWORD": AuthErrorKind.INVALID_CREDENTIAL_FORMAT,
    "INVALID_PASSWORD": AuthErrorKind.WRONG_PASSWORD,
    "INVALID_LOGIN_CREDENTIALS": AuthErrorKind.WRONG_PASSWORD,
    "EMAIL_NOT_FOUND": AuthErrorKind.USER_NOT_FOUND,
    "USER_NOT_FOUND": AuthErrorKind.USER_NOT_FOUND,
    "EMAIL_EXISTS": AuthErrorKind.ALREADY_IN_USE,
    "USER_DISABLED": AuthErrorKind.DISABLED,
    "TOO_MANY_ATTEMPTS_TRY_LATER": AuthErrorKind.RATE_LIMITED,
    "WEAK_PASSWORD": AuthErrorKind.WEAK_PASSWORD,
    "TOKEN_EXPIRED": AuthErrorKind.TOKEN_EXPIRED,
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": AuthErrorKind.TOKEN_EXPIRED,
    "INVALID_ID_TOKEN": AuthErrorKind.INVALID_TOKEN,
    "INVALID_REFRESH_TOKEN": AuthErrorKind.INVALID_TOKEN,
}

# Reload failures that mean the local session is dead and must be dropped.
SESSION_INVALIDATING = frozenset({
    AuthErrorKind.TOKEN_EXPIRED,
    AuthErrorKind.USER_NOT_FOUND,
    AuthErrorKind.INVALID_TOKEN,
})


class IdentityError(TarologistError):
    code = "AUTH_ERROR"

    def __init__(self, kind: AuthErrorKind, detail: str = "") -> None:
        super().__init__(USER_MESSAGES[kind])
        self.kind = kind
        self.detail = detail
        self.http_status = _HTTP_STATUS.get(kind, 400)

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["error"]["kind"] = self.kind.value
        return body


def error_kind_for(provider_message: str) -> AuthErrorKind:
    # messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
    code = provider_message.split(":")[0].strip().split(" ")[0]
    return _PROVIDER_CODES.get(code, AuthErrorKind.UNKNOWN)


@dataclass
class User:
    uid: str
    email: Optional[str]
    id_token: str
    refresh_token: str

    @property
    def handle(self) -> str:
        return (self.email or "").split("@")[0]


StateListener = Callable[[Optional[User]], None]


class IdentityProvider:
    """Contract the app depends on; provider internals are not modelled."""

    def __init__(self) -> None:
        self._listeners: Dict[int, StateListener] = {}
        self._next_handle = 0
        self._listener_lock = threading.Lock()

    def sign_in(self, email: str, password: str) -> User:
        raise NotImplementedError

    def sign_up(self, email: str, password: str) -> User:
        raise NotImplementedError

    def sign_out(self) -> None:
        raise NotImplementedError

    def current_user(self) -> Optional[User]:
        raise NotImplementedError

    def reload(self) -> User:
        raise NotImplementedError

    def add_state_listener(self, listener: StateListener) -> int:
        """Register `listener`; it is called now with the current user and on every change."""
        with self._listener_lock:
            handle = self._next_handle
            self._next_handle += 1
            self._listeners[handle] = listener
        listener(self.current_user())
        return handle

    def remove_state_listener(self, handle: int) -> None:
        with self._listener_lock:
            self._listeners.pop(handle, None)

    def _emit(self, user: Optional[User]) -> None:
        with self._listener_lock:
            listeners: List[StateListener] = list(self._listeners.values())
        for listener in listeners:
            listener(user)


def _well_formed(email: str, password: str) -> bool:
    local, at, domain = email.partition("@")
    return bool(local and at and domain and password)


class LocalIdentityProvider(IdentityProvider):
    """In-process accounts for local runs without a Firebase project."""

    MIN_PASSWORD_LENGTH = 6

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._user: Optional[User] = None

    @staticmethod
    def _digest(password: str) -> str:
        return hashlib.sha256(password.encode("utf-8")).hexdigest()

    def _session_for(self, email: str, account: Dict[str, Any]) -> User:
        return User(uid=account["uid"], email=email, id_token=secrets.token_urlsafe(24),
                    refresh_token=secrets.token_urlsafe(24))

    def _set_user(self, user: Optional[User]) -> None:
        with self._lock:
            self._user = user
        self._emit(user)

    def sign_in(self, email: str, password: str) -> User:
        if not _well_formed(email, password):
            raise IdentityError(AuthErrorKind.INVALID_CREDENTIAL_FORMAT)
        with self._lock:
            account = self._accounts.get(email)
        if account is None:
            raise IdentityError(AuthErrorKind.USER_NOT_FOUND)
        if account["disabled"]:
            raise IdentityError(AuthErrorKind.DISABLED)
        if account["password"] != self._digest(password):
            raise IdentityError(AuthErrorKind.WRONG_PASSWORD)
        user = self._session_for(email, account)
        self._set_user(user)
        return user

    def sign_up(self, email: str, password: str) -> User:
        if not _well_formed(email, password):
            raise IdentityError(AuthErrorKind.INVALID_CREDENTIAL_FORMAT)
        if len(password) < self.MIN_PASSWORD_LENGTH:
            raise IdentityError(AuthErrorKind.WEAK_PASSWORD)
        with self._lock:
            if email in self._accounts:
                raise IdentityError(AuthErrorKind.ALREADY_IN_USE)
            account = {"uid": secrets.token_hex(14), "password": self._digest(password), "disabled": False}
            self._accounts[email] = account
        user = self._session_for(email, account)
        self._set_user(user)
        return user

    def sign_out(self) -> None:
        self._set_user(None)

    def current_user(self) -> Optional[User]:
        with self._lock:
            return self._user

    def reload(self) -> User:
        user = self.current_user()
        if user is None:
            raise IdentityError(AuthErrorKind.USER_NOT_FOUND, "no current user")
        with self._lock:
            account = self._accounts.get(user.email or "")
        if account is None or account["uid"] != user.uid:
            raise IdentityError(AuthErrorKind.USER_NOT_FOUND, "account no longer exists")
        if account["disabled"]:
            raise IdentityError(AuthErrorKind.DISABLED, "account disabled")
        return user

    def disable(self, email: str) -> None:
        with self._lock:
            self._accounts[email]["disabled"] = True

    def delete_account(self, email: str) -> None:
        with self._lock:
            self._accounts.pop(email, None)


class FirebaseIdentityProvider(IdentityProvider):
    def __init__(self, api_key: str, cache: Optional[LocalCache] = None,
                 client: Optional[httpx.Client] = None, timeout: float = 15.0) -> None:
        super().__init__()
        self.api_key = api_key
        self.cache = cache
        self._http = client or httpx.Client(timeout=timeout)
        self._lock = threading.Lock()
        self._user: Optional[User] = self._restore()

    # -- persistence ---------------------------------------------------

    def _restore(self) -> Optional[User]:
        if self.cache is None:
            return None
        raw = self.cache.get(USER_CACHE_KEY)
        if raw is None:
            return None
        try:
            return User(**json.loads(raw))
        except (ValueError, TypeError) as e:
            log.warning("dropping unreadable stored user: %s", e)
            self.cache.delete(USER_CACHE_KEY)
            return None

    def _set_user(self, user: Optional[User]) -> None:
        with self._lock:
            changed = (self._user is None) != (user is None) or (
                user is not None and self._user is not None and user.uid != self._user.uid
            )
            self._user = user
        if self.cache is not None:
            if user is None:
                self.cache.delete(USER_CACHE_KEY)
            else:
                self.cache.set(USER_CACHE_KEY, json.dumps(asdict(user)).encode("utf-8"))
        if changed:
            self._emit(user)

    # -- transport -----------------------------------------------------

    def _post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = self._http.post(url, params={"key": self.api_key}, **kwargs)
        except httpx.TransportError as e:
            log.warning("identity provider unreachable: %s", e)
            raise IdentityError(AuthErrorKind.NETWORK, str(e)) from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if resp.is_error:
            message = (payload.get("error") or {}).get("message", "") if isinstance(payload, dict) else ""
            kind = error_kind_for(message)
            log.warning("identity provider rejected request: %s (%s)", message or resp.status_code, kind.value)
            raise IdentityError(kind, message)
        return payload

    def _account_call(self, endpoint: str, email: str, password: str) -> User:
        payload = self._post(
            f"{IDENTITY_URL}/accounts:{endpoint}",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        user = User(
            uid=payload["localId"],
            email=payload.get("email", email),
            id_token=payload["idToken"],
            refresh_token=payload["refreshToken"],
        )
        self._set_user(user)
        return user

    # -- contract ------------------------------------------------------

    def sign_in(self, email: str, password: str) -> User:
        return self._account_call("signInWithPassword", email, password)

    def sign_up(self, email: str, password: str) -> User:
        return self._account_call("signUp", email, password)

    def sign_out(self) -> None:
        self._set_user(None)

    def current_user(self) -> Optional[User]:
        with self._lock:
            return self._user

    def _refresh(self, user: User) -> User:
        payload = self._post(
            TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": user.refresh_token},
        )
        return User(
            uid=payload.get("user_id", user.uid),
            email=user.email,
            id_token=payload["id_token"],
            refresh_token=payload.get("refresh_token", user.refresh_token),
        )

    def reload(self) -> User:
        """Re-validate the current user against the server, refreshing the token once if needed."""
        user = self.current_user()
        if user is None:
            raise IdentityError(AuthErrorKind.USER_NOT_FOUND, "no current user")

        try:
            payload = self._post(f"{IDENTITY_URL}/accounts:lookup", json={"idToken": user.id_token})
        except IdentityError as e:
            if e.kind not in (AuthErrorKind.TOKEN_EXPIRED, AuthErrorKind.INVALID_TOKEN):
                raise
            user = self._refresh(user)
            payload = self._post(f"{IDENTITY_URL}/accounts:lookup", json={"idToken": user.id_token})

        accounts = payload.get("users") or []
        if not accounts:
            raise IdentityError(AuthErrorKind.USER_NOT_FOUND, "account no longer exists")
        account = accounts[0]
        if account.get("disabled"):
            raise IdentityError(AuthErrorKind.DISABLED, "account disabled")

        user = User(uid=account.get("localId", user.uid), email=account.get("email", user.email),
                    id_token=user.id_token, refresh_token=user.refresh_token)
        self._set_user(user)
        return user
