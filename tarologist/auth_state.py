"""Process-wide "is a user signed in" state.

Updated by explicit sign-in/sign-up/sign-out calls and by the identity
provider's change notifications. `bootstrap()` runs once at start-up and
reloads any stored session against the provider.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from .cache import LOGGED_IN_KEY, LocalCache
from .errors import UnauthenticatedError
from .identity import (
    SESSION_INVALIDATING,
    IdentityError,
    IdentityProvider,
    User,
    pseudo_email,
)

log = logging.getLogger("tarologist.auth")

Observer = Callable[[bool], None]


class AuthState:
    def __init__(self, identity: IdentityProvider, cache: LocalCache, email_domain: str = "example.com") -> None:
        self.identity = identity
        self.cache = cache
        self.email_domain = email_domain
        self._lock = threading.Lock()
        self._logged_in = cache.get_flag(LOGGED_IN_KEY)
        self._observers: List[Observer] = []
        self._handle: Optional[int] = None

    @property
    def logged_in(self) -> bool:
        with self._lock:
            return self._logged_in

    def _set(self, value: bool) -> None:
        with self._lock:
            changed = value != self._logged_in
            self._logged_in = value
            observers = list(self._observers)
        self.cache.set_flag(LOGGED_IN_KEY, value)
        if changed:
            log.info("auth state changed: logged_in=%s", value)
            for observer in observers:
                observer(value)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        if self._handle is not None:
            return
        self._handle = self.identity.add_state_listener(lambda user: self._set(user is not None))

    def stop(self) -> None:
        if self._handle is not None:
            self.identity.remove_state_listener(self._handle)
            self._handle = None

    def bootstrap(self) -> bool:
        """Start listening and reload the stored session; returns the resulting state."""
        self.start()
        if self.identity.current_user() is not None:
            try:
                self.identity.reload()
            except IdentityError as e:
                if e.kind in SESSION_INVALIDATING:
                    log.warning("stored session rejected (%s); signing out", e.kind.value)
                    self.identity.sign_out()
                else:
                    log.warning("could not reload stored session (%s); keeping it", e.kind.value)
        self._set(self.identity.current_user() is not None)
        return self.logged_in

    # -- explicit actions ------------------------------------------------

    def sign_in(self, handle: str, password: str) -> User:
        user = self.identity.sign_in(pseudo_email(handle, self.email_domain), password)
        self._set(True)
        return user

    def sign_up(self, handle: str, password: str) -> User:
        user = self.identity.sign_up(pseudo_email(handle, self.email_domain), password)
        self._set(True)
        return user

    def sign_out(self) -> None:
        self.identity.sign_out()
        self._set(False)

    def current_user_id(self) -> Optional[str]:
        user = self.identity.current_user()
        return user.uid if user else None

    def require_user_id(self) -> str:
        uid = self.current_user_id()
        if uid is None:
            raise UnauthenticatedError()
        return uid
