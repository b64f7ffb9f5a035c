"""Per-user subscription flag stored on the `users/{uid}` document."""

from __future__ import annotations

import logging

from .auth_state import AuthState
from .errors import StoreError, WriteError
from .models import utcnow
from .store import USERS_COLLECTION, DocumentStore

log = logging.getLogger("tarologist.subscription")


class SubscriptionService:
    def __init__(self, store: DocumentStore, auth: AuthState) -> None:
        self.store = store
        self.auth = auth

    def has_active_subscription(self) -> bool:
        """False when signed out, when the user document is missing or unreadable."""
        user_id = self.auth.current_user_id()
        if user_id is None:
            return False
        try:
            doc = self.store.get_document(USERS_COLLECTION, user_id)
        except StoreError as e:
            log.warning("reading subscription for %s failed: %s", user_id, e)
            return False
        return bool(doc and doc.data.get("isSubscribed") is True)

    def activate(self) -> None:
        user_id = self.auth.require_user_id()
        self._write(user_id, {"isSubscribed": True, "subscriptionActivatedAt": utcnow()}, "Activating the subscription")
        log.info("subscription activated for %s", user_id)

    def deactivate(self) -> None:
        user_id = self.auth.require_user_id()
        self._write(user_id, {"isSubscribed": False}, "Deactivating the subscription")
        log.info("subscription deactivated for %s", user_id)

    def _write(self, user_id: str, fields: dict, operation: str) -> None:
        try:
            self.store.set_document(USERS_COLLECTION, user_id, fields, merge=True)
        except StoreError as e:
            log.error("%s for %s failed: %s", operation, user_id, e)
            raise WriteError(operation, e) from e
