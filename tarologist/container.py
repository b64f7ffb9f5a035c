"""Composition root.

Builds one explicit instance of every collaborator. Nothing here is a
module-level singleton: tests construct their own `Container` with fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from openai import OpenAI

from .auth_state import AuthState
from .cache import LocalCache
from .catalog import CardCatalog
from .config import Settings, get_settings
from .identity import FirebaseIdentityProvider, IdentityProvider, LocalIdentityProvider
from .interpretation import Interpreter
from .questions import QuestionManager
from .sessions import SessionManager
from .spreads import SpreadManager
from .store import DocumentStore, FirestoreDocumentStore, MemoryDocumentStore
from .subscription import SubscriptionService

log = logging.getLogger("tarologist.container")


@dataclass
class Container:
    settings: Settings
    cache: LocalCache
    store: DocumentStore
    identity: IdentityProvider
    auth: AuthState
    catalog: CardCatalog
    questions: QuestionManager
    spreads: SpreadManager
    sessions: SessionManager
    subscription: SubscriptionService

    def start(self) -> None:
        self.catalog.load()
        self.auth.bootstrap()
        self.questions.load_categories_and_questions()
        self.spreads.load_spreads()

    def close(self) -> None:
        self.questions.remove_listeners()
        self.sessions.stop_sessions_listener()
        self.auth.stop()
        self.cache.close()


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "firestore":
        log.info("using Cloud Firestore (project=%s)", settings.firebase_project_id or "default")
        return FirestoreDocumentStore(
            project_id=settings.firebase_project_id,
            credentials_path=settings.firebase_credentials,
        )
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown TAROLOGIST_STORE: {settings.store_backend}")
    log.info("using in-memory document store")
    return MemoryDocumentStore()


def build_identity(settings: Settings, cache: LocalCache) -> IdentityProvider:
    if settings.firebase_api_key:
        return FirebaseIdentityProvider(settings.firebase_api_key, cache=cache)
    log.warning("FIREBASE_API_KEY not set; accounts are kept in memory")
    return LocalIdentityProvider()


def build_interpreter(settings: Settings) -> Interpreter:
    client = OpenAI(api_key=settings.openai_api_key) if settings.use_openai else None
    return Interpreter(client=client, model=settings.openai_model)


def build_container(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    identity: Optional[IdentityProvider] = None,
    cache: Optional[LocalCache] = None,
    interpreter: Optional[Interpreter] = None,
) -> Container:
    settings = settings or get_settings()
    cache = cache or LocalCache(settings.cache_path)
    store = store or build_store(settings)
    identity = identity or build_identity(settings, cache)
    auth = AuthState(identity, cache, email_domain=settings.email_domain)
    catalog = CardCatalog()
    return Container(
        settings=settings,
        cache=cache,
        store=store,
        identity=identity,
        auth=auth,
        catalog=catalog,
        questions=QuestionManager(store, cache),
        spreads=SpreadManager(store, cache),
        sessions=SessionManager(store, auth, catalog, interpreter or build_interpreter(settings)),
        subscription=SubscriptionService(store, auth),
    )
