"""Question categories and questions.

Loads both collections from the document store, falls back to the local
cache when the store is unreachable, and keeps the in-memory lists fresh
through optional live listeners.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from .cache import CATEGORIES_KEY, QUESTIONS_KEY, LocalCache
from .errors import NotFoundError, StoreError, TarologistError, WriteError
from .models import Question, QuestionCategory, decode_documents, new_id, utcnow
from .store import (
    CATEGORIES_COLLECTION,
    QUESTIONS_COLLECTION,
    Document,
    DocumentStore,
    ListenerRegistration,
    Query,
)

log = logging.getLogger("tarologist.questions")

CATEGORIES_QUERY = Query(CATEGORIES_COLLECTION).where("isActive", True)
QUESTIONS_QUERY = Query(QUESTIONS_COLLECTION).where("isActive", True).where("isApproved", True)


class QuestionManager:
    def __init__(self, store: DocumentStore, cache: LocalCache) -> None:
        self.store = store
        self.cache = cache
        self._lock = threading.Lock()
        self._categories: List[QuestionCategory] = []
        self._questions: List[Question] = []
        self.dropped_categories = 0
        self.dropped_questions = 0

        self._category_listener: Optional[ListenerRegistration] = None
        self._question_listener: Optional[ListenerRegistration] = None
        # bumped on every setup/remove; callbacks from older registrations are ignored
        self._generation = 0

    @property
    def categories(self) -> List[QuestionCategory]:
        with self._lock:
            return list(self._categories)

    @property
    def questions(self) -> List[Question]:
        with self._lock:
            return list(self._questions)

    # -- apply / fallback ----------------------------------------------

    def _apply_categories(self, docs: List[Document]) -> List[QuestionCategory]:
        report = decode_documents(QuestionCategory, docs)
        if report.dropped:
            log.warning("dropped %d malformed categories: %s", report.dropped, report.failures)
        with self._lock:
            self._categories = report.items
            self.dropped_categories = report.dropped
        self.cache.save_list(CATEGORIES_KEY, QuestionCategory, report.items)
        return list(report.items)

    def _apply_questions(self, docs: List[Document]) -> List[Question]:
        report = decode_documents(Question, docs)
        if report.dropped:
            log.warning("dropped %d malformed questions: %s", report.dropped, report.failures)
        with self._lock:
            self._questions = report.items
            self.dropped_questions = report.dropped
        self.cache.save_list(QUESTIONS_KEY, Question, report.items)
        return list(report.items)

    def _categories_from_cache(self) -> List[QuestionCategory]:
        cached = self.cache.load_list(CATEGORIES_KEY, QuestionCategory)
        if cached is None:
            log.warning("no cached categories available")
            return self.categories
        log.info("using %d cached categories", len(cached))
        with self._lock:
            self._categories = cached
        return list(cached)

    def _questions_from_cache(self) -> List[Question]:
        cached = self.cache.load_list(QUESTIONS_KEY, Question)
        if cached is None:
            log.warning("no cached questions available")
            return self.questions
        log.info("using %d cached questions", len(cached))
        with self._lock:
            self._questions = cached
        return list(cached)

    # -- one-shot loads ------------------------------------------------

    def load_categories(self) -> List[QuestionCategory]:
        try:
            docs = self.store.get_documents(CATEGORIES_QUERY)
        except StoreError as e:
            log.warning("loading categories failed, falling back to cache: %s", e)
            return self._categories_from_cache()
        return self._apply_categories(docs)

    def load_questions(self) -> List[Question]:
        try:
            docs = self.store.get_documents(QUESTIONS_QUERY)
        except StoreError as e:
            log.warning("loading questions failed, falling back to cache: %s", e)
            return self._questions_from_cache()
        return self._apply_questions(docs)

    def load_categories_and_questions(self) -> None:
        self.load_categories()
        self.load_questions()

    def category_by_id(self, category_id: str) -> Optional[QuestionCategory]:
        return next((c for c in self.categories if c.id == category_id), None)

    def question_by_id(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def questions_for_category(self, category_id: str) -> List[Question]:
        """In-memory filter; only active, approved questions are returned."""
        return [q for q in self.questions if q.category_id == category_id and q.is_visible]

    def submit_custom_question(self, category_id: str, text: str) -> Question:
        """Write a new unapproved question under an active category.

        Raises NotFoundError for an unknown or inactive category and WriteError
        if the store rejects the write.
        """
        if self.category_by_id(category_id) is None:
            raise NotFoundError(f"Категория {category_id} не найдена")
        question = Question(
            id=new_id(),
            category_id=category_id,
            text=text.strip(),
            is_approved=False,
            is_active=True,
            created_at=utcnow(),
        )
        try:
            self.store.set_document(QUESTIONS_COLLECTION, question.id, question.to_document())
        except TarologistError as e:
            log.error("submitting question %s failed: %s", question.id, e)
            raise WriteError("Question submission", e) from e
        log.info("submitted question %s for moderation", question.id)
        return question

    # -- live listeners ------------------------------------------------

    def setup_real_time_listeners(self) -> None:
        """Open both listeners, tearing down any that are already active."""
        self.remove_listeners()
        with self._lock:
            self._generation += 1
            generation = self._generation

        def on_categories(docs, error) -> None:
            if generation != self._generation:
                return
            if error is not None:
                log.warning("categories listener error, falling back to cache: %s", error)
                self._categories_from_cache()
                return
            self._apply_categories(docs)

        def on_questions(docs, error) -> None:
            if generation != self._generation:
                return
            if error is not None:
                log.warning("questions listener error, falling back to cache: %s", error)
                self._questions_from_cache()
                return
            self._apply_questions(docs)

        try:
            category_listener = self.store.listen(CATEGORIES_QUERY, on_categories)
        except StoreError as e:
            log.warning("could not start categories listener: %s", e)
            self._categories_from_cache()
            category_listener = None
        try:
            question_listener = self.store.listen(QUESTIONS_QUERY, on_questions)
        except StoreError as e:
            log.warning("could not start questions listener: %s", e)
            self._questions_from_cache()
            question_listener = None

        with self._lock:
            self._category_listener = category_listener
            self._question_listener = question_listener
        log.info("question listeners started")

    def remove_listeners(self) -> None:
        with self._lock:
            self._generation += 1
            registrations = [self._category_listener, self._question_listener]
            self._category_listener = None
            self._question_listener = None
        active = [r for r in registrations if r is not None]
        for registration in active:
            registration.remove()
        if active:
            log.info("question listeners stopped")

    @property
    def listening(self) -> bool:
        with self._lock:
            return self._category_listener is not None or self._question_listener is not None
