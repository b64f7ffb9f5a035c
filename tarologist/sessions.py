"""Readings and the per-user session collection.

Draws cards into spread positions, produces the interpretation text and
persists finished readings under `users/{uid}/sessions`. Session ids are
generated here, before the write, so retrying a failed save with the same
id never creates a duplicate.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from .auth_state import AuthState
from .catalog import CardCatalog
from .errors import NotFoundError, ReadingError, StoreError, WriteError
from .interpretation import Interpreter
from .models import (
    DrawnCard,
    DrawnCardRecord,
    Question,
    QuestionCategory,
    Spread,
    TarotSession,
    decode_documents,
    new_id,
    utcnow,
)
from .reading import Reading
from .store import Document, DocumentStore, ListenerRegistration, Query, sessions_collection
from .utils.rng import draw_for_spread, make_rng

log = logging.getLogger("tarologist.sessions")

SessionsCallback = Callable[[List[TarotSession]], None]


def sessions_query(user_id: str) -> Query:
    return Query(sessions_collection(user_id)).order("date", descending=True)


class SessionManager:
    def __init__(self, store: DocumentStore, auth: AuthState, catalog: CardCatalog,
                 interpreter: Optional[Interpreter] = None) -> None:
        self.store = store
        self.auth = auth
        self.catalog = catalog
        self.interpreter = interpreter or Interpreter()
        self._lock = threading.Lock()
        self._sessions: List[TarotSession] = []
        self._listener: Optional[ListenerRegistration] = None
        self._generation = 0
        self.dropped_count = 0

    @property
    def sessions(self) -> List[TarotSession]:
        with self._lock:
            return list(self._sessions)

    # -- reading -------------------------------------------------------

    def draw_cards(self, spread: Spread, seed: Optional[str] = None) -> List[DrawnCard]:
        deck = self.catalog.cards
        if not deck:
            raise ReadingError("Каталог карт недоступен")
        rng = make_rng(seed, salt=spread.id)
        return draw_for_spread(spread, deck, rng)

    def generate_interpretation(
        self,
        drawn_cards: List[DrawnCard],
        client_name: str,
        client_age: Optional[str] = None,
        question: Optional[str] = None,
        question_category: Optional[str] = None,
    ) -> str:
        return self.interpreter.interpret(drawn_cards, client_name, client_age, question, question_category)

    @staticmethod
    def check_placement(spread: Spread, position_ids: List[str]) -> None:
        """Every position of `spread` must hold exactly one card."""
        if len(position_ids) != spread.number_of_cards:
            raise ReadingError(
                f"Расклад «{spread.name}» требует {spread.number_of_cards} карт, получено {len(position_ids)}"
            )
        expected = sorted(p.id for p in spread.positions)
        if sorted(position_ids) != expected:
            stray = sorted(set(position_ids) - set(expected))
            if stray:
                raise ReadingError(f"Позиции не принадлежат раскладу «{spread.name}»: {', '.join(stray)}")
            raise ReadingError(f"Каждая позиция расклада «{spread.name}» должна быть занята одной картой")

    def restore_drawn_cards(self, spread: Spread, records: List[DrawnCardRecord]) -> List[DrawnCard]:
        """Rebuild drawn cards from their stored form, e.g. when a client posts a draw back."""
        positions = {p.id: p for p in spread.positions}
        drawn = []
        for record in records:
            card = self.catalog.card_by_id(record.card_id)
            if card is None:
                raise ReadingError(f"Неизвестная карта: {record.card_id}")
            position = positions.get(record.position_id)
            if position is None:
                raise ReadingError(f"Неизвестная позиция расклада «{spread.name}»: {record.position_id}")
            drawn.append(DrawnCard(card=card, position=position, is_reversed=record.is_reversed))
        self.check_placement(spread, [r.position_id for r in records])
        return sorted(drawn, key=lambda dc: dc.position.order)

    def build_session(
        self,
        client_name: str,
        spread: Spread,
        drawn_cards: List[DrawnCard],
        interpretation: Optional[str],
        client_age: Optional[str] = None,
        question_category: Optional[QuestionCategory] = None,
        question: Optional[Question] = None,
        custom_question: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> TarotSession:
        self.check_placement(spread, [dc.position.id for dc in drawn_cards])

        if question is not None:
            question_text: Optional[str] = question.text
        else:
            question_text = (custom_question or "").strip() or None

        return TarotSession(
            id=session_id or new_id(),
            client_name=client_name.strip(),
            client_age=client_age,
            date=utcnow(),
            spread_id=spread.id,
            spread_name=spread.name,
            question_category_id=question_category.id if question_category else None,
            question_category_name=question_category.name if question_category else None,
            question_id=question.id if question else None,
            question_text=question_text,
            interpretation=interpretation,
            is_sent=False,
            drawn_cards=[dc.to_record() for dc in drawn_cards],
        )

    def save_reading(
        self,
        client_name: str,
        spread: Spread,
        drawn_cards: List[DrawnCard],
        interpretation: Optional[str],
        client_age: Optional[str] = None,
        question_category: Optional[QuestionCategory] = None,
        question: Optional[Question] = None,
        custom_question: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        """Persist a finished reading; returns the session id once the write is acknowledged."""
        user_id = self.auth.require_user_id()
        session = self.build_session(
            client_name, spread, drawn_cards, interpretation,
            client_age=client_age,
            question_category=question_category,
            question=question,
            custom_question=custom_question,
            session_id=session_id,
        )
        try:
            self.store.set_document(sessions_collection(user_id), session.id, session.to_document())
        except StoreError as e:
            log.error("saving session %s failed: %s", session.id, e)
            raise WriteError("Saving the session", e) from e
        log.info("saved session %s (%s, %d cards)", session.id, spread.id, len(drawn_cards))
        return session.id

    def start_reading(
        self,
        spread: Spread,
        client_name: str = "",
        client_age: Optional[str] = None,
        question_category: Optional[QuestionCategory] = None,
        question: Optional[Question] = None,
        custom_question: Optional[str] = None,
    ) -> Reading:
        return Reading(self, spread, client_name, client_age, question_category, question, custom_question)

    # -- session collection ----------------------------------------------

    def _decode(self, docs: List[Document]) -> List[TarotSession]:
        report = decode_documents(TarotSession, docs)
        self.dropped_count = report.dropped
        if report.dropped:
            log.warning("dropped %d malformed sessions: %s", report.dropped, report.failures)
        return report.items

    def fetch_sessions(self, user_id: str) -> List[TarotSession]:
        docs = self.store.get_documents(sessions_query(user_id))
        sessions = self._decode(docs)
        with self._lock:
            self._sessions = sessions
        return list(sessions)

    def get_session(self, user_id: str, session_id: str) -> TarotSession:
        doc = self.store.get_document(sessions_collection(user_id), session_id)
        if doc is None:
            raise NotFoundError(f"Сессия {session_id} не найдена")
        sessions = self._decode([doc])
        if not sessions:
            raise NotFoundError(f"Сессия {session_id} повреждена")
        return sessions[0]

    def start_sessions_listener(self, user_id: str,
                                callback: Optional[SessionsCallback] = None) -> ListenerRegistration:
        """Live, date-descending session list. The caller owns the returned registration."""
        self.stop_sessions_listener()
        with self._lock:
            self._generation += 1
            generation = self._generation

        def on_snapshot(docs, error) -> None:
            if generation != self._generation:
                return
            if error is not None:
                log.warning("sessions listener error for %s: %s", user_id, error)
                return
            sessions = self._decode(docs)
            with self._lock:
                self._sessions = sessions
            if callback is not None:
                callback(list(sessions))

        registration = self.store.listen(sessions_query(user_id), on_snapshot)
        with self._lock:
            self._listener = registration
        log.info("sessions listener started for %s", user_id)
        return registration

    def stop_sessions_listener(self) -> None:
        with self._lock:
            self._generation += 1
            registration, self._listener = self._listener, None
        if registration is not None:
            registration.remove()
            log.info("sessions listener stopped")

    def update_session(self, user_id: str, session: TarotSession, spread: Optional[Spread] = None) -> None:
        """Full replace: fields missing from `session` are lost.

        When `spread` is given the drawn cards must still fill each of its
        positions exactly once.
        """
        if spread is not None:
            if spread.id != session.spread_id:
                raise ReadingError(f"Сессия {session.id} относится к другому раскладу")
            self.check_placement(spread, [r.position_id for r in session.drawn_cards])
        try:
            self.store.set_document(sessions_collection(user_id), session.id, session.to_document())
        except StoreError as e:
            log.error("updating session %s failed: %s", session.id, e)
            raise WriteError("Updating the session", e) from e
        log.info("updated session %s", session.id)

    def _patch(self, user_id: str, session_id: str, fields: dict, operation: str) -> None:
        try:
            self.store.update_document(sessions_collection(user_id), session_id, fields)
        except StoreError as e:
            log.error("%s for session %s failed: %s", operation, session_id, e)
            raise WriteError(operation, e) from e

    def mark_as_sent(self, user_id: str, session_id: str) -> None:
        self._patch(user_id, session_id, {"isSent": True}, "Marking the session as sent")
        log.info("session %s marked as sent", session_id)

    def rename_client(self, user_id: str, session_id: str, client_name: str) -> None:
        self._patch(user_id, session_id, {"clientName": client_name.strip()}, "Renaming the client")
        log.info("session %s client renamed", session_id)

    def delete_session(self, user_id: str, session_id: str) -> None:
        """Idempotent: deleting a missing session is not an error."""
        try:
            self.store.delete_document(sessions_collection(user_id), session_id)
        except StoreError as e:
            log.error("deleting session %s failed: %s", session_id, e)
            raise WriteError("Deleting the session", e) from e
        log.info("deleted session %s", session_id)
