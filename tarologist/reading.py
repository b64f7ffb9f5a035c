"""One reading, from the first draw to delivery.

    AwaitingStart -> Drawing -> Drawn -> InterpretationPending
        -> InterpretationReady -> Saved -> Sent

A reading can be redrawn while nothing is saved yet, and a failed
interpretation returns it to Drawn.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional

from .errors import ReadingStateError
from .models import DrawnCard, Question, QuestionCategory, Spread, new_id

if TYPE_CHECKING:
    from .sessions import SessionManager

log = logging.getLogger("tarologist.reading")


class ReadingState(str, enum.Enum):
    AWAITING_START = "awaiting_start"
    DRAWING = "drawing"
    DRAWN = "drawn"
    INTERPRETATION_PENDING = "interpretation_pending"
    INTERPRETATION_READY = "interpretation_ready"
    SAVED = "saved"
    SENT = "sent"


TRANSITIONS: Dict[ReadingState, FrozenSet[ReadingState]] = {
    ReadingState.AWAITING_START: frozenset({ReadingState.DRAWING}),
    ReadingState.DRAWING: frozenset({ReadingState.DRAWN, ReadingState.AWAITING_START}),
    ReadingState.DRAWN: frozenset({ReadingState.INTERPRETATION_PENDING, ReadingState.DRAWING}),
    ReadingState.INTERPRETATION_PENDING: frozenset({ReadingState.INTERPRETATION_READY, ReadingState.DRAWN}),
    ReadingState.INTERPRETATION_READY: frozenset({
        ReadingState.SAVED,
        ReadingState.INTERPRETATION_PENDING,
        ReadingState.DRAWING,
    }),
    ReadingState.SAVED: frozenset({ReadingState.SENT}),
    ReadingState.SENT: frozenset(),
}


class Reading:
    def __init__(
        self,
        sessions: SessionManager,
        spread: Spread,
        client_name: str = "",
        client_age: Optional[str] = None,
        question_category: Optional[QuestionCategory] = None,
        question: Optional[Question] = None,
        custom_question: Optional[str] = None,
    ) -> None:
        self.sessions = sessions
        self.spread = spread
        self.client_name = client_name
        self.client_age = client_age
        self.question_category = question_category
        self.question = question
        self.custom_question = custom_question

        self.state = ReadingState.AWAITING_START
        self.drawn_cards: List[DrawnCard] = []
        self.interpretation: Optional[str] = None
        self.session_id: Optional[str] = None
        self.user_id: Optional[str] = None

    def _move(self, target: ReadingState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise ReadingStateError(f"Нельзя перейти из {self.state.value} в {target.value}")
        log.debug("reading %s -> %s", self.state.value, target.value)
        self.state = target

    @property
    def question_text(self) -> Optional[str]:
        if self.question is not None:
            return self.question.text
        return (self.custom_question or "").strip() or None

    def draw(self, seed: Optional[str] = None) -> List[DrawnCard]:
        previous = self.state
        self._move(ReadingState.DRAWING)
        try:
            cards = self.sessions.draw_cards(self.spread, seed=seed)
        except Exception:
            self.state = previous
            raise
        self.drawn_cards = cards
        self.interpretation = None
        self._move(ReadingState.DRAWN)
        return list(cards)

    def place(self, drawn_cards: List[DrawnCard]) -> None:
        """Adopt cards drawn earlier, e.g. posted back by a client."""
        self.sessions.check_placement(self.spread, [dc.position.id for dc in drawn_cards])
        self._move(ReadingState.DRAWING)
        self.drawn_cards = sorted(drawn_cards, key=lambda dc: dc.position.order)
        self.interpretation = None
        self._move(ReadingState.DRAWN)

    def accept_interpretation(self, text: str) -> None:
        """Take an interpretation produced earlier instead of generating one."""
        self._move(ReadingState.INTERPRETATION_PENDING)
        self.interpretation = text
        self._move(ReadingState.INTERPRETATION_READY)

    def interpret(self) -> str:
        previous = self.state
        self._move(ReadingState.INTERPRETATION_PENDING)
        try:
            text = self.sessions.generate_interpretation(
                self.drawn_cards,
                self.client_name,
                self.client_age,
                self.question_text,
                self.question_category.name if self.question_category else None,
            )
        except Exception:
            self.state = previous
            raise
        self.interpretation = text
        self._move(ReadingState.INTERPRETATION_READY)
        return text

    def save(self, session_id: Optional[str] = None) -> str:
        """Persist the reading.

        The session id is fixed on the first attempt, so a retry after a failed
        write overwrites the same document.
        """
        if ReadingState.SAVED not in TRANSITIONS[self.state]:
            raise ReadingStateError(f"Нельзя сохранить расклад в состоянии {self.state.value}")
        self.session_id = session_id or self.session_id or new_id()
        user_id = self.sessions.auth.require_user_id()
        self.sessions.save_reading(
            self.client_name,
            self.spread,
            self.drawn_cards,
            self.interpretation,
            client_age=self.client_age,
            question_category=self.question_category,
            question=self.question,
            custom_question=self.custom_question,
            session_id=self.session_id,
        )
        self.user_id = user_id
        self._move(ReadingState.SAVED)
        return self.session_id

    def mark_sent(self) -> None:
        if ReadingState.SENT not in TRANSITIONS[self.state]:
            raise ReadingStateError(f"Нельзя отметить отправленным расклад в состоянии {self.state.value}")
        self.sessions.mark_as_sent(self.user_id, self.session_id)
        self._move(ReadingState.SENT)
