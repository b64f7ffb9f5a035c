"""Card draws, interpretations and saving a finished reading."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..container import Container
from ..errors import NotFoundError
from ..models import DrawnCard, DrawnCardRecord, Question, QuestionCategory, Spread
from ..reading import Reading
from .deps import get_container

router = APIRouter(prefix="/reading", tags=["reading"])


class DrawRequest(BaseModel):
    spread_id: str
    seed: Optional[str] = Field(None, description="Optional seed for a reproducible draw")


class CardPlacement(BaseModel):
    card_id: str
    position_id: str
    is_reversed: bool = False


class InterpretRequest(BaseModel):
    spread_id: str
    client_name: str = Field(..., min_length=1)
    client_age: Optional[str] = None
    question_category_id: Optional[str] = None
    question_id: Optional[str] = None
    custom_question: Optional[str] = None
    cards: List[CardPlacement] = Field(..., min_length=1)


class SaveRequest(InterpretRequest):
    session_id: Optional[str] = Field(None, description="Reuse on retry so the same document is written")
    interpretation: Optional[str] = Field(None, description="Generated on save when omitted")


def _spread(container: Container, spread_id: str) -> Spread:
    spread = container.spreads.spread_by_id(spread_id)
    if spread is None:
        container.spreads.load_spreads()
        spread = container.spreads.spread_by_id(spread_id)
    if spread is None:
        raise NotFoundError(f"Расклад {spread_id} не найден")
    return spread


def _placed_reading(container: Container, req: InterpretRequest) -> Reading:
    """A reading in the Drawn state holding the posted cards."""
    spread = _spread(container, req.spread_id)

    category: Optional[QuestionCategory] = None
    if req.question_category_id:
        category = container.questions.category_by_id(req.question_category_id)
        if category is None:
            raise NotFoundError(f"Категория {req.question_category_id} не найдена")
    question: Optional[Question] = None
    if req.question_id:
        question = container.questions.question_by_id(req.question_id)
        if question is None:
            raise NotFoundError(f"Вопрос {req.question_id} не найден")

    records = [
        DrawnCardRecord(card_id=c.card_id, position_id=c.position_id, position_name="", is_reversed=c.is_reversed)
        for c in req.cards
    ]
    reading = container.sessions.start_reading(
        spread,
        req.client_name,
        client_age=req.client_age,
        question_category=category,
        question=question,
        custom_question=req.custom_question,
    )
    reading.place(container.sessions.restore_drawn_cards(spread, records))
    return reading


def _drawn_json(dc: DrawnCard) -> Dict[str, Any]:
    return {
        "cardId": dc.card.id,
        "nameRu": dc.card.name_ru,
        "nameEn": dc.card.name_en,
        "imageName": dc.card.image_name,
        "positionId": dc.position.id,
        "positionName": dc.position_name,
        "positionDescription": dc.position_description,
        "isReversed": dc.is_reversed,
        "meaning": dc.meaning,
    }


@router.post("/draw")
def draw(req: DrawRequest, container: Container = Depends(get_container)) -> Dict[str, Any]:
    """One card per spread position, in position order."""
    spread = _spread(container, req.spread_id)
    reading = container.sessions.start_reading(spread)
    drawn = reading.draw(seed=req.seed)
    return {
        "spreadId": spread.id,
        "spreadName": spread.name,
        "cards": [_drawn_json(dc) for dc in drawn],
    }


@router.post("/interpret")
def interpret(req: InterpretRequest, container: Container = Depends(get_container)) -> Dict[str, Any]:
    reading = _placed_reading(container, req)
    return {"interpretation": reading.interpret()}


@router.post("/save", status_code=201)
def save(req: SaveRequest, container: Container = Depends(get_container)) -> Dict[str, Any]:
    """Persist the reading; responds only after the store acknowledged the write."""
    container.auth.require_user_id()
    reading = _placed_reading(container, req)
    if req.interpretation:
        reading.accept_interpretation(req.interpretation)
    else:
        reading.interpret()
    return {"sessionId": reading.save(req.session_id)}
