"""Read-only catalog data: categories, questions, spreads and cards."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..container import Container
from ..errors import NotFoundError
from .deps import get_container

router = APIRouter(prefix="/catalog", tags=["catalog"])


class CustomQuestionRequest(BaseModel):
    category_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1, max_length=500)


@router.get("/categories")
def list_categories(refresh: bool = False, container: Container = Depends(get_container)) -> List[Dict[str, Any]]:
    categories = container.questions.load_categories() if refresh else container.questions.categories
    return [c.to_json() for c in categories]


@router.get("/questions")
def list_questions(
    category_id: Optional[str] = Query(None, description="Only questions of this category"),
    refresh: bool = False,
    container: Container = Depends(get_container),
) -> List[Dict[str, Any]]:
    if refresh:
        container.questions.load_questions()
    if category_id:
        questions = container.questions.questions_for_category(category_id)
    else:
        questions = [q for q in container.questions.questions if q.is_visible]
    return [q.to_json() for q in questions]


@router.post("/questions", status_code=201)
def submit_question(req: CustomQuestionRequest, container: Container = Depends(get_container)) -> Dict[str, Any]:
    """Queue a user-authored question for moderation."""
    question = container.questions.submit_custom_question(req.category_id, req.text)
    return question.to_json()


@router.get("/spreads")
def list_spreads(refresh: bool = False, container: Container = Depends(get_container)) -> Dict[str, Any]:
    manager = container.spreads
    spreads = manager.load_spreads() if refresh or not manager.spreads else manager.spreads
    return {
        "spreads": [s.to_json() for s in spreads],
        "source": manager.source,
        "errorMessage": manager.error_message,
    }


@router.get("/cards")
def list_cards(
    suit: Optional[str] = Query(None, description="wands, cups, swords or pentacles"),
    major: Optional[bool] = None,
    container: Container = Depends(get_container),
) -> List[Dict[str, Any]]:
    if suit:
        cards = container.catalog.by_suit(suit)
    elif major:
        cards = container.catalog.major_arcana()
    else:
        cards = container.catalog.cards
    return [c.to_json() for c in cards]


@router.get("/cards/{card_id}")
def get_card(card_id: str, container: Container = Depends(get_container)) -> Dict[str, Any]:
    card = container.catalog.card_by_id(card_id) or container.catalog.card_by_english_name(card_id)
    if card is None:
        raise NotFoundError(f"Карта {card_id} не найдена")
    return card.to_json()
