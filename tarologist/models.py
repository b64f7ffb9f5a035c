"""Document models and the decoder that maps raw store documents onto them.

Field names are snake_case in Python and camelCase in stored documents,
cached JSON and the HTTP API (`categoryId`, `isApproved`, ...).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4()).upper()


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Keys a stored document must carry to be accepted, even where the
    # Python constructor has a default.
    required_keys: ClassVar[Tuple[str, ...]] = ()

    def to_document(self) -> Dict[str, Any]:
        """Document body as written to the store (id lives in the key)."""
        return self.model_dump(by_alias=True, exclude={"id"})

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class IdentifiedModel(DocumentModel):
    id: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, self.id))


class QuestionCategory(IdentifiedModel):
    required_keys = ("name", "isActive")

    name: str
    description: Optional[str] = None
    is_active: bool = True


class Question(IdentifiedModel):
    required_keys = ("categoryId", "text", "isApproved", "isActive", "createdAt")

    category_id: str
    text: str
    is_approved: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_visible(self) -> bool:
        return self.is_active and self.is_approved


class SpreadPosition(DocumentModel):
    id: str
    name: str
    description: str
    order: int


class Spread(IdentifiedModel):
    required_keys = ("name", "description", "numberOfCards", "positions")

    name: str
    description: str
    number_of_cards: int
    positions: List[SpreadPosition]
    image_name: Optional[str] = None
    is_active: bool = True

    @field_validator("positions")
    @classmethod
    def _sort_positions(cls, positions: List[SpreadPosition]) -> List[SpreadPosition]:
        # sorted() is stable: equal orders keep collection order
        return sorted(positions, key=lambda p: p.order)

    @model_validator(mode="after")
    def _positions_match_card_count(self) -> "Spread":
        if len(self.positions) != self.number_of_cards:
            raise ValueError(
                f"spread declares {self.number_of_cards} cards but has {len(self.positions)} positions"
            )
        return self


class TarotCard(DocumentModel):
    id: str
    name_en: str
    name_ru: str
    image_name: str
    description: str = ""
    meaning_light: str
    meaning_shadow: str
    is_major: bool
    suit: Optional[str] = None


class DrawnCardRecord(DocumentModel):
    """Flattened drawn card as stored inside a session document."""

    card_id: str
    position_id: str
    position_name: str
    is_reversed: bool


class DrawnCard(BaseModel):
    card: TarotCard
    position: SpreadPosition
    is_reversed: bool

    @property
    def position_name(self) -> str:
        return self.position.name

    @property
    def position_description(self) -> str:
        return self.position.description

    @property
    def meaning(self) -> str:
        return self.card.meaning_shadow if self.is_reversed else self.card.meaning_light

    @property
    def orientation_label(self) -> str:
        return "перевернутая" if self.is_reversed else "прямая"

    def to_record(self) -> DrawnCardRecord:
        return DrawnCardRecord(
            card_id=self.card.id,
            position_id=self.position.id,
            position_name=self.position.name,
            is_reversed=self.is_reversed,
        )


class TarotSession(DocumentModel):
    required_keys = ("clientName", "date", "spreadId", "spreadName", "isSent", "drawnCards")

    id: str
    client_name: str
    client_age: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)
    spread_id: str
    spread_name: str
    question_category_id: Optional[str] = None
    question_category_name: Optional[str] = None
    question_id: Optional[str] = None
    question_text: Optional[str] = None
    interpretation: Optional[str] = None
    is_sent: bool = False
    drawn_cards: List[DrawnCardRecord] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        # sessions keep their id inside the body as well as in the key
        return self.model_dump(by_alias=True)

    @property
    def short_description(self) -> str:
        if self.question_text:
            return f"{self.spread_name} - {self.question_text}"
        return self.spread_name

    def share_text(self) -> str:
        lines = [
            f"Сессия гадания для {self.client_name}",
            f"Дата: {self.date.strftime('%d.%m.%Y %H:%M')}",
            f"Расклад: {self.spread_name}",
            "",
        ]
        if self.interpretation:
            lines.append(f"Толкование:\n{self.interpretation}")
        else:
            lines.append("Толкование отсутствует")
        return "\n".join(lines)


M = TypeVar("M", bound=DocumentModel)


@dataclass
class DecodeReport(Generic[M]):
    items: List[M] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.failures)


def decode_document(model: Type[M], doc_id: str, data: Dict[str, Any]) -> M:
    """Validate one raw document. Raises ValueError/ValidationError when malformed."""
    missing = [k for k in model.required_keys if data.get(k) is None]
    if missing:
        raise ValueError(f"missing required field(s): {', '.join(missing)}")
    return model.model_validate({**data, "id": doc_id})


def decode_documents(model: Type[M], documents: Iterable[Any]) -> DecodeReport[M]:
    """Decode store documents (anything with `.id` and `.data`), collecting failures."""
    report: DecodeReport[M] = DecodeReport()
    for doc in documents:
        try:
            report.items.append(decode_document(model, doc.id, doc.data))
        except (ValidationError, ValueError, TypeError) as e:
            report.failures.append((doc.id, str(e).splitlines()[0]))
    return report
