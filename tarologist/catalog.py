"""Static 78-card tarot catalog.

Loads `data/tarot_cards.json` once per catalog instance. The file never
changes at runtime, so a decode failure is logged and leaves the catalog
empty rather than being retried.
"""

from __future__ import annotations

import json
import logging
import random
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from .models import TarotCard

log = logging.getLogger("tarologist.catalog")

DATA_PATH = Path(__file__).resolve().parent / "data" / "tarot_cards.json"

DECK_SIZE = 78
MAJOR_ARCANA_SIZE = 22


class CatalogError(RuntimeError):
    pass


def read_cards(path: Path = DATA_PATH) -> List[TarotCard]:
    """Strict reader: raises CatalogError on a missing or malformed file."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise CatalogError(f"Card catalog not found at: {path}") from e

    try:
        return TypeAdapter(List[TarotCard]).validate_python(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise CatalogError(f"Invalid card catalog in {path}: {e}") from e


class CardCatalog:
    def __init__(self, path: Path = DATA_PATH) -> None:
        self.path = path
        self._cards: Optional[List[TarotCard]] = None
        self._by_id: Dict[str, TarotCard] = {}
        self._by_name: Dict[str, TarotCard] = {}
        self._lock = threading.Lock()

    def load(self) -> List[TarotCard]:
        with self._lock:
            if self._cards is not None:
                return self._cards
            try:
                cards = read_cards(self.path)
                log.info("loaded %d cards", len(cards))
            except CatalogError as e:
                log.error("card catalog unavailable: %s", e)
                cards = []
            self._cards = cards
            self._by_id = {c.id: c for c in cards}
            self._by_name = {c.name_en.lower(): c for c in cards}
            return cards

    @property
    def cards(self) -> List[TarotCard]:
        return list(self.load())

    def __len__(self) -> int:
        return len(self.load())

    def card_by_id(self, card_id: str) -> Optional[TarotCard]:
        self.load()
        return self._by_id.get(card_id)

    def card_by_english_name(self, name: str) -> Optional[TarotCard]:
        self.load()
        return self._by_name.get(name.strip().lower())

    def major_arcana(self) -> List[TarotCard]:
        return [c for c in self.load() if c.is_major]

    def by_suit(self, suit: str) -> List[TarotCard]:
        return [c for c in self.load() if c.suit == suit]

    def random_card(self, rng: random.Random) -> TarotCard:
        cards = self.load()
        if not cards:
            raise CatalogError("Card catalog is empty")
        return rng.choice(cards)
