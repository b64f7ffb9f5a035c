"""Interpretation text for a completed draw.

Uses OpenAI chat completions when a client is configured; any failure, or
no client at all, falls back to a templated reading built from the card
meanings so a reading always gets text.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .errors import InterpretationError
from .models import DrawnCard

log = logging.getLogger("tarologist.interpretation")

SYSTEM_PROMPT = "Ты опытный таролог. Отвечай на русском языке, тепло и без клише."


def build_prompt(
    drawn_cards: List[DrawnCard],
    client_name: str,
    client_age: Optional[str],
    question: Optional[str],
    question_category: Optional[str],
) -> str:
    lines = [
        "Ты опытный таролог. Проанализируй следующий расклад:",
        "",
        f"Клиент: {client_name}, возраст: {client_age or 'не указан'}",
        f"Категория вопроса: {question_category or 'не указана'}",
        f"Вопрос: {question or 'не указан'}",
        "",
        "Расклад:",
    ]
    for dc in drawn_cards:
        lines.append(f"- {dc.position_name}: {dc.card.name_ru} ({dc.orientation_label}) - {dc.meaning}")
    lines.append("")
    lines.append(
        "Предоставь подробное, эмпатичное толкование на русском языке, которое поможет "
        "клиенту понять ситуацию и возможные пути развития."
    )
    return "\n".join(lines)


def templated_interpretation(drawn_cards: List[DrawnCard]) -> str:
    """Offline reading: one paragraph per position, then a general recommendation."""
    paragraphs = ["На основе выпавших карт, можно сказать следующее:"]
    for dc in drawn_cards:
        paragraphs.append(
            f"В позиции «{dc.position_name}» выпала карта {dc.card.name_ru} ({dc.orientation_label}), "
            f"что указывает на {dc.meaning}."
        )
    paragraphs.append(
        "Общая рекомендация: обратите внимание на свои внутренние ощущения "
        "и доверьтесь интуиции при принятии решений."
    )
    return "\n\n".join(paragraphs)


class Interpreter:
    def __init__(self, client: Any = None, model: str = "gpt-4o-mini", temperature: float = 0.7) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    @property
    def uses_ai(self) -> bool:
        return self.client is not None

    def _generate_with_openai(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=900,
        )
        return (response.choices[0].message.content or "").strip()

    def interpret(
        self,
        drawn_cards: List[DrawnCard],
        client_name: str,
        client_age: Optional[str] = None,
        question: Optional[str] = None,
        question_category: Optional[str] = None,
    ) -> str:
        if not drawn_cards:
            raise InterpretationError("Нет карт для толкования")

        if self.client is not None:
            prompt = build_prompt(drawn_cards, client_name, client_age, question, question_category)
            try:
                text = self._generate_with_openai(prompt)
                if text:
                    return text
                log.warning("OpenAI returned an empty interpretation, using template")
            except Exception as e:
                log.warning("OpenAI interpretation failed, using template: %s", e)

        return templated_interpretation(drawn_cards)
