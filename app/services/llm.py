"""Utilities for interacting with OpenAI."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from app.schemas.review import ReviewAnalysis

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "İşte sizin için en iyi öneriler!"
FAILED_SUMMARY = "Analiz yapılamadı."


def heuristic_analysis(name: str, rating: Optional[float]) -> ReviewAnalysis:
    """Verdict from the star rating alone, used when no review text exists."""
    return ReviewAnalysis(
        food_score=min(int(rating * 2 + 0.5), 10) if rating else 5,
        positive_points=["Google'da yüksek puan"] if rating and rating >= 4 else [],
        negative_points=[],
        is_recommended=bool(rating and rating >= 4),
        summary=f"{name} - Google puanı: {rating if rating is not None else 'yok'}",
    )


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list):
        return [str(v) for v in value if v]
    return [str(value)]


class LLMService:
    """Wrapper around OpenAI chat completions for review analysis."""

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", client: Optional[OpenAI] = None) -> None:
        if client is None and not api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured.")
        self._client = client or OpenAI(api_key=api_key)
        self._model = model

    def analyze_reviews(self, restaurant_name: str, food_query: str, reviews: Sequence[str]) -> ReviewAnalysis:
        """Score how well a restaurant does `food_query` based on its reviews."""
        numbered = "\n".join(f"{i + 1}. {text}" for i, text in enumerate(reviews))
        user_prompt = (
            f'Aşağıdaki "{restaurant_name}" restoranının yorumlarını analiz et ve '
            f'"{food_query}" hakkındaki değerlendirmeleri çıkar.\n\n'
            f"Yorumlar:\n{numbered}\n\n"
            "SADECE JSON formatında yanıt ver:\n"
            "{\n"
            '  "foodScore": 1-10 arası puan,\n'
            '  "positivePoints": ["olumlu nokta 1", "olumlu nokta 2"],\n'
            '  "negativePoints": ["olumsuz nokta 1"],\n'
            '  "isRecommended": true/false,\n'
            '  "summary": "2 cümlelik özet"\n'
            "}\n\n"
            "ÖNEMLİ KURALLAR:\n"
            f'- Yorumlarda "{food_query}" doğrudan veya dolaylı olarak geçiyorsa, genel izlenime göre '
            "1-10 arası bir puan VER.\n"
            f'- Yorumcular genel olarak memnunsa ve "{food_query}" bahsediliyorsa, en az 5 puan ver.\n'
            f'- foodScore: 0 SADECE yorumların hiçbirinde "{food_query}" ile ilgili bilgi yoksa kullan.'
        )
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {
                        "role": "system",
                        "content": "Sen bir yemek değerlendirme uzmanısın. Sadece JSON formatında yanıt ver.",
                    },
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.3,
                max_tokens=500,
            )
            content = response.choices[0].message.content
            if not content:
                raise ValueError("Empty response from OpenAI")
            data: dict[str, Any] = json.loads(content)
            return ReviewAnalysis(
                food_score=max(0, min(float(data.get("foodScore") or 0), 10)),
                positive_points=_string_list(data.get("positivePoints")),
                negative_points=_string_list(data.get("negativePoints")),
                is_recommended=bool(data.get("isRecommended")),
                summary=str(data.get("summary") or ""),
            )
        except (OpenAIError, ValueError, ValidationError, TypeError) as exc:
            logger.error("Review analysis failed for %s: %s", restaurant_name, exc)
            return ReviewAnalysis(summary=FAILED_SUMMARY)

    def generate_recommendation_message(self, food_query: str, top: Sequence[dict[str, Any]]) -> str:
        """Short friendly Turkish message presenting the ranked restaurants."""
        lines = "\n".join(
            f"{i + 1}. {item['name']} (Puan: {item['score']}/10) - {item['summary']}" for i, item in enumerate(top)
        )
        prompt = (
            f'Kullanıcı "{food_query}" yemek istiyor. En iyi restoranları şöyle sıraladık:\n\n'
            f"{lines}\n\n"
            "Kullanıcıya samimi ve yardımcı bir dilde (Türkçe) bu önerileri sun. Kısa ve öz ol (max 3 cümle)."
        )
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.7,
                max_tokens=200,
            )
            return response.choices[0].message.content or DEFAULT_MESSAGE
        except OpenAIError as exc:
            logger.error("Recommendation message generation failed: %s", exc)
            return DEFAULT_MESSAGE
