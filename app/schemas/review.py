"""Schemas for review analysis."""

from pydantic import BaseModel, Field


class ReviewAnalysis(BaseModel):
    """Structured verdict on a restaurant's reviews for one food keyword."""

    food_score: float = Field(0, ge=0, le=10)
    positive_points: list[str] = Field(default_factory=list)
    negative_points: list[str] = Field(default_factory=list)
    is_recommended: bool = False
    summary: str = ""
