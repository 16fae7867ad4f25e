"""Models for structured LLM function-call results."""

from pydantic import BaseModel, Field


class RecipeRanking(BaseModel):
    """Relevancy verdict for one candidate recipe."""

    score: int = Field(ge=0, le=100)
    reasoning: str | None = None


class RecipeDraft(BaseModel):
    """Recipe written by the model for a cookbook order."""

    title: str
    ingredients: list[str] = Field(default_factory=list)
    directions: list[str] = Field(default_factory=list)
    inspired_by: list[str] = Field(default_factory=list)
