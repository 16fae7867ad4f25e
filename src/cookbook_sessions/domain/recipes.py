"""Recipe domain models used by ranking."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RelevancyResult:
    """Relevancy score of a recipe for a query."""

    query: str
    score: int
    reasoning: str | None = None


@dataclass
class Recipe:
    """A scraped source recipe with cached relevancy scores per query."""

    id: str
    title: str
    recipe_url: str | None = None
    image_url: str | None = None
    ingredients: list[str] = field(default_factory=list)
    directions: list[str] = field(default_factory=list)
    relevancy: dict[str, RelevancyResult] = field(default_factory=dict)
