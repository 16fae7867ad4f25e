"""Supabase-backed source recipe repository."""

from dataclasses import dataclass

from supabase import Client

from cookbook_sessions.domain.recipes import Recipe, RelevancyResult
from cookbook_sessions.services.recipes import RecipeRepository


@dataclass
class SupabaseRecipeRepository(RecipeRepository):
    """Supabase implementation for scraped source recipes."""

    client: Client

    def search_recipes(self, query: str, limit: int) -> list[Recipe]:
        """Return recipes whose title matches `query`."""
        response = (
            self.client.table("recipes")
            .select(
                "id, title, recipe_url, image_url, ingredients, directions, "
                "relevancy_json"
            )
            .ilike("title", f"%{query.strip()}%")
            .limit(limit)
            .execute()
        )
        return [_parse_recipe(row) for row in response.data or []]


def _parse_recipe(row: dict[str, object]) -> Recipe:
    relevancy = {
        query: RelevancyResult(
            query=query,
            score=int(value.get("score", 0)),
            reasoning=value.get("reasoning"),
        )
        for query, value in (row.get("relevancy_json") or {}).items()
        if isinstance(value, dict)
    }
    return Recipe(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        recipe_url=row.get("recipe_url"),
        image_url=row.get("image_url"),
        ingredients=list(row.get("ingredients") or []),
        directions=list(row.get("directions") or []),
        relevancy=relevancy,
    )
