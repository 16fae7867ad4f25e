"""Recipe ranking and synthesis backed by LLM function calls."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Protocol

from cookbook_sessions.domain.llm_outputs import RecipeDraft, RecipeRanking
from cookbook_sessions.domain.orders import CookbookOrder, SynthesizedRecipe
from cookbook_sessions.domain.recipes import Recipe, RelevancyResult
from cookbook_sessions.domain.sessions import Scope
from cookbook_sessions.services.fan_out import (
    FanOutExecutor,
    FanOutStatus,
    ResultBag,
    StopSignal,
)
from cookbook_sessions.services.llm import FunctionDefinition, LlmService

_logger = logging.getLogger(__name__)

RANK_RECIPE_PROMPT = (
    "You rate how well a recipe matches a cookbook request. "
    "Return a score from 0 to 100 and a short reasoning."
)

SYNTHESIZE_RECIPE_PROMPT = (
    "You write a new recipe for a personalised cookbook, inspired by the "
    "source recipes provided. List which source URLs inspired the result."
)

RANK_RECIPE_FUNCTION = FunctionDefinition(
    name="rank_recipe",
    description="Score how relevant a recipe is to the requested dish.",
    parameters={
        "type": "object",
        "properties": {
            "score": {"type": "integer", "minimum": 0, "maximum": 100},
            "reasoning": {"type": "string"},
        },
        "required": ["score", "reasoning"],
        "additionalProperties": False,
    },
)

SYNTHESIZE_RECIPE_FUNCTION = FunctionDefinition(
    name="synthesize_recipe",
    description="Produce a recipe tailored to the cookbook order.",
    parameters={
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "ingredients": {"type": "array", "items": {"type": "string"}},
            "directions": {"type": "array", "items": {"type": "string"}},
            "inspired_by": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["title", "ingredients", "directions", "inspired_by"],
        "additionalProperties": False,
    },
)


class RecipeRepository(Protocol):
    """Source of candidate recipes."""

    def search_recipes(self, query: str, limit: int) -> list[Recipe]:
        """Return candidate recipes matching `query`."""


@dataclass
class RecipeService:
    """Ranks candidate recipes and synthesizes new ones."""

    llm_service: LlmService
    fan_out: FanOutExecutor
    repository: RecipeRepository
    acceptable_score_threshold: int = 70
    recipes_to_return: int = 3
    max_parallel_tasks: int = 5
    search_limit: int = 20

    async def get_recipes(
        self, scope: Scope, query: str, requested_recipe_name: str | None = None
    ) -> list[Recipe]:
        """Search candidates for `query` and return the acceptable ones."""
        candidates = await asyncio.to_thread(
            self.repository.search_recipes, query, self.search_limit
        )
        return await self.rank_recipes(
            scope, candidates, query, requested_recipe_name=requested_recipe_name
        )

    async def rank_recipes(
        self,
        scope: Scope,
        recipes: list[Recipe],
        query: str,
        acceptable_score: int | None = None,
        requested_recipe_name: str | None = None,
    ) -> list[Recipe]:
        """Rank recipes in parallel until enough acceptable ones are found.

        Cached relevancy is reused when it already meets the threshold.
        Results are sorted by score, best first.
        """
        normalized = query.strip().lower()
        threshold = (
            self.acceptable_score_threshold
            if acceptable_score is None
            else acceptable_score
        )
        ranked: ResultBag[Recipe] = ResultBag()

        async def rank(
            child_scope: Scope, recipe: Recipe, stop: StopSignal
        ) -> FanOutStatus:
            relevancy = recipe.relevancy.get(normalized)
            if relevancy is None or relevancy.score < threshold:
                relevancy = await self._rank_recipe(
                    child_scope, recipe, normalized, requested_recipe_name
                )
                recipe.relevancy[normalized] = relevancy
            if relevancy.score < threshold:
                return FanOutStatus.CONTINUE
            if ranked.add(recipe) >= self.recipes_to_return:
                return FanOutStatus.STOP_EARLY
            return FanOutStatus.CONTINUE

        result = await self.fan_out.parallel_for_each(
            scope, recipes, rank, self.max_parallel_tasks
        )
        recipes_found = sorted(
            ranked.snapshot(),
            key=lambda recipe: recipe.relevancy[normalized].score,
            reverse=True,
        )
        _logger.info(
            "Ranked %s recipes for '%s': %s acceptable, stopped early=%s",
            result.completed,
            normalized,
            len(recipes_found),
            result.stopped_early,
        )
        return recipes_found

    async def synthesize_recipe(
        self,
        scope: Scope,
        source_recipes: list[Recipe],
        order: CookbookOrder,
        recipe_name: str,
    ) -> SynthesizedRecipe:
        """Write a new recipe for `order` from the ranked sources."""
        user_prompt = json.dumps(
            {
                "recipe_name": recipe_name,
                "order_email": order.email,
                "sources": [
                    {
                        "title": recipe.title,
                        "url": recipe.recipe_url,
                        "ingredients": recipe.ingredients,
                        "directions": recipe.directions,
                    }
                    for recipe in source_recipes
                ],
            }
        )
        result = await self.llm_service.call_function(
            scope, SYNTHESIZE_RECIPE_PROMPT, user_prompt, SYNTHESIZE_RECIPE_FUNCTION
        )
        draft = RecipeDraft.model_validate(result.arguments)
        return SynthesizedRecipe(
            title=draft.title or None,
            ingredients=draft.ingredients,
            directions=draft.directions,
            inspired_by=draft.inspired_by,
            image_urls=_image_urls(source_recipes, draft.inspired_by),
        )

    async def _rank_recipe(
        self,
        scope: Scope,
        recipe: Recipe,
        query: str,
        requested_recipe_name: str | None,
    ) -> RelevancyResult:
        user_prompt = json.dumps(
            {
                "query": query,
                "requested_recipe_name": requested_recipe_name,
                "recipe": {
                    "title": recipe.title,
                    "ingredients": recipe.ingredients,
                    "directions": recipe.directions,
                },
            }
        )
        result = await self.llm_service.call_function(
            scope, RANK_RECIPE_PROMPT, user_prompt, RANK_RECIPE_FUNCTION
        )
        ranking = RecipeRanking.model_validate(result.arguments)
        return RelevancyResult(
            query=query, score=ranking.score, reasoning=ranking.reasoning
        )


def _image_urls(source_recipes: list[Recipe], inspired_by: list[str]) -> list[str]:
    """Prefer images of the sources that inspired the result."""
    preferred = [
        recipe.image_url
        for recipe in source_recipes
        if recipe.image_url and recipe.recipe_url in inspired_by
    ]
    if preferred:
        return preferred
    return [recipe.image_url for recipe in source_recipes if recipe.image_url]
