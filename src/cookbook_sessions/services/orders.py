"""Credit-gated recipe synthesis for cookbook orders."""

import logging
from dataclasses import dataclass
from typing import Protocol

from cookbook_sessions.domain.errors import CustomerNotFoundError
from cookbook_sessions.domain.orders import CookbookOrder, SynthesizedRecipe
from cookbook_sessions.domain.recipes import Recipe
from cookbook_sessions.domain.sessions import Scope
from cookbook_sessions.services.fan_out import (
    AtomicCounter,
    FanOutExecutor,
    FanOutStatus,
    ResultBag,
    StopSignal,
)

_logger = logging.getLogger(__name__)


class RecipeProvider(Protocol):
    """Finds source recipes and synthesizes new ones."""

    async def get_recipes(
        self, scope: Scope, query: str, requested_recipe_name: str | None = None
    ) -> list[Recipe]:
        """Return ranked source recipes for `query`."""

    async def synthesize_recipe(
        self,
        scope: Scope,
        source_recipes: list[Recipe],
        order: CookbookOrder,
        recipe_name: str,
    ) -> SynthesizedRecipe:
        """Write a recipe for `order`."""


@dataclass
class OrderProcessingService:
    """Synthesizes an order's recipes, never more than the customer can pay for."""

    fan_out: FanOutExecutor
    recipe_provider: RecipeProvider
    max_parallel_tasks: int = 5

    async def process_recipes(
        self, scope: Scope, order: CookbookOrder, force: bool = False
    ) -> int:
        """Synthesize pending recipes and return how many were produced.

        Work stops once `min(available credits, pending recipes)` items have
        succeeded. Credits are decremented by the number produced and the
        order is flagged as requiring payment while recipes remain.
        """
        customer = order.customer
        if customer is None:
            raise CustomerNotFoundError(f"Order {order.order_id} has no customer")

        already_synthesized = {
            recipe.title.lower() for recipe in order.synthesized_recipes if recipe.title
        }
        pending = [
            name
            for name in order.recipe_list
            if force or name.lower() not in already_synthesized
        ]
        if not pending:
            _logger.info("No new recipes to process for order %s", order.order_id)
            return 0

        available = customer.available_recipes
        if available <= 0:
            _logger.info(
                "Customer %s has 0 available recipes left, skipping processing",
                customer.email,
            )
            return 0

        to_process = min(available, len(pending))
        completed = AtomicCounter()
        new_recipes: ResultBag[SynthesizedRecipe] = ResultBag()

        async def synthesize(
            child_scope: Scope, recipe_name: str, stop: StopSignal
        ) -> FanOutStatus:
            if completed.value >= to_process:
                return FanOutStatus.STOP_EARLY
            try:
                sources = await self.recipe_provider.get_recipes(
                    child_scope, recipe_name, requested_recipe_name=recipe_name
                )
                recipe = await self.recipe_provider.synthesize_recipe(
                    child_scope, sources, order, recipe_name
                )
            except Exception:
                _logger.exception(
                    "Failed to synthesize %s for order %s", recipe_name, order.order_id
                )
                return FanOutStatus.CONTINUE

            recipe.title = recipe.title or recipe_name
            count = completed.increment()
            if count > to_process:
                return FanOutStatus.STOP_EARLY
            new_recipes.add(recipe)
            if count == to_process:
                return FanOutStatus.STOP_EARLY
            return FanOutStatus.CONTINUE

        await self.fan_out.parallel_for_each(
            scope,
            pending,
            synthesize,
            min(self.max_parallel_tasks, to_process),
        )

        produced = new_recipes.snapshot()
        if produced:
            order.synthesized_recipes.extend(produced)
            customer.available_recipes -= len(produced)
            customer.lifetime_recipes_used += len(produced)
        order.requires_payment = len(order.synthesized_recipes) < len(order.recipe_list)

        _logger.info(
            "Order %s processing complete. Synthesized %s new recipes. "
            "Total now: %s. Still requires payment? %s",
            order.order_id,
            len(produced),
            len(order.synthesized_recipes),
            order.requires_payment,
        )
        return len(produced)
