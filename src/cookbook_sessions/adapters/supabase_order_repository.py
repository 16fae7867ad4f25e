"""Supabase-backed cookbook order repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from cookbook_sessions.domain.orders import (
    CookbookOrder,
    OrderStatus,
    SynthesizedRecipe,
)
from cookbook_sessions.services.sessions import OrderRepository


@dataclass
class SupabaseOrderRepository(OrderRepository):
    """Supabase implementation for cookbook orders."""

    client: Client

    def get_order(self, order_id: str) -> CookbookOrder | None:
        """Return an order by id, if present."""
        response = (
            self.client.table("cookbook_orders")
            .select("order_id, email, status, requires_payment, order_json")
            .eq("order_id", order_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_order(response.data[0])

    def save_order(self, order: CookbookOrder) -> None:
        """Insert or update an order row."""
        self.client.table("cookbook_orders").upsert(
            {
                "order_id": order.order_id,
                "email": order.email,
                "status": order.status.value,
                "requires_payment": order.requires_payment,
                "order_json": {
                    "recipe_list": order.recipe_list,
                    "synthesized_recipes": [
                        _recipe_to_json(recipe) for recipe in order.synthesized_recipes
                    ],
                },
                "updated_at": datetime.now(tz=UTC).isoformat(),
            },
            on_conflict="order_id",
        ).execute()


def _recipe_to_json(recipe: SynthesizedRecipe) -> dict[str, object]:
    return {
        "title": recipe.title,
        "ingredients": recipe.ingredients,
        "directions": recipe.directions,
        "inspired_by": recipe.inspired_by,
        "image_urls": recipe.image_urls,
    }


def _parse_order(row: dict[str, object]) -> CookbookOrder:
    payload = row.get("order_json") or {}
    recipes = payload.get("synthesized_recipes") or []
    return CookbookOrder(
        order_id=str(row["order_id"]),
        email=str(row["email"]),
        recipe_list=list(payload.get("recipe_list") or []),
        synthesized_recipes=[
            SynthesizedRecipe(
                title=recipe.get("title"),
                ingredients=list(recipe.get("ingredients") or []),
                directions=list(recipe.get("directions") or []),
                inspired_by=list(recipe.get("inspired_by") or []),
                image_urls=list(recipe.get("image_urls") or []),
            )
            for recipe in recipes
        ],
        status=OrderStatus(row.get("status") or OrderStatus.SUBMITTED.value),
        requires_payment=bool(row.get("requires_payment")),
    )
