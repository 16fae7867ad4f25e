"""Cookbook order domain models."""

from dataclasses import dataclass, field
from enum import Enum


class OrderStatus(str, Enum):
    """Lifecycle state of a cookbook order."""

    SUBMITTED = "Submitted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    PAID = "Paid"
    FAILED = "Failed"
    AWAITING_PAYMENT = "AwaitingPayment"


@dataclass
class Customer:
    """A paying customer and their remaining recipe credits."""

    email: str
    available_recipes: int = 0
    lifetime_recipes_used: int = 0
    lifetime_purchases: int = 0


@dataclass
class SynthesizedRecipe:
    """A recipe generated for an order."""

    title: str | None
    ingredients: list[str] = field(default_factory=list)
    directions: list[str] = field(default_factory=list)
    inspired_by: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)


@dataclass
class CookbookOrder:
    """An in-progress cookbook order held by at most one session."""

    order_id: str
    email: str
    recipe_list: list[str]
    synthesized_recipes: list[SynthesizedRecipe] = field(default_factory=list)
    status: OrderStatus = OrderStatus.SUBMITTED
    requires_payment: bool = False
    customer: Customer | None = None
