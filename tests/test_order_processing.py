"""Tests for credit-gated order processing."""

import asyncio
import json

import pytest

from cookbook_sessions.domain.errors import CustomerNotFoundError
from cookbook_sessions.domain.orders import CookbookOrder, Customer, SynthesizedRecipe
from cookbook_sessions.domain.sessions import Scope
from cookbook_sessions.services.fan_out import FanOutExecutor
from cookbook_sessions.services.llm import LlmService
from cookbook_sessions.services.orders import OrderProcessingService
from cookbook_sessions.services.recipes import RecipeService
from cookbook_sessions.services.scopes import DefaultScopeFactory
from cookbook_sessions.services.sessions import SessionManager
from tests.conftest import FakeLlmClient, InMemoryRecipeRepository


def _synthesize(prompt: str) -> dict[str, object]:
    name = json.loads(prompt)["recipe_name"]
    if name == "Broken":
        raise RuntimeError("model refused")
    return {
        "title": name,
        "ingredients": ["salt"],
        "directions": ["Cook."],
        "inspired_by": [],
    }


def _processing(
    session_manager: SessionManager, fan_out: FanOutExecutor
) -> tuple[OrderProcessingService, FakeLlmClient]:
    client = FakeLlmClient(
        handlers={"synthesize_recipe": _synthesize}, delay_seconds=0.01
    )
    recipe_service = RecipeService(
        llm_service=LlmService(
            client=client, session_manager=session_manager, model="gpt-test"
        ),
        fan_out=fan_out,
        repository=InMemoryRecipeRepository(),
    )
    service = OrderProcessingService(fan_out=fan_out, recipe_provider=recipe_service)
    return service, client


def _scope(session_manager: SessionManager, factory: DefaultScopeFactory) -> Scope:
    scope = factory.create_scope()
    scope.session_id = session_manager.create_session(scope.id).id
    return scope


def _order(recipes: list[str], credits: int) -> CookbookOrder:
    return CookbookOrder(
        order_id="order-1",
        email="cook@example.com",
        recipe_list=recipes,
        customer=Customer(email="cook@example.com", available_recipes=credits),
    )


def test_process_recipes_never_exceeds_available_credits(
    session_manager: SessionManager,
    fan_out: FanOutExecutor,
    scope_factory: DefaultScopeFactory,
) -> None:
    service, _ = _processing(session_manager, fan_out)
    order = _order(["Pho", "Ramen", "Laksa", "Udon", "Soba"], credits=3)
    scope = _scope(session_manager, scope_factory)

    produced = asyncio.run(service.process_recipes(scope, order))

    assert produced == 3
    assert len(order.synthesized_recipes) == 3
    assert order.customer.available_recipes == 0
    assert order.customer.lifetime_recipes_used == 3
    assert order.requires_payment is True


def test_process_recipes_completes_order_within_credits(
    session_manager: SessionManager,
    fan_out: FanOutExecutor,
    scope_factory: DefaultScopeFactory,
) -> None:
    service, _ = _processing(session_manager, fan_out)
    order = _order(["Pho", "Ramen"], credits=5)
    scope = _scope(session_manager, scope_factory)

    produced = asyncio.run(service.process_recipes(scope, order))

    assert produced == 2
    assert sorted(recipe.title for recipe in order.synthesized_recipes) == [
        "Pho",
        "Ramen",
    ]
    assert order.customer.available_recipes == 3
    assert order.requires_payment is False


def test_process_recipes_without_credits_does_nothing(
    session_manager: SessionManager,
    fan_out: FanOutExecutor,
    scope_factory: DefaultScopeFactory,
) -> None:
    service, client = _processing(session_manager, fan_out)
    order = _order(["Pho"], credits=0)
    scope = _scope(session_manager, scope_factory)

    assert asyncio.run(service.process_recipes(scope, order)) == 0
    assert client.calls == []
    assert order.synthesized_recipes == []


def test_process_recipes_skips_already_synthesized_unless_forced(
    session_manager: SessionManager,
    fan_out: FanOutExecutor,
    scope_factory: DefaultScopeFactory,
) -> None:
    service, client = _processing(session_manager, fan_out)
    order = _order(["Pho", "Ramen"], credits=5)
    order.synthesized_recipes.append(SynthesizedRecipe(title="pho"))
    scope = _scope(session_manager, scope_factory)

    assert asyncio.run(service.process_recipes(scope, order)) == 1
    assert len(client.calls) == 1
    assert "Ramen" in client.calls[0][1]

    assert asyncio.run(service.process_recipes(scope, order, force=True)) == 2
    assert len(order.synthesized_recipes) == 4


def test_process_recipes_continues_past_failed_items(
    session_manager: SessionManager,
    fan_out: FanOutExecutor,
    scope_factory: DefaultScopeFactory,
) -> None:
    service, _ = _processing(session_manager, fan_out)
    order = _order(["Pho", "Broken", "Laksa"], credits=2)
    scope = _scope(session_manager, scope_factory)

    produced = asyncio.run(service.process_recipes(scope, order))

    assert produced == 2
    assert sorted(recipe.title for recipe in order.synthesized_recipes) == [
        "Laksa",
        "Pho",
    ]
    assert order.customer.available_recipes == 0


def test_process_recipes_requires_customer(
    session_manager: SessionManager,
    fan_out: FanOutExecutor,
    scope_factory: DefaultScopeFactory,
) -> None:
    service, _ = _processing(session_manager, fan_out)
    order = CookbookOrder(order_id="o", email="cook@example.com", recipe_list=["Pho"])
    scope = _scope(session_manager, scope_factory)

    with pytest.raises(CustomerNotFoundError):
        asyncio.run(service.process_recipes(scope, order))
