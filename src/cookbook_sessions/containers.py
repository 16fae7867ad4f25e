"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from cookbook_sessions.adapters.openai_llm_client import OpenAILlmClient
from cookbook_sessions.adapters.supabase_conversation_sink import (
    SupabaseConversationSink,
)
from cookbook_sessions.adapters.supabase_customer_repository import (
    SupabaseCustomerRepository,
)
from cookbook_sessions.adapters.supabase_order_repository import SupabaseOrderRepository
from cookbook_sessions.adapters.supabase_recipe_repository import (
    SupabaseRecipeRepository,
)
from cookbook_sessions.config import Settings
from cookbook_sessions.services.cleanup import SessionCleanupService
from cookbook_sessions.services.fan_out import FanOutExecutor
from cookbook_sessions.services.llm import LlmService
from cookbook_sessions.services.orders import OrderProcessingService
from cookbook_sessions.services.recipes import RecipeService
from cookbook_sessions.services.scopes import DefaultScopeFactory, ScopeFactory
from cookbook_sessions.services.sessions import SessionManager


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    scope_factory: ScopeFactory
    session_manager: SessionManager
    fan_out: FanOutExecutor
    llm_service: LlmService
    recipe_service: RecipeService
    order_processing_service: OrderProcessingService
    cleanup_service: SessionCleanupService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    session_config = resolved_settings.session_config()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    session_manager = SessionManager(
        order_repository=SupabaseOrderRepository(supabase_client),
        customer_repository=SupabaseCustomerRepository(supabase_client),
        conversation_sink=SupabaseConversationSink(
            supabase_client,
            enabled=resolved_settings.conversation_persistence_enabled,
        ),
        config=session_config,
    )
    scope_factory = DefaultScopeFactory()
    fan_out = FanOutExecutor(
        session_manager=session_manager,
        scope_factory=scope_factory,
    )
    openai_client = OpenAILlmClient.create(resolved_settings.openai_api_key)
    llm_service = LlmService(
        client=openai_client,
        session_manager=session_manager,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
    )
    recipe_service = RecipeService(
        llm_service=llm_service,
        fan_out=fan_out,
        repository=SupabaseRecipeRepository(supabase_client),
        acceptable_score_threshold=resolved_settings.acceptable_score_threshold,
        recipes_to_return=resolved_settings.recipes_to_return_per_retrieval,
        max_parallel_tasks=resolved_settings.max_parallel_tasks,
    )
    order_processing_service = OrderProcessingService(
        fan_out=fan_out,
        recipe_provider=recipe_service,
        max_parallel_tasks=resolved_settings.max_parallel_tasks,
    )
    cleanup_service = SessionCleanupService(
        session_manager=session_manager,
        config=session_config,
    )

    async def close_resources() -> None:
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        scope_factory=scope_factory,
        session_manager=session_manager,
        fan_out=fan_out,
        llm_service=llm_service,
        recipe_service=recipe_service,
        order_processing_service=order_processing_service,
        cleanup_service=cleanup_service,
        close_resources=close_resources,
    )
