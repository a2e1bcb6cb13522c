from __future__ import annotations

import os

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes import chat, health, sessions, websocket
from api.services.message_store import InMemoryMessageStore, MessageStore, PostgresMessageStore, create_pool
from api.websocket.rate_limiter import SessionRateLimiter
from core.constants import Settings, get_settings
from core.session.reaper import IdleReaper
from core.session.registry import SessionRegistry
from integrations.agent_client import AgentClient, EchoAgentClient, OpenAIAgentClient
from utils.client_factory import create_http_client, create_openai_client
from utils.logger import configure_uvicorn_logging, logger

# Load environment variables from src/.env at module load time
env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(env_path)


def _create_agent_client(settings: Settings) -> AgentClient:
    """OpenAI streaming client when a key is configured, echo client otherwise."""
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set, using echo agent client")
        return EchoAgentClient()

    http_client = create_http_client(enable_logging=settings.debug, read_timeout=settings.http_read_timeout)
    client = create_openai_client(settings.openai_api_key, base_url=settings.openai_base_url, http_client=http_client)
    logger.info(f"Configured OpenAI agent client (model: {settings.openai_model})")
    return OpenAIAgentClient(client, model=settings.openai_model)


def create_app(
    agent_client: AgentClient | None = None,
    message_store: MessageStore | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        agent_client: Upstream client override (default: chosen from settings)
        message_store: Store override (default: PostgreSQL if configured, else memory)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan: startup and shutdown."""
        settings = get_settings()
        configure_uvicorn_logging()

        db_pool = None
        store = message_store
        if store is None and settings.database_url:
            db_pool = await create_pool(
                settings.database_url,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
            )
            store = PostgresMessageStore(db_pool)
        app.state.message_store = store if store is not None else InMemoryMessageStore()

        app.state.registry = SessionRegistry(
            agent_client if agent_client is not None else _create_agent_client(settings),
            max_pending=settings.subscriber_queue_size,
            callback_timeout=settings.subscriber_callback_timeout,
            cancel_grace_period=settings.cancel_grace_period,
        )
        app.state.rate_limiter = SessionRateLimiter(
            settings.ws_message_rate_limit,
            settings.ws_message_rate_window,
        )

        # One sweep task per process
        app.state.reaper = IdleReaper(
            app.state.registry,
            max_idle_seconds=settings.session_idle_timeout,
            interval_seconds=settings.reaper_interval,
        )
        await app.state.reaper.start()

        try:
            yield
        finally:
            await app.state.reaper.stop()
            await app.state.registry.shutdown()
            if db_pool is not None:
                await db_pool.close()
            logger.info("Session Stream shutdown complete")

    app = FastAPI(
        title="Session Stream API",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id", "X-Request-ID"],
    )
    # Outermost: every response gets X-Request-ID
    app.add_middleware(RequestContextMiddleware)

    register_exception_handlers(app)

    # Routes
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(chat.router, prefix="/api", tags=["chat"])
    app.include_router(sessions.router, prefix="/api/sessions", tags=["sessions"])
    app.include_router(websocket.router, prefix="/ws", tags=["websocket"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        reload_dirs=["src"],
    )
