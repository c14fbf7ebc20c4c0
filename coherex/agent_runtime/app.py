import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.routing import APIRouter
from loguru import logger

from coherex.agent_runtime.db.engine import create_engine, create_session_factory
from coherex.agent_runtime.execution.coordinator import ExecutionCoordinator
from coherex.agent_runtime.handlers import register_exception_handlers
from coherex.agent_runtime.log import setup_logging
from coherex.agent_runtime.managers.agents import SqlAgentConfigProvider
from coherex.agent_runtime.managers.executions import recover_orphaned_executions
from coherex.agent_runtime.managers.sessions import SessionManager
from coherex.agent_runtime.registry import ExecutionRegistry
from coherex.agent_runtime.sandbox.e2b import E2BSandboxExecutor
from coherex.agent_runtime.settings import CoherexSettings, get_settings
from coherex.agent_runtime.store.local import LocalSnapshotStore
from coherex.agent_runtime.store.sql import SqlSessionStore


def _create_sandbox_executor(settings: CoherexSettings) -> E2BSandboxExecutor:
    api_key = settings.e2b_api_key.get_secret_value() if settings.e2b_api_key else None
    return E2BSandboxExecutor(api_key, template=settings.e2b_template, command_timeout=settings.command_timeout)


async def _idle_sweeper(manager: SessionManager, interval: int) -> None:
    """Periodically mark inactive sessions idle and hibernate expired ones."""
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.sweep()
        except Exception:
            logger.exception("Idle sweep failed")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info("Agent Runtime starting (host={}, port={})", settings.host, settings.port)
    prefix_info = f", prefix={settings.data_prefix}" if settings.data_prefix else ""
    logger.info("Data root: {}{}", settings.data_root, prefix_info)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.redis = None
    _app.state.session_manager = None
    _app.state.coordinator = None

    # -- Database --------------------------------------------------------------
    if settings.database_url:
        engine = create_engine(settings.database_url)
        _app.state.db_engine = engine
        _app.state.db_session_factory = create_session_factory(engine)
        logger.info("PostgreSQL: connected (pool_size=10, max_overflow=20)")
    else:
        logger.warning("COHEREX_DATABASE_URL not set -- database features disabled")

    # -- Redis -----------------------------------------------------------------
    if settings.redis_url:
        _app.state.redis = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        logger.info("Redis: connected")
    else:
        logger.warning("COHEREX_REDIS_URL not set -- session leases are process-local")

    registry = ExecutionRegistry(
        _app.state.redis,
        lock_timeout=settings.lock_timeout,
        lock_wait_timeout=settings.lock_wait_timeout,
    )
    _app.state.registry = registry

    # -- Sandbox service -------------------------------------------------------
    sandbox = _create_sandbox_executor(settings)
    if not sandbox.configured:
        fallback = "simulation fallback enabled" if settings.simulation_fallback else "executions will fail"
        logger.warning("COHEREX_E2B_API_KEY not set -- sandboxes unavailable, {}", fallback)

    # -- Session manager / coordinator -----------------------------------------
    sweeper: asyncio.Task | None = None
    if _app.state.db_session_factory is not None:
        factory = _app.state.db_session_factory
        manager = SessionManager(
            store=SqlSessionStore(factory),
            sandbox=sandbox,
            agents=SqlAgentConfigProvider(factory),
            registry=registry,
            snapshots=LocalSnapshotStore(settings.data_root, prefix=settings.data_prefix),
            settings=settings,
        )
        _app.state.session_manager = manager
        _app.state.coordinator = ExecutionCoordinator(
            sessions=manager,
            sandbox=sandbox,
            registry=registry,
            settings=settings,
        )
        logger.info("SessionManager: initialised")

        # Startup recovery: mark orphaned executions as failed.
        async with factory() as db:
            await recover_orphaned_executions(db)

        if settings.idle_check_interval > 0:
            sweeper = asyncio.create_task(_idle_sweeper(manager, settings.idle_check_interval))
            logger.info("Idle sweeper: every {}s", settings.idle_check_interval)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Agent Runtime shutting down (active_executions={})", registry.active_count)

    # 1. Stop the idle sweeper.
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper

    # 2. Stop accepting new executions and wait for in-flight ones.
    #    Live sessions keep their sandboxes; their refs are durable.
    registry.begin_shutdown()
    if registry.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} executions to finish (timeout={}s)...", registry.active_count, timeout)
        drained = await registry.wait_until_drained(timeout=timeout)
        if not drained:
            logger.warning("{} executions still running after drain timeout", registry.active_count)

    # Close Redis client (returns pooled connections).
    if _app.state.redis is not None:
        await _app.state.redis.aclose()
        logger.info("Redis: closed")

    # Dispose DB engine (closes all pooled connections).
    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="Coherex Agent Runtime", lifespan=lifespan)
register_exception_handlers(app)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


# -- Routers -----------------------------------------------------------------
from coherex.agent_runtime.routers.agents import router as agents_router  # noqa: E402
from coherex.agent_runtime.routers.executions import router as executions_router  # noqa: E402
from coherex.agent_runtime.routers.previews import router as previews_router  # noqa: E402
from coherex.agent_runtime.routers.sessions import router as sessions_router  # noqa: E402
from coherex.agent_runtime.routers.versions import router as versions_router  # noqa: E402

api.include_router(agents_router)
api.include_router(sessions_router)
api.include_router(executions_router)
api.include_router(versions_router)
api.include_router(previews_router)

app.include_router(api)
