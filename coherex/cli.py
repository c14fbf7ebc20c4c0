import click


@click.group()
def main() -> None:
    """Coherex - Agent runtime with persistent sandboxed sessions."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from COHEREX_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from COHEREX_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def agent(host: str | None, port: int | None, reload: bool) -> None:
    """Start the Agent Runtime server."""
    import uvicorn

    from coherex.agent_runtime.settings import CoherexSettings

    settings = CoherexSettings()

    uvicorn.run(
        "coherex.agent_runtime.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Allow enough time for in-flight executions to finish during shutdown,
        # plus a buffer for Redis close and DB dispose.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 60,
    )


@main.command()
def sweep() -> None:
    """Run one idle sweep (mark idle, hibernate expired sessions) and exit."""
    import asyncio

    from coherex.agent_runtime.db.engine import create_engine, create_session_factory
    from coherex.agent_runtime.log import setup_logging
    from coherex.agent_runtime.managers.agents import SqlAgentConfigProvider
    from coherex.agent_runtime.managers.sessions import SessionManager
    from coherex.agent_runtime.registry import ExecutionRegistry
    from coherex.agent_runtime.sandbox.e2b import E2BSandboxExecutor
    from coherex.agent_runtime.settings import CoherexSettings
    from coherex.agent_runtime.store.local import LocalSnapshotStore
    from coherex.agent_runtime.store.sql import SqlSessionStore

    settings = CoherexSettings()
    setup_logging(settings.log_level)
    if not settings.database_url:
        raise click.ClickException("COHEREX_DATABASE_URL is not set")

    async def _run() -> None:
        engine = create_engine(settings.database_url)
        factory = create_session_factory(engine)
        api_key = settings.e2b_api_key.get_secret_value() if settings.e2b_api_key else None
        manager = SessionManager(
            store=SqlSessionStore(factory),
            sandbox=E2BSandboxExecutor(api_key, template=settings.e2b_template),
            agents=SqlAgentConfigProvider(factory),
            registry=ExecutionRegistry(lock_wait_timeout=settings.lock_wait_timeout),
            snapshots=LocalSnapshotStore(settings.data_root, prefix=settings.data_prefix),
            settings=settings,
        )
        try:
            await manager.sweep()
        finally:
            await engine.dispose()

    asyncio.run(_run())
    click.echo("Idle sweep complete.")


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "agent_runtime" / "alembic.ini"
    cfg = Config(str(ini_path))
    return cfg


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from model changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
