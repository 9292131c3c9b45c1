# src/marketplace_ingest/tasks/cli.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""marketplace-ingest CLI: operational commands.

Commands:
    worker run [--once]        Poll the task queue (or process one batch).
    task enqueue TYPE          Enqueue a task for one item.
    task enqueue-stale         Enqueue refreshes for items past their freshness window.
    task cancel ID             Cancel a PENDING or RUNNING task.
    task stats                 Print task counts by status.
    ingest cycle [--asin ...]  Run one ingestion cycle under the ingestion lock.
    db init                    Create every table that does not exist yet.

Environment:
    DATABASE_URL               Async SQLAlchemy URL (postgresql+asyncpg://).
    KEEPA_API_KEY              Keepa key; Keepa is skipped when unset.
    SP_API_ACCESS_TOKEN        SP-API access token; SP-API is skipped when unset.
"""

from __future__ import annotations

import asyncio
import json
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

import typer

from marketplace_ingest.adapters.gateways.current_state_feature_computer import (
    CurrentStateFeatureComputer,
)
from marketplace_ingest.adapters.gateways.keepa_gateway import KeepaGateway
from marketplace_ingest.adapters.gateways.sp_api_gateway import SpApiGateway
from marketplace_ingest.adapters.uow.sqlalchemy_uow import SqlAlchemyUnitOfWork
from marketplace_ingest.application.uow import UnitOfWork, UnitOfWorkFactory, run_in_uow
from marketplace_ingest.application.use_cases.enqueue_task import EnqueueTask, EnqueueTaskRequest
from marketplace_ingest.application.use_cases.run_ingestion_cycle import (
    IngestionCycleRequest,
    RunIngestionCycle,
)
from marketplace_ingest.application.use_cases.task_handlers import TaskHandlers
from marketplace_ingest.application.use_cases.transform_and_save import TransformAndSave
from marketplace_ingest.application.worker import TaskWorker, WorkerConfig
from marketplace_ingest.config.settings import Settings, get_settings
from marketplace_ingest.domain.entities.snapshot import CurrentState
from marketplace_ingest.domain.enums.ingestion import IngestionRunType
from marketplace_ingest.domain.enums.task import ScopeType, TaskType
from marketplace_ingest.domain.exceptions.tasks import TaskNotFoundError, UnknownTaskTypeError
from marketplace_ingest.domain.interfaces.repositories.current_state_repository import (
    CurrentStateRepository,
)
from marketplace_ingest.infrastructure.database.session import (
    create_schema,
    dispose_engine,
    get_sessionmaker,
    init_engine_and_sessionmaker,
)
from marketplace_ingest.infrastructure.external_apis.keepa.client import KeepaClient
from marketplace_ingest.infrastructure.external_apis.keepa.settings import KeepaSettings
from marketplace_ingest.infrastructure.external_apis.sp_api.client import SpApiClient
from marketplace_ingest.infrastructure.external_apis.sp_api.settings import SpApiSettings
from marketplace_ingest.infrastructure.logging.logger import configure_root_logging, get_json_logger
from marketplace_ingest.infrastructure.rate_limit.token_bucket import (
    keepa_token_bucket,
    sp_api_token_bucket,
)

configure_root_logging()
log = get_json_logger(__name__)

app = typer.Typer(add_completion=False, no_args_is_help=True)
worker_app = typer.Typer(no_args_is_help=True)
task_app = typer.Typer(no_args_is_help=True)
ingest_app = typer.Typer(no_args_is_help=True)
db_app = typer.Typer(no_args_is_help=True)
app.add_typer(worker_app, name="worker")
app.add_typer(task_app, name="task")
app.add_typer(ingest_app, name="ingest")
app.add_typer(db_app, name="db")


def _echo(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, default=str, sort_keys=True))


@dataclass(frozen=True, slots=True)
class Runtime:
    """Objects wired for one command invocation."""

    settings: Settings
    uow_factory: UnitOfWorkFactory
    keepa: KeepaGateway | None
    sp_api: SpApiGateway | None

    def transform(self) -> TransformAndSave:
        """Return the per-item transform use case."""
        return TransformAndSave(
            uow_factory=self.uow_factory, our_seller_id=self.settings.our_seller_id
        )


@asynccontextmanager
async def runtime(*, with_sources: bool = True) -> AsyncIterator[Runtime]:
    """Initialize the database and (optionally) the source gateways.

    Sources without credentials are skipped with a warning. HTTP clients and
    the engine are closed on exit.
    """
    settings = get_settings()
    init_engine_and_sessionmaker(settings)
    sessionmaker = get_sessionmaker()

    keepa_client: KeepaClient | None = None
    sp_client: SpApiClient | None = None
    keepa: KeepaGateway | None = None
    sp_api: SpApiGateway | None = None
    if with_sources:
        keepa_settings = KeepaSettings()
        if keepa_settings.configured:
            keepa_client = KeepaClient(keepa_settings)
            keepa = KeepaGateway(
                keepa_client, keepa_token_bucket(), batch_size=keepa_settings.batch_size
            )
        else:
            log.warning("cli.source.unconfigured", extra={"extra": {"source": "keepa"}})
        sp_settings = SpApiSettings()
        if sp_settings.configured:
            sp_client = SpApiClient(sp_settings)
            sp_api = SpApiGateway(sp_client, sp_api_token_bucket())
        else:
            log.warning("cli.source.unconfigured", extra={"extra": {"source": "sp_api"}})

    try:
        yield Runtime(
            settings=settings,
            uow_factory=lambda: SqlAlchemyUnitOfWork(sessionmaker),
            keepa=keepa,
            sp_api=sp_api,
        )
    finally:
        if keepa_client is not None:
            await keepa_client.aclose()
        if sp_client is not None:
            await sp_client.aclose()
        await dispose_engine()


def build_worker(rt: Runtime) -> TaskWorker:
    """Wire the worker with the full handler table."""
    handlers = TaskHandlers(
        uow_factory=rt.uow_factory,
        transform=rt.transform(),
        feature_computer=CurrentStateFeatureComputer(
            uow_factory=rt.uow_factory,
            default_marketplace_id=rt.settings.default_marketplace_id,
        ),
        keepa=rt.keepa,
        sp_api=rt.sp_api,
        default_marketplace_id=rt.settings.default_marketplace_id,
    )
    return TaskWorker(
        uow_factory=rt.uow_factory,
        handlers=handlers.registry(),
        config=WorkerConfig(
            poll_interval_s=rt.settings.worker_poll_interval_ms / 1000,
            batch_size=rt.settings.worker_batch_size,
            backoff_base_s=rt.settings.task_backoff_base_s,
            backoff_cap_s=rt.settings.task_backoff_cap_s,
        ),
    )


# ---------------------------------------------------------------------------
# worker


@worker_app.command("run")
def worker_run(
    once: bool = typer.Option(False, "--once", help="Process one batch and exit."),  # noqa: B008
) -> None:
    """Run the task worker until SIGINT/SIGTERM (or one batch with ``--once``)."""

    async def _run() -> None:
        async with runtime() as rt:
            worker = build_worker(rt)
            if once:
                processed = await worker.run_once()
                _echo({"processed": processed})
                return
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with suppress(NotImplementedError):
                    loop.add_signal_handler(sig, worker.stop)
            await worker.run_forever()

    asyncio.run(_run())


# ---------------------------------------------------------------------------
# task


@task_app.command("enqueue")
def task_enqueue(
    task_type: str = typer.Argument(..., help="Task type, e.g. INGEST_ASIN_DATA."),  # noqa: B008
    asin: str = typer.Option(..., "--asin", help="Item identifier."),  # noqa: B008
    marketplace_id: int | None = typer.Option(None, "--marketplace-id"),  # noqa: B008
    priority: int = typer.Option(5, "--priority", help="Higher runs sooner."),  # noqa: B008
    scope: ScopeType = typer.Option(ScopeType.LISTING, "--scope"),  # noqa: B008
    scope_id: str | None = typer.Option(None, "--scope-id"),  # noqa: B008
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1),  # noqa: B008
) -> None:
    """Enqueue one task for one item."""

    async def _run() -> None:
        async with runtime(with_sources=False) as rt:
            uc = EnqueueTask(
                uow_factory=rt.uow_factory,
                default_max_attempts=rt.settings.task_default_max_attempts,
            )
            task = await uc.execute(
                EnqueueTaskRequest(
                    task_type=task_type.upper(),
                    scope_type=scope.value,
                    scope_id=scope_id,
                    input={
                        "asin": asin,
                        "marketplace_id": marketplace_id or rt.settings.default_marketplace_id,
                    },
                    priority=priority,
                    max_attempts=max_attempts,
                    created_by="cli",
                )
            )
            _echo(
                {
                    "task_id": str(task.id),
                    "task_type": task.task_type,
                    "status": task.status.value,
                }
            )

    try:
        asyncio.run(_run())
    except UnknownTaskTypeError as exc:
        known = ", ".join(t.value for t in TaskType)
        typer.echo(f"Unknown task type {task_type!r}; expected one of: {known}")
        raise typer.Exit(code=2) from exc


@task_app.command("enqueue-stale")
def task_enqueue_stale(
    limit: int = typer.Option(100, min=1, help="Maximum items to enqueue."),  # noqa: B008
) -> None:
    """Enqueue ``INGEST_ASIN_DATA`` for items older than ``STALE_AFTER_MINUTES``."""

    async def _run() -> None:
        async with runtime(with_sources=False) as rt:
            max_age = timedelta(minutes=rt.settings.stale_after_minutes)

            async def _stale(uow: UnitOfWork) -> list[CurrentState]:
                repo: CurrentStateRepository = uow.get_repository(CurrentStateRepository)
                return await repo.list_stale(max_age, limit=limit)

            stale = await run_in_uow(rt.uow_factory(), _stale)
            uc = EnqueueTask(
                uow_factory=rt.uow_factory,
                default_max_attempts=rt.settings.task_default_max_attempts,
            )
            for current in stale:
                await uc.execute(
                    EnqueueTaskRequest(
                        task_type=TaskType.INGEST_ASIN_DATA.value,
                        scope_type=ScopeType.ASIN.value,
                        scope_id=current.asin,
                        input={"asin": current.asin, "marketplace_id": current.marketplace_id},
                        created_by="cli",
                    )
                )
            _echo({"enqueued": len(stale), "max_age_minutes": rt.settings.stale_after_minutes})

    asyncio.run(_run())


@task_app.command("cancel")
def task_cancel(task_id: UUID = typer.Argument(...)) -> None:  # noqa: B008
    """Cancel a PENDING or RUNNING task."""

    async def _run() -> bool:
        async with runtime(with_sources=False) as rt:
            return await EnqueueTask(uow_factory=rt.uow_factory).cancel(task_id)

    try:
        cancelled = asyncio.run(_run())
    except TaskNotFoundError as exc:
        typer.echo(f"Task {task_id} not found")
        raise typer.Exit(code=1) from exc
    _echo({"task_id": str(task_id), "cancelled": cancelled})
    if not cancelled:
        raise typer.Exit(code=1)


@task_app.command("stats")
def task_stats() -> None:
    """Print task counts for every status."""

    async def _run() -> None:
        async with runtime(with_sources=False) as rt:
            counts = await EnqueueTask(uow_factory=rt.uow_factory).stats()
            _echo({status.value: n for status, n in counts.items()})

    asyncio.run(_run())


# ---------------------------------------------------------------------------
# ingest


@ingest_app.command("cycle")
def ingest_cycle(
    asin: list[str] | None = typer.Option(  # noqa: B008
        None, "--asin", help="Identifier(s); repeat or comma-separate. Default: tracked items."
    ),
    marketplace_id: int | None = typer.Option(None, "--marketplace-id"),  # noqa: B008
    max_items: int | None = typer.Option(None, "--max-items", min=1),  # noqa: B008
) -> None:
    """Run one ingestion cycle; exits 1 when the run is not SUCCEEDED."""

    async def _run() -> dict[str, Any]:
        async with runtime() as rt:
            cycle = RunIngestionCycle(
                uow_factory=rt.uow_factory,
                transform=rt.transform(),
                keepa=rt.keepa,
                sp_api=rt.sp_api,
            )
            result = await cycle.execute(
                IngestionCycleRequest(
                    asins=asin or None,
                    marketplace_id=marketplace_id or rt.settings.default_marketplace_id,
                    max_items=max_items or rt.settings.ingestion_max_items,
                    run_type=IngestionRunType.FULL_REFRESH,
                )
            )
            return {
                "ingestion_run_id": result.ingestion_run_id,
                "status": result.status.value if result.status else "SKIPPED_LOCKED",
                "item_count": result.item_count,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "missing": list(result.missing),
                "skipped_identifiers": list(result.skipped_identifiers),
                "duration_ms": result.duration_ms,
            }

    summary = asyncio.run(_run())
    _echo(summary)
    if summary["status"] not in ("SUCCEEDED", "SKIPPED_LOCKED"):
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# db


@db_app.command("init")
def db_init() -> None:
    """Create every ingestion table that does not exist yet."""

    async def _run() -> None:
        async with runtime(with_sources=False):
            await create_schema()
            log.info("db.init.done")

    asyncio.run(_run())


if __name__ == "__main__":
    app()
