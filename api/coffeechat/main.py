import asyncio
import logging
import os
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import SCHEDULER_ENABLED
from .database import SessionLocal, engine
from .errors import RejectedOperation, RejectionKind
from .routes import include_modular_routers
from .services.completion import PresenceTracker
from .services.platform import HttpPlatformGateway
from .services.scheduler import WeeklyScheduler

logger = logging.getLogger(__name__)

app = FastAPI(title="Coffee Chat API")
include_modular_routers(app)

REJECTION_STATUS = {
    RejectionKind.NOT_NOW: 409,
    RejectionKind.NOT_ALLOWED: 403,
    RejectionKind.INVALID: 400,
    RejectionKind.ALREADY_DONE: 200,
}


@app.exception_handler(RejectedOperation)
async def rejected_operation_handler(request: Request, exc: RejectedOperation) -> JSONResponse:
    return JSONResponse(
        status_code=REJECTION_STATUS[exc.kind],
        content={"status": exc.kind.value, "detail": exc.detail},
    )


def _migrations_dir() -> Path:
    env_dir = os.getenv("MIGRATIONS_DIR", "").strip()
    docker_dir = Path("/app/migrations")
    local_dir = Path(__file__).resolve().parents[1] / "migrations"

    if env_dir:
        migrations_dir = Path(env_dir)
    elif docker_dir.exists():
        migrations_dir = docker_dir
    else:
        migrations_dir = local_dir

    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(
            "Migrations directory not found. Checked: "
            f"MIGRATIONS_DIR={env_dir or '<unset>'}, {docker_dir}, {local_dir}"
        )
    return migrations_dir


def split_statements(sql: str) -> list[str]:
    # asyncpg prepares one statement per execute
    return [stmt.strip() for stmt in sql.split(";") if stmt.strip()]


async def run_migrations() -> None:
    migrations_dir = _migrations_dir()
    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    async with SessionLocal() as db:
        for fname in files:
            sql = (migrations_dir / fname).read_text(encoding="utf-8")
            for stmt in split_statements(sql):
                await db.execute(text(stmt))
        await db.commit()
    logger.info("applied %s migration files", len(files))


async def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            async with SessionLocal() as db:
                await db.execute(text("SELECT 1"))
                await db.commit()
            return
        except (OperationalError, OSError) as exc:
            last_err = exc
            await asyncio.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
async def on_startup() -> None:
    await wait_for_db()
    await run_migrations()
    gateway = HttpPlatformGateway()
    app.state.gateway = gateway
    app.state.presence_tracker = PresenceTracker(SessionLocal, gateway)
    app.state.scheduler_task = None
    if SCHEDULER_ENABLED:
        scheduler = WeeklyScheduler(SessionLocal, gateway)
        app.state.scheduler_task = asyncio.create_task(scheduler.run_forever())


@app.on_event("shutdown")
async def on_shutdown() -> None:
    task = getattr(app.state, "scheduler_task", None)
    if task is not None:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
    tracker = getattr(app.state, "presence_tracker", None)
    if tracker is not None:
        await tracker.cancel_all()
    gateway = getattr(app.state, "gateway", None)
    if gateway is not None:
        await gateway.aclose()
    await engine.dispose()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
