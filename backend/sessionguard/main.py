import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from sessionguard.api.deps import get_rotation_engine
from sessionguard.api.errors import register_exception_handlers
from sessionguard.api.v1 import auth

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("sessionguard").setLevel(logging.DEBUG)
from sessionguard.config import settings
from sessionguard.db.session import init_db
from sessionguard.services.retention import purge_expired_sessions

scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_jwt_config()
    await init_db()
    scheduler.add_job(
        purge_expired_sessions,
        "interval",
        minutes=max(1, settings.session_sweep_interval_minutes),
        args=[get_rotation_engine()],
    )
    scheduler.start()
    yield
    scheduler.shutdown()


app = FastAPI(
    title="Sessionguard API",
    description="Access/refresh token issuance with refresh-token rotation and reuse detection",
    version="0.1.0",
    lifespan=lifespan,
)
register_exception_handlers(app)
app.include_router(auth.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
def health():
    return {"status": "ok"}
