from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict

from fastapi import FastAPI

from .core.config import settings
from .core.logging import configure_logging
from .engine.registry import get_store, reset_sessions
from .routers.goals import router as goals_router
from .store.memory import seed_store

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.seed_path:
        await seed_store(get_store(), Path(settings.seed_path))
    yield
    reset_sessions()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


app.include_router(goals_router)
