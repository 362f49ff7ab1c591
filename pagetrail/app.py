from contextlib import asynccontextmanager

from fastapi import FastAPI

import pagetrail.models  # noqa: F401
from pagetrail.database import Base, engine
from pagetrail.routers import history


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Pagetrail", version="0.1.0", lifespan=lifespan)
    app.include_router(history.router)
    return app


app = create_app()
