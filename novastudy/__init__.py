from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from novastudy.config import settings
from novastudy.db import init_all_databases


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_all_databases(settings.data_dir)
    yield


def create_app() -> FastAPI:
    application = FastAPI(
        title="NovaStudy Backend", version="0.1.0", lifespan=lifespan
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from novastudy.routers import flashcards, health, profile, study

    application.include_router(health.router)
    application.include_router(flashcards.router, tags=["flashcards"])
    application.include_router(study.router, prefix="/study", tags=["study"])
    application.include_router(profile.router, prefix="/profile", tags=["profile"])

    return application


app = create_app()
