from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from imageq.api.v1 import health, posts, upload
from imageq.core.config import settings
from imageq.core.container import Services
from imageq.core.logging_config import setup_logging


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    build the api app. an injected Services is used as is (tests own its
    lifetime); otherwise one is built from settings and opened for the
    lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return

        owned = Services.from_settings(settings)
        owned.open()
        app.state.services = owned
        try:
            yield
        finally:
            owned.close()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    if services is not None:
        # available even when the client doesn't run the lifespan
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {"message": "Welcome to imageq API"}

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(upload.router, prefix="/api", tags=["upload"])
    app.include_router(posts.router, prefix="/api", tags=["posts"])
    return app


setup_logging(settings.LOG_LEVEL, settings.LOG_DIR, process_name="api")
app = create_app()
