"""FastAPI application for the Library Book Finder API."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import CacheSettings, load_settings
from ..core.cache_manager import BookCacheManager
from ..db.session import Database
from .books import router as books_router
from .debug import router as debug_router


def create_app(
    settings: Optional[CacheSettings] = None,
    database: Optional[Database] = None
) -> FastAPI:
    """
    Build the API application.
    The database is opened on startup and closed on shutdown.
    """
    settings = settings or load_settings()
    database = database or Database(settings.database_url, timeout_seconds=settings.db_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.open()
        try:
            yield
        finally:
            database.close()

    app = FastAPI(
        title="Library Book Finder API",
        description="Cached search over the public library catalog",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.database = database
    app.state.cache_manager = BookCacheManager(database, settings)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allows all origins
        allow_credentials=True,
        allow_methods=["*"],  # Allows all methods
        allow_headers=["*"],  # Allows all headers
    )

    # Include routers
    app.include_router(books_router)
    app.include_router(debug_router)

    @app.get("/")
    async def root():
        """Root endpoint that returns a simple message."""
        return {"message": "Welcome to the Library Book Finder API"}

    return app
