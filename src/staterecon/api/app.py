"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import settings
from ..context import CoreContext
from .routes import router

# Global core context
_context: Optional[CoreContext] = None


def get_context() -> CoreContext:
    """Get the global core context."""
    if _context is None:
        raise RuntimeError("Core context is not open")
    return _context


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global _context
    # Startup
    _context = await CoreContext.open(settings)
    yield
    # Shutdown
    await _context.close()
    _context = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="staterecon",
        description="State reconciliation and audit core for the creator CRM",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(router, prefix="/api")

    return app
