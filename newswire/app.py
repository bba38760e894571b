"""
FastAPI application entry point for the newswire backend.
"""

from __future__ import annotations

from fastapi import FastAPI

from newswire.config import get_settings
from newswire.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Newswire Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
