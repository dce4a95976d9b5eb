from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, setup_logging
from .deps import Services, build_services
from .routes.chat import router as chat_router
from .routes.contacts import router as contacts_router
from .routes.mcp import router as mcp_router

# Load .env from the orchestrator root (services/orchestrator/.env)
_env_path = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=str(_env_path), override=False)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the app. Tests pass prebuilt ``services`` (fake gateway, temp database);
    otherwise everything is wired from the environment.
    """
    settings = services.settings if services is not None else Settings.from_env()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.services.aclose()

    app = FastAPI(title="Metalmail", version=__version__, lifespan=lifespan)
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(mcp_router)
    app.include_router(contacts_router)

    @app.get("/")
    async def status() -> Dict[str, Any]:
        return {
            "name": "Metalmail",
            "version": __version__,
            "status": "running",
            "tools": app.state.services.registry.names(),
            "endpoints": {"chat": "/chat", "chatStream": "/chat/stream", "mcp": "/mcp", "contacts": "/contacts"},
        }

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        db_ok = await app.state.services.store.health_check()
        return {"ok": db_ok, "database": "ok" if db_ok else "unavailable"}

    return app


def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_level=settings.log_level.lower())
