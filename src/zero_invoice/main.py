from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from zero_invoice.api.deps import ImportRegistry
from zero_invoice.api.router import router as api_router
from zero_invoice.core.config import Settings, settings
from zero_invoice.core.logging import RequestContextMiddleware
from zero_invoice.core.store import DomainStore, InMemoryDomainStore
from zero_invoice.modules.ai.client import GeminiClient
from zero_invoice.modules.imports.service import ImportContext


def create_app(
    *,
    app_settings: Settings | None = None,
    store: DomainStore | None = None,
    ai: GeminiClient | None = None,
) -> FastAPI:
    cfg = app_settings or settings
    context = ImportContext.from_settings(
        cfg, store=store if store is not None else InMemoryDomainStore(), ai=ai
    )

    app = FastAPI(title="Zero Invoice Import", version="0.1.0")
    app.state.imports = ImportRegistry(context)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)
    return app


app = create_app()
