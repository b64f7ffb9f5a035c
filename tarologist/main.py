"""FastAPI application factory.

`uvicorn tarologist.main:app` serves the default app; its container is
built from the environment on start-up. Tests call `create_app(container)`
with their own wiring.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .container import Container, build_container
from .errors import TarologistError
from .routes.auth_routes import router as auth_router
from .routes.catalog_routes import router as catalog_router
from .routes.profile_routes import router as profile_router
from .routes.reading_routes import router as reading_router
from .routes.session_routes import router as session_router

log = logging.getLogger("tarologist.main")


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TarologistError)
    async def tarologist_error_handler(request: Request, exc: TarologistError):
        level = logging.ERROR if exc.http_status >= 500 else logging.WARNING
        log.log(level, "%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        log.warning("validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Некорректные данные запроса",
                    "details": [
                        {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
                        for e in exc.errors()
                    ],
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        log.error("unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "INTERNAL_ERROR", "message": "Внутренняя ошибка сервера"}},
        )


def create_app(container: Optional[Container] = None) -> FastAPI:
    settings = container.settings if container is not None else get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "container", None) is None
        if owned:
            app.state.container = build_container(settings)
        app.state.container.start()
        log.info("tarologist started (store=%s)", settings.store_backend)
        try:
            yield
        finally:
            if owned:
                app.state.container.close()

    app = FastAPI(title="Tarologist", version="0.1.0", lifespan=lifespan)
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(reading_router)
    app.include_router(session_router)
    app.include_router(profile_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
