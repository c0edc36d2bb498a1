import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import routers as auth_router
from .chat import routers as chat_router
from .core.config import Settings
from .core.container import build_services
from .core.documents import DocumentStore
from .core.exceptions import StoreError
from .core.middleware import logging_middleware
from .friendship import routers as friend_router
from .realtime import socket as realtime_socket
from .users import routers as users_router
from .utils.logging_config import setup_logging


logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = build_services(settings, store)
        app.state.services = services

        resumed = await services.ledger.resume_incomplete()
        if resumed:
            logger.info(f"friend_request_accepts_resumed count={len(resumed)}")

        logger.info(f"app_started store={settings.document_store}")
        try:
            yield
        finally:
            await services.store.close()
            logger.info("app_stopped")

    app = FastAPI(title="Siro", lifespan=lifespan)

    app.include_router(auth_router.router, prefix="/auth", tags=["Authentication"])
    app.include_router(users_router.router, prefix="/users", tags=["Users"])
    app.include_router(friend_router.router, prefix="/friends", tags=["Friendship"])
    app.include_router(chat_router.router, prefix="/chat", tags=["Chat"])
    app.include_router(realtime_socket.router, tags=["Realtime"])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(logging_middleware)

    @app.exception_handler(StoreError)
    async def store_unavailable(request: Request, error: StoreError):
        logger.error(f"store_unavailable path={request.url.path} error={error}")
        return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable."})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("siro.main:app", host="0.0.0.0", port=8000)
