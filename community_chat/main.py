import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from .channels import routers as channel_router
from .chat import routers as chat_router
from .users import routers as user_router

from .core.config import Settings
from .core.data_access import DataAccess
from .core.dependencies import get_current_user_id
from .core.exceptions import ChatError
from .core.middleware import chat_error_handler, logging_middleware
from .core.supabase_client import SupabaseDataAccess, create_supabase_client
from .utils.logging_config import setup_logging

load_dotenv()
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None, data_access: Optional[DataAccess] = None
) -> FastAPI:
    """
    Composition root.

    The backend client is built here at startup and handed to every request
    through `app.state`; pass `data_access` to run against another backend.
    """
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        if data_access is not None:
            app.state.data_access = data_access
        else:
            client = await create_supabase_client(settings)
            app.state.data_access = SupabaseDataAccess(client)
        logger.info("app_started")

        try:
            yield
        finally:
            await app.state.data_access.close()
            logger.info("app_stopped")

    app = FastAPI(title="community-chat", lifespan=lifespan)
    app.include_router(chat_router.router, prefix="/chats", tags=["Chats"])
    app.include_router(channel_router.router, prefix="/channels", tags=["Channels"])
    app.include_router(user_router.router, prefix="/users", tags=["Users"])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(logging_middleware)
    app.add_exception_handler(ChatError, chat_error_handler)

    # For testing auth purposes
    @app.get("/protected")
    def protected_route(user_id: str = Depends(get_current_user_id)):
        return {"message": f"Hello {user_id}, you are authenticated!"}

    return app
