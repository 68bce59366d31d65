"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .api import router
from .auth import SessionStore
from .config import RealtimeConfig
from .db import Database
from .logging_utils import configure_logging, get_logger
from .manager import RealtimeServer
from .presence import PresenceMiddleware

logger = get_logger(__name__)


def create_app(
    config: RealtimeConfig,
    session_store: SessionStore,
    database: Optional[Database] = None,
    create_tables: bool = True,
) -> FastAPI:
    """Build the application with its realtime server.

    Args:
        config: RealtimeConfig instance
        session_store: External session store
        database: Relational store. Defaults to one built from config.database_url.
        create_tables: Whether startup creates missing tables

    Returns:
        FastAPI app; the server is reachable as ``app.state.realtime``
    """
    configure_logging(config.log_level)
    database = database or Database(config.database_url)
    server = RealtimeServer(config, session_store, database)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if create_tables:
            await database.create_all()
        await server.start()
        yield
        report = await server.graceful_shutdown()
        logger.info(f"Shutdown: closed={report.closed_count}, failed={report.failed_count}")
        await database.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.realtime = server
    app.add_middleware(PresenceMiddleware)
    app.include_router(router)
    return app
