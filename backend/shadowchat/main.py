# shadowchat/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shadowchat.api import messages, socket, users
from shadowchat.core.config import BURN_SWEEP_INTERVAL_SECONDS, CORS_ORIGINS, DATA_DIR
from shadowchat.core.rate_limit import limiter
from shadowchat.infra.postgres import SessionLocal, init_db
from shadowchat.packets.dispatcher import PacketDispatcher
from shadowchat.services.expiry_sweeper import ExpirySweeper
from shadowchat.services.file_storage import FileStorage
from shadowchat.services.session_registry import SessionRegistry
from shadowchat.utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


def create_app(
    session_factory=SessionLocal,
    data_dir: str = DATA_DIR,
    sweep_interval: float | None = BURN_SWEEP_INTERVAL_SECONDS,
    create_tables: bool = True,
) -> FastAPI:
    """
    Build the application. Every app owns its session registry, file storage
    and sweeper; `sweep_interval=None` leaves the sweeper off.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_tables:
            init_db(bind=session_factory.kw["bind"])
        if app.state.sweeper is not None:
            app.state.sweeper.start()
        logger.info("Shadowchat backend started")
        try:
            yield
        finally:
            if app.state.sweeper is not None:
                await app.state.sweeper.stop()
            app.state.registry.clear()
            logger.info("Shadowchat backend stopped")

    app = FastAPI(
        title="Shadowchat Backend",
        version="1.0.0",
        description="End-to-end encrypted chat backend",
        lifespan=lifespan,
    )

    registry = SessionRegistry()
    files = FileStorage(data_dir)
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.files = files
    app.state.dispatcher = PacketDispatcher(session_factory, files)
    app.state.sweeper = (
        ExpirySweeper(session_factory, registry, files, sweep_interval) if sweep_interval else None
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(users.router, tags=["Users"])
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(socket.router, tags=["Socket"])

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app


setup_logger()
app = create_app()
