import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from trade_reconciler import models  # noqa: F401  (registers tables on Base)
from trade_reconciler.api import imports as imports_router
from trade_reconciler.api import sync as sync_router
from trade_reconciler.api import trades as trades_router
from trade_reconciler.config import Settings, load_settings
from trade_reconciler.db.database import Base, make_engine
from trade_reconciler.services.encryption import FieldCipher

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, session_factory=None, broker_client=None) -> FastAPI:
    """
    Build the API.

    Run with ``uvicorn trade_reconciler.main:create_app --factory``. A missing
    or wrong-length ENCRYPTION_KEY fails here, before anything is served.
    """
    settings = settings or load_settings()
    cipher = FieldCipher(settings.key_bytes)

    engine = None
    if session_factory is None:
        engine = make_engine(settings.database_url)
        session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    app = FastAPI(title="Trade Reconciler API")

    # CORS - keep permissive for local dev, lock down in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.cipher = cipher
    app.state.session_factory = session_factory
    app.state.broker_client = broker_client

    app.include_router(imports_router.router)
    app.include_router(trades_router.router)
    app.include_router(sync_router.router)

    @app.on_event("startup")
    def on_startup():
        """
        Create DB tables on startup (development convenience).
        For production use Alembic migrations instead.
        """
        if engine is None:
            return
        Base.metadata.create_all(bind=engine)
        logger.info("database tables ensured (create_all)")

    return app
