"""
Connexion a la base de donnees / Database connection.
Supporte SQLite (dev) et PostgreSQL (prod) via SQLAlchemy 2.0 async.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from delivery_tracking.config import settings

logger = logging.getLogger(__name__)

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Configuration moteur / Engine configuration
_engine_kwargs: dict = {
    "echo": False,
}

# PostgreSQL : pool de connexions pour les mises a jour GPS concurrentes /
# PostgreSQL: connection pooling for concurrent GPS updates
if not _is_sqlite:
    _engine_kwargs.update({
        "pool_size": 20,
        "max_overflow": 30,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    })

engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Dependance FastAPI pour obtenir une session DB / FastAPI dependency for DB session."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Creer les tables au demarrage / Create tables on startup."""
    # Enregistrer les modeles sur Base.metadata / Register models on Base.metadata
    import delivery_tracking.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    # Purger les positions des livraisons terminees / Purge samples of finished deliveries
    await _cleanup_old_samples(settings.SAMPLE_RETENTION_DAYS)


async def _cleanup_old_samples(days: int = 30):
    """Purger les positions GPS des livraisons terminees > N jours /
    Purge location samples of deliveries finished more than N days ago."""
    cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat(timespec="seconds")
    async with engine.begin() as conn:
        result = await conn.execute(text(
            "DELETE FROM location_samples WHERE delivery_id IN "
            "(SELECT id FROM deliveries WHERE status IN ('DELIVERED', 'CANCELLED') "
            "AND updated_at < :cutoff)"
        ), {"cutoff": cutoff})
        if result.rowcount:
            logger.info("[cleanup] %s location samples removed (deliveries closed before %s)", result.rowcount, cutoff)
