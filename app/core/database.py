"""
Configuration et initialisation de la base de données pour vetra-vms-sync.

Base de données: PostgreSQL avec SQLAlchemy 2.0 et AsyncSession
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class pour tous les modèles SQLAlchemy."""

    pass


# Engine SQLAlchemy 2.0
engine = create_async_engine(str(settings.SQLALCHEMY_DATABASE_URI), echo=False)

# Session factory
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Obtient une session de base de données."""
    async with async_session_maker() as session:
        yield session


async def create_db_and_tables():
    """Crée toutes les tables."""
    # Les modèles doivent être importés pour être enregistrés dans Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables de base de données vérifiées")
