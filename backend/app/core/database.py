"""
Configurazione Database - SQLAlchemy 2.0 Async
Progetto: ISP Billing (Gestionale ISP)

Definisce engine, session factory e dependency injection per FastAPI.
Le operazioni del motore di fatturazione ricevono la sessione come
argomento: nessun servizio accede direttamente a questo modulo.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings

# Logger per questo modulo
logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# Engine Async SQLAlchemy 2.0
# ------------------------------------------------------------
engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)


# ------------------------------------------------------------
# Session Factory
# ------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency injection per FastAPI.

    Crea una sessione database per ogni richiesta e la chiude
    automaticamente al termine. In caso di eccezione non gestita
    la transazione in corso viene annullata, così un errore a metà
    di un pagamento non lascia scritture parziali.

    Yields:
        AsyncSession: Sessione database async
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Verifica la connessione al database all'avvio.

    Raises:
        Exception: se il database non è raggiungibile
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Connessione al database stabilita con successo")
    except Exception as e:
        logger.error("Errore connessione database: %s", e)
        raise


async def recreate_schema() -> None:
    """
    Elimina e ricrea tutte le tabelle dei modelli.

    Usato solo dallo script reset_db.py in sviluppo: i dati
    contabili non vanno mai cancellati in produzione.
    """
    if settings.is_production:
        raise RuntimeError("recreate_schema non è consentito in produzione")

    from app.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema database ricreato")


async def close_db() -> None:
    """
    Chiude le connessioni al database.

    Da chiamare durante lo shutdown dell'applicazione.
    """
    await engine.dispose()
    logger.info("Connessioni database chiuse")
