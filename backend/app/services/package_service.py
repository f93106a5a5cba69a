"""
Service Layer per il catalogo pacchetti
Progetto: ISP Billing (Gestionale ISP)

Le modifiche a prezzo, soglia o IVA hanno effetto solo sulle fatture
emesse successivamente: le fatture esistenti conservano i propri importi.
"""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError
from app.models import Package
from app.schemas.package import PackageCreate, PackageUpdate

# Logger per questo modulo
logger = logging.getLogger(__name__)


class PackageService:
    """Service per la gestione del catalogo pacchetti."""

    async def get_all(
        self,
        db: AsyncSession,
        include_inactive: bool = False,
    ) -> tuple[list[Package], int]:
        """
        Recupera i pacchetti ordinati per prezzo.

        Returns:
            Tuple di (lista pacchetti, totale count)
        """
        conditions = []
        if not include_inactive:
            conditions.append(Package.is_active.is_(True))

        query = select(Package).order_by(Package.monthly_price.asc(), Package.code.asc())
        count_query = select(func.count()).select_from(Package)
        if conditions:
            query = query.where(*conditions)
            count_query = count_query.where(*conditions)

        result = await db.execute(query)
        packages = list(result.scalars().all())

        count_result = await db.execute(count_query)
        total = count_result.scalar() or 0
        return packages, total

    async def get_by_id(self, db: AsyncSession, package_id: uuid.UUID) -> Package:
        """
        Raises:
            NotFoundError: Se il pacchetto non esiste
        """
        result = await db.execute(select(Package).where(Package.id == package_id))
        package = result.scalar_one_or_none()
        if package is None:
            logger.warning("Pacchetto non trovato: %s", package_id)
            raise NotFoundError(f"Pacchetto con ID {package_id} non trovato")
        return package

    async def create(self, db: AsyncSession, data: PackageCreate) -> Package:
        """
        Crea un nuovo pacchetto.

        Raises:
            ConflictError: Se il codice è già utilizzato
        """
        package = Package(**data.model_dump())
        db.add(package)
        try:
            await db.commit()
            await db.refresh(package)
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore IntegrityError creazione pacchetto %s: %s", data.code, e.orig)
            raise ConflictError(f"Codice pacchetto '{data.code}' già utilizzato")

        logger.info(
            "Creato pacchetto %s: %s a %s (soglia %s)",
            package.code, package.name, package.monthly_price, package.data_limit,
        )
        return package

    async def update(
        self, db: AsyncSession, package_id: uuid.UUID, data: PackageUpdate
    ) -> Package:
        """Aggiorna un pacchetto (solo i campi valorizzati)."""
        package = await self.get_by_id(db, package_id)

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        for field, value in changes.items():
            setattr(package, field, value)

        await db.commit()
        await db.refresh(package)

        logger.info("Aggiornato pacchetto %s: %s", package.code, ", ".join(changes) or "nessuna modifica")
        return package
