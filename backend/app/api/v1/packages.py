"""
Router FastAPI per il catalogo pacchetti
Progetto: ISP Billing (Gestionale ISP)
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import AdminPrincipal, CurrentPrincipal, get_package_service
from app.schemas.package import PackageCreate, PackageList, PackageRead, PackageUpdate
from app.services.package_service import PackageService

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/packages",
    tags=["Pacchetti"],
)


@router.get(
    "/",
    name="pacchetti_lista",
    summary="Catalogo pacchetti",
    response_model=PackageList,
    status_code=status.HTTP_200_OK,
)
async def get_packages(
    principal: CurrentPrincipal,
    include_inactive: bool = Query(False, description="Includi pacchetti non più in vendita"),
    db: AsyncSession = Depends(get_db),
    service: PackageService = Depends(get_package_service),
) -> PackageList:
    packages, total = await service.get_all(db=db, include_inactive=include_inactive)
    return PackageList(
        items=[PackageRead.model_validate(p) for p in packages],
        total=total,
    )


@router.get(
    "/{package_id}",
    name="pacchetto_dettaglio",
    summary="Dettaglio pacchetto",
    response_model=PackageRead,
)
async def get_package(
    package_id: uuid.UUID,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    service: PackageService = Depends(get_package_service),
) -> PackageRead:
    package = await service.get_by_id(db=db, package_id=package_id)
    return PackageRead.model_validate(package)


@router.post(
    "/",
    name="pacchetto_crea",
    summary="Crea pacchetto",
    response_model=PackageRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_package(
    data: PackageCreate,
    admin: AdminPrincipal,
    db: AsyncSession = Depends(get_db),
    service: PackageService = Depends(get_package_service),
) -> PackageRead:
    """
    Crea un nuovo pacchetto (solo ISP_ADMIN).

    Raises:
        ConflictError: codice pacchetto già utilizzato
    """
    package = await service.create(db=db, data=data)
    logger.info(f"Pacchetto {package.code} creato da {admin.user_id}")
    return PackageRead.model_validate(package)


@router.patch(
    "/{package_id}",
    name="pacchetto_aggiorna",
    summary="Aggiorna pacchetto",
    description="Le modifiche valgono per le fatture emesse da ora in poi.",
    response_model=PackageRead,
)
async def update_package(
    package_id: uuid.UUID,
    data: PackageUpdate,
    admin: AdminPrincipal,
    db: AsyncSession = Depends(get_db),
    service: PackageService = Depends(get_package_service),
) -> PackageRead:
    package = await service.update(db=db, package_id=package_id, data=data)
    return PackageRead.model_validate(package)
