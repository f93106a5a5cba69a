"""
Router FastAPI per gli abbonati
Progetto: ISP Billing (Gestionale ISP)

Definisce gli endpoint per attivazione, consultazione e stato contratto.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import AdminPrincipal, CurrentPrincipal, get_customer_service
from app.schemas.customer import (
    CustomerCreate,
    CustomerList,
    CustomerRead,
    CustomerStatus,
    CustomerStatusUpdate,
)
from app.services.customer_service import CustomerService

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/customers",
    tags=["Clienti"],
)


@router.get(
    "/",
    name="clienti_lista",
    summary="Lista clienti",
    description="Recupera la lista paginata degli abbonati con filtri per stato e ricerca.",
    response_model=CustomerList,
    status_code=status.HTTP_200_OK,
)
async def get_customers(
    principal: CurrentPrincipal,
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(20, ge=1, le=100, description="Elementi per pagina"),
    status_filter: Optional[CustomerStatus] = Query(None, alias="status", description="Filtro stato"),
    search: Optional[str] = Query(None, description="Ricerca per nome, codice, telefono, email"),
    db: AsyncSession = Depends(get_db),
    service: CustomerService = Depends(get_customer_service),
) -> CustomerList:
    customers, total = await service.get_all(
        db=db,
        page=page,
        per_page=per_page,
        status=status_filter,
        search=search,
    )
    return CustomerList(
        items=[CustomerRead.model_validate(c) for c in customers],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/{customer_id}",
    name="cliente_dettaglio",
    summary="Dettaglio cliente",
    response_model=CustomerRead,
)
async def get_customer(
    customer_id: uuid.UUID,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    service: CustomerService = Depends(get_customer_service),
) -> CustomerRead:
    """
    Raises:
        NotFoundError: Se il cliente non esiste
    """
    customer = await service.get_by_id(db=db, customer_id=customer_id)
    return CustomerRead.model_validate(customer)


@router.post(
    "/",
    name="cliente_crea",
    summary="Registra cliente",
    description=(
        "Registra un nuovo abbonato in stato PENDING. Se previsto un costo di "
        "attivazione viene emessa la relativa fattura."
    ),
    response_model=CustomerRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_customer(
    data: CustomerCreate,
    admin: AdminPrincipal,
    db: AsyncSession = Depends(get_db),
    service: CustomerService = Depends(get_customer_service),
) -> CustomerRead:
    customer = await service.create(db=db, data=data, created_by=admin.user_id)
    customer = await service.get_by_id(db=db, customer_id=customer.id)
    return CustomerRead.model_validate(customer)


@router.patch(
    "/{customer_id}/status",
    name="cliente_stato",
    summary="Cambia stato contratto",
    response_model=CustomerRead,
)
async def change_customer_status(
    customer_id: uuid.UUID,
    data: CustomerStatusUpdate,
    admin: AdminPrincipal,
    db: AsyncSession = Depends(get_db),
    service: CustomerService = Depends(get_customer_service),
) -> CustomerRead:
    """
    Attiva, sospende o disconnette un abbonato.

    Raises:
        NotFoundError: cliente inesistente
        BusinessValidationError: transizione non consentita
    """
    customer = await service.change_status(
        db=db, customer_id=customer_id, data=data, changed_by=admin.user_id
    )
    customer = await service.get_by_id(db=db, customer_id=customer.id)
    return CustomerRead.model_validate(customer)
