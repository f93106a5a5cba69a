"""
Service Layer per gli abbonati
Progetto: ISP Billing (Gestionale ISP)

Attivazione dei nuovi clienti (con fattura del costo di attivazione)
e gestione dello stato del contratto. I clienti non vengono mai eliminati.
"""

import logging
import secrets
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import BusinessValidationError, ConflictError, NotFoundError
from app.models import Customer, Package
from app.schemas.customer import CustomerCreate, CustomerStatus, CustomerStatusUpdate

# Logger per questo modulo
logger = logging.getLogger(__name__)


def generate_customer_code(today: date) -> str:
    """Codice cliente CUST<aamm><esadecimale casuale>."""
    return f"CUST{today:%y%m}{secrets.token_hex(3).upper()}"


class CustomerService:
    """
    Service per l'anagrafica abbonati.

    L'unica modifica al saldo in fase di attivazione passa dalla fattura
    SETUP emessa dal generatore di fatture.
    """

    def __init__(self, invoice_generator, notifier) -> None:
        self.invoice_generator = invoice_generator
        self.notifier = notifier

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------
    async def get_all(
        self,
        db: AsyncSession,
        page: int = 1,
        per_page: int = 20,
        status: Optional[CustomerStatus] = None,
        search: Optional[str] = None,
    ) -> tuple[list[Customer], int]:
        """
        Recupera la lista paginata dei clienti.

        Returns:
            Tuple di (lista clienti, totale count)
        """
        conditions = []
        if status is not None:
            conditions.append(Customer.status == status.value)
        if search:
            search_term = f"%{search}%"
            conditions.append(
                or_(
                    Customer.name.ilike(search_term),
                    Customer.customer_code.ilike(search_term),
                    Customer.phone.ilike(search_term),
                    Customer.email.ilike(search_term),
                )
            )

        query = select(Customer).order_by(Customer.customer_code.asc())
        count_query = select(func.count()).select_from(Customer)
        if conditions:
            query = query.where(*conditions)
            count_query = count_query.where(*conditions)

        result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
        customers = list(result.scalars().all())

        count_result = await db.execute(count_query)
        total = count_result.scalar() or 0
        return customers, total

    async def get_by_id(self, db: AsyncSession, customer_id: uuid.UUID) -> Customer:
        """
        Raises:
            NotFoundError: Se il cliente non esiste
        """
        result = await db.execute(
            select(Customer)
            .options(selectinload(Customer.package))
            .where(Customer.id == customer_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            logger.warning("Cliente non trovato: %s", customer_id)
            raise NotFoundError(f"Cliente con ID {customer_id} non trovato")
        return customer

    async def _get_package(self, db: AsyncSession, package_id: uuid.UUID) -> Optional[Package]:
        result = await db.execute(select(Package).where(Package.id == package_id))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------
    # Attivazione
    # ------------------------------------------------------------
    async def create(
        self,
        db: AsyncSession,
        data: CustomerCreate,
        created_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Customer:
        """
        Registra un nuovo abbonato in stato PENDING.

        Se il costo di attivazione (dalla richiesta o dal pacchetto) è
        maggiore di zero emette la fattura SETUP nella stessa transazione.

        Raises:
            NotFoundError: pacchetto inesistente
            BusinessValidationError: pacchetto non più in vendita
            ConflictError: codice cliente duplicato
        """
        today = today or date.today()

        package = await self._get_package(db, data.package_id)
        if package is None:
            raise NotFoundError(f"Pacchetto con ID {data.package_id} non trovato")
        if not package.is_active:
            raise BusinessValidationError(
                f"Il pacchetto {package.code} non è più disponibile",
                error_code="PACKAGE_INACTIVE",
            )

        setup_fee = data.setup_fee if data.setup_fee is not None else package.setup_fee
        setup_fee = Decimal(setup_fee or 0)

        customer = Customer(
            id=uuid.uuid4(),
            customer_code=generate_customer_code(today),
            name=data.name,
            email=data.email,
            phone=data.phone,
            address=data.address,
            package_id=package.id,
            router_id=data.router_id,
            status=CustomerStatus.PENDING.value,
            balance=Decimal("0.00"),
        )
        customer.package = package
        db.add(customer)

        setup_invoice = None
        if setup_fee > 0:
            setup_invoice = self.invoice_generator.create_setup_fee_invoice(
                db, customer, setup_fee, today
            )

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore IntegrityError attivazione cliente %s: %s", data.name, e.orig)
            raise ConflictError("Errore durante la registrazione del cliente")

        await db.refresh(customer)
        logger.info(
            "Registrato cliente %s (%s) con pacchetto %s, attivazione %s, da %s",
            customer.customer_code, customer.name, package.code, setup_fee, created_by or "sistema",
        )

        if setup_invoice is not None:
            await self.invoice_generator.finalize_issued_invoice(db, setup_invoice)

        await self._notify_safely(
            customer,
            "customer_welcome",
            {"package_name": package.name, "setup_fee": setup_fee if setup_fee > 0 else None},
        )
        return customer

    # ------------------------------------------------------------
    # Stato contratto
    # ------------------------------------------------------------
    async def change_status(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        data: CustomerStatusUpdate,
        changed_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Customer:
        """
        Cambia lo stato del contratto.

        ACTIVE imposta la data di attivazione (la prima volta) e azzera quella
        di disconnessione; DISCONNECTED registra la data di disconnessione.

        Raises:
            NotFoundError: cliente inesistente
            BusinessValidationError: ritorno a PENDING non consentito
        """
        today = today or date.today()

        result = await db.execute(
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update(of=Customer)
            .execution_options(populate_existing=True)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError(f"Cliente con ID {customer_id} non trovato")

        old_status = customer.status
        new_status = data.status
        if new_status == CustomerStatus.PENDING and old_status != CustomerStatus.PENDING.value:
            raise BusinessValidationError(
                "Un cliente già attivato non può tornare in stato PENDING",
                error_code="INVALID_STATUS_TRANSITION",
            )

        customer.status = new_status.value
        if new_status == CustomerStatus.ACTIVE:
            if customer.connection_date is None:
                customer.connection_date = today
            customer.disconnect_date = None
        elif new_status == CustomerStatus.DISCONNECTED:
            customer.disconnect_date = today

        await db.commit()
        await db.refresh(customer)

        logger.info(
            "Stato cliente %s: %s -> %s (da %s, motivo: %s)",
            customer.customer_code, old_status, customer.status,
            changed_by or "sistema", data.reason or "-",
        )

        if old_status != customer.status:
            await self._notify_safely(
                customer,
                "customer_status_changed",
                {"old_status": old_status, "new_status": customer.status, "reason": data.reason},
            )
        return customer

    async def _notify_safely(self, customer: Customer, event_type: str, payload: dict) -> None:
        try:
            await self.notifier.notify(customer, event_type, payload)
        except Exception:
            logger.warning(
                "Notifica %s non inviata al cliente %s", event_type, customer.customer_code,
                exc_info=True,
            )
