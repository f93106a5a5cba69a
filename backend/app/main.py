"""
Main Entry Point - FastAPI Application
Progetto: ISP Billing (Gestionale ISP)

Configura l'applicazione FastAPI con middleware, router e lifecycle.
I servizi del motore di fatturazione vengono costruiti una sola volta
nel lifespan e registrati su app.state.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import close_db, init_db
from app.core.exceptions import AppException
from app.services.billing_calculator import BillingCalculator, BillingPolicy
from app.services.customer_service import CustomerService
from app.services.invoice_generator import InvoiceGenerator
from app.services.invoice_service import InvoiceService
from app.services.notification_service import AdminEventBus, TemplateNotifier
from app.services.package_service import PackageService
from app.services.payment_gateway import StripeGateway
from app.services.payment_reconciler import PaymentReconciler
from app.services.pdf_service import InvoicePdfExporter
from app.services.usage_service import SqlUsageProvider

# ------------------------------------------------------------
# Configurazione Logging
# ------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_services(app: FastAPI) -> None:
    """Costruisce i collaboratori e i servizi e li registra su app.state."""
    event_bus = AdminEventBus()
    notifier = TemplateNotifier(settings, event_bus=event_bus)
    exporter = InvoicePdfExporter(settings)
    gateway = StripeGateway(settings.stripe_secret_key, currency=settings.currency)
    calculator = BillingCalculator(BillingPolicy.from_settings(settings))

    generator = InvoiceGenerator(
        calculator=calculator,
        usage_provider=SqlUsageProvider(),
        notifier=notifier,
        exporter=exporter,
        settings=settings,
    )
    reconciler = PaymentReconciler(gateway=gateway, notifier=notifier)

    app.state.event_bus = event_bus
    app.state.invoice_generator = generator
    app.state.payment_reconciler = reconciler
    app.state.invoice_service = InvoiceService(reconciler, notifier, exporter)
    app.state.customer_service = CustomerService(generator, notifier)
    app.state.package_service = PackageService()


# ------------------------------------------------------------
# Lifespan Handler
# ------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gestisce il ciclo di vita dell'applicazione.

    - Startup: inizializza database e servizi
    - Shutdown: chiude le connessioni database
    """
    # Startup
    logger.info(f"Avvio {settings.app_name} v{settings.app_version}")
    await init_db()
    build_services(app)
    if not settings.stripe_secret_key:
        logger.warning("Chiave Stripe non configurata: pagamenti online disabilitati")
    logger.info("Applicazione avviata con successo")

    yield

    # Shutdown
    logger.info("Arresto applicazione in corso...")
    await close_db()
    logger.info("Applicazione arrestata")


# ------------------------------------------------------------
# FastAPI Application
# ------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    description="Fatturazione e riconciliazione incassi per ISP - Backend API",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# ------------------------------------------------------------
# Exception Handlers
# ------------------------------------------------------------
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Gestore per tutte le eccezioni di dominio.

    Lo status HTTP e l'error_code sono definiti dalla classe dell'eccezione.
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} su {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            "extra": exc.extra,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Gestore generico per tutte le eccezioni non catturate.

    Converte l'eccezione in risposta HTTP 500 e logga l'errore.
    """
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Errore interno del server", "error_code": "INTERNAL_SERVER_ERROR"},
    )


# ------------------------------------------------------------
# Middleware CORS
# ------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------
@app.get(
    "/health",
    name="Health Check",
    summary="Controlla lo stato dell'applicazione",
    tags=["System"],
)
async def health_check() -> dict[str, str]:
    """
    Endpoint per il controllo dello stato di salute.

    Returns:
        dict: Stato dell'applicazione
    """
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


# ------------------------------------------------------------
# Router
# ------------------------------------------------------------
from app.api.v1 import api_v1_router

app.include_router(api_v1_router)
