"""
Dependency Injection per autenticazione e servizi
Progetto: ISP Billing (Gestionale ISP)

Funzioni di dependency injection per il principal autenticato,
l'autorizzazione per ruolo e l'accesso ai servizi costruiti nel lifespan.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.exceptions import AuthorizationError
from app.core.security import principal_from_token
from app.schemas.token import Principal, Role

# OAuth2 scheme - estrae il token dall'header Authorization.
# Il login è gestito dal servizio di identità esterno.
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    auto_error=False,
)


async def get_current_principal(
    token: Optional[str] = Depends(oauth2_scheme),
) -> Principal:
    """
    Dependency per ottenere il principal corrente dal token JWT.

    Args:
        token: Token JWT estratto dall'header Authorization

    Returns:
        Il principal autenticato

    Raises:
        HTTPException 401: Se il token manca, è invalido o scaduto
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di autenticazione non fornito",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return principal_from_token(token)


def require_role(*allowed_roles: Role):
    """
    Factory function per creare una dependency che verifica il ruolo.

    Example:
        @router.post("/{payment_id}/refund")
        async def refund(admin: Principal = Depends(require_role(Role.ISP_ADMIN))):
            ...
    """
    async def role_checker(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if principal.role not in allowed_roles:
            raise AuthorizationError(
                f"Accesso negato. Ruolo richiesto: "
                f"{', '.join(r.value for r in allowed_roles)}",
                extra={"role": principal.role.value},
            )
        return principal

    return role_checker


# ------------------------------------------------------------
# Servizi (costruiti nel lifespan e registrati su app.state)
# ------------------------------------------------------------
def get_invoice_generator(request: Request):
    return request.app.state.invoice_generator


def get_payment_reconciler(request: Request):
    return request.app.state.payment_reconciler


def get_invoice_service(request: Request):
    return request.app.state.invoice_service


def get_customer_service(request: Request):
    return request.app.state.customer_service


def get_package_service(request: Request):
    return request.app.state.package_service


# Type aliases per uso comune
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
AdminPrincipal = Annotated[Principal, Depends(require_role(Role.ISP_ADMIN))]
BillingPrincipal = Annotated[
    Principal, Depends(require_role(Role.ISP_ADMIN, Role.ACCOUNTANT))
]


# Export
__all__ = [
    "get_current_principal",
    "require_role",
    "oauth2_scheme",
    "get_invoice_generator",
    "get_payment_reconciler",
    "get_invoice_service",
    "get_customer_service",
    "get_package_service",
    "CurrentPrincipal",
    "AdminPrincipal",
    "BillingPrincipal",
]
