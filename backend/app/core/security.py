"""
Modulo di sicurezza per la verifica dei token JWT
Progetto: ISP Billing (Gestionale ISP)

I token sono emessi dal servizio di identità: questo modulo
si limita a verificarli e a estrarre il principal autenticato.
"""

from datetime import datetime

from fastapi import HTTPException, status
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.schemas.token import Principal, TokenPayload


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decodifica e valida un token JWT.

    Args:
        token: Token JWT da decodificare

    Returns:
        TokenPayload con i dati del token

    Raises:
        HTTPException: Se il token è invalido o scaduto
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise _unauthorized(f"Token invalido o scaduto: {str(e)}")

    if not payload.get("sub"):
        raise _unauthorized("Token invalido: missing subject")

    try:
        return TokenPayload(
            sub=str(payload["sub"]),
            role=payload.get("role") or "",
            exp=datetime.fromtimestamp(payload.get("exp", 0)),
            type=payload.get("type", "access"),
        )
    except PydanticValidationError:
        raise _unauthorized("Token invalido: payload non conforme")


def principal_from_token(token: str) -> Principal:
    """
    Ricava il principal autenticato da un token di accesso.

    Raises:
        HTTPException 401: token di refresh o ruolo sconosciuto
    """
    token_data = decode_token(token)

    if token_data.type != "access":
        raise _unauthorized("Token di refresh non valido per questa operazione")

    try:
        return Principal(user_id=token_data.sub, role=token_data.role)
    except PydanticValidationError:
        raise _unauthorized(f"Ruolo non riconosciuto: {token_data.role}")


# Export delle funzioni
__all__ = [
    "decode_token",
    "principal_from_token",
]
