"""
Eccezioni Custom per l'applicazione.
Progetto: ISP Billing (Gestionale ISP)

Definisce le eccezioni di dominio del motore di fatturazione.
Ogni eccezione porta con sé lo status HTTP e un error_code stabile
che il frontend usa per mostrare il motivo del rifiuto.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole di business (gestiti dal nostro handler → 422)

Gli errori di una singola riga durante la generazione massiva delle fatture
NON sono eccezioni: vengono raccolti in GenerationResult.errors.
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "ConflictError",
    "InvalidStateError",
    "AlreadySettledError",
    "GatewayError",
    "AuthorizationError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    default_detail: str = "Errore interno"

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato (default: quello di classe)
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail if detail is not None else self.default_detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        self.status_code = self.__class__.status_code
        super().__init__(self.detail)


class NotFoundError(AppException):
    """
    Risorsa referenziata inesistente (cliente, pacchetto, fattura, pagamento).

    Restituita al chiamante, mai ritentata automaticamente.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"
    default_detail: str = "Risorsa non trovata"


class BusinessValidationError(ValueError, AppException):
    """
    Input malformato o violazione delle regole di business.

    Eredita da ValueError per essere catturata dai validatori Pydantic.
    Sollevata prima di qualsiasi scrittura su database.

    Esempi di utilizzo:
        - "Il periodo deve essere nel formato YYYY-MM"
        - "La fattura non appartiene al cliente indicato"
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"
    default_detail: str = "Validazione dati fallita"

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


# Alias per compatibilità
ValidationError = BusinessValidationError


class ConflictError(AppException):
    """
    Conflitto di integrità (es. numero fattura o transazione duplicato).
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"
    default_detail: str = "Conflitto di stato"


class InvalidStateError(AppException):
    """
    Operazione non consentita nello stato corrente della risorsa.

    Esempi di utilizzo:
        - rimborso di un pagamento già rimborsato
        - rimborso di un movimento che è già esso stesso un rimborso
    """

    status_code: int = 409
    error_code: str = "INVALID_STATE"
    default_detail: str = "Operazione non consentita nello stato attuale"


class AlreadySettledError(InvalidStateError):
    """
    Pagamento su una fattura già saldata (stato PAID).
    """

    error_code: str = "INVOICE_ALREADY_SETTLED"
    default_detail: str = "La fattura è già stata saldata"


class GatewayError(AppException):
    """
    Errore del gateway di pagamento esterno durante addebito o rimborso.

    Lo stato locale non viene modificato finché il gateway non conferma.
    """

    status_code: int = 502
    error_code: str = "PAYMENT_GATEWAY_ERROR"
    default_detail: str = "Errore del gateway di pagamento"


class AuthorizationError(AppException):
    """
    Accesso non autorizzato per il ruolo del principal corrente.
    """

    status_code: int = 403
    error_code: str = "FORBIDDEN"
    default_detail: str = "Accesso non autorizzato"
