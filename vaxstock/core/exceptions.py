"""
Excepciones HTTP personalizadas para la API.

Las excepciones de dominio (stock, dosis, transferencias) llevan además
un `code` estable y un indicador `retryable` para el cliente.
"""

from fastapi import HTTPException, status


class CredentialsException(HTTPException):
    """Error de credenciales inválidas (401)."""

    def __init__(self, detail: str = "Credenciales inválidas"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    """Error de permisos insuficientes (403)."""

    def __init__(self, detail: str = "No tiene permisos para realizar esta acción"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class NotFoundException(HTTPException):
    """Recurso no encontrado (404)."""

    def __init__(self, resource: str = "Recurso", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} no encontrado",
        )


class ConflictException(HTTPException):
    """Conflicto de datos (409)."""

    def __init__(self, detail: str = "El recurso ya existe"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class ValidationException(HTTPException):
    """Error de validación de negocio (422)."""

    def __init__(self, detail: str = "Error de validación"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )


# ── Errores de dominio ───────────────────────────────


class DomainException(HTTPException):
    """Base de los errores del motor de stock y dosis."""

    code: str = "DOMAIN_ERROR"
    status_code_default: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False
    default_detail: str = "Operación rechazada"

    def __init__(self, detail: str | None = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.default_detail,
        )


class InsufficientStockException(DomainException):
    """No hay cantidad asignable suficiente para la solicitud (409)."""

    code = "INSUFFICIENT_STOCK"
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "Stock insuficiente"


class InvalidDoseException(DomainException):
    """Dosis no positiva o mayor al número de dosis requeridas (422)."""

    code = "INVALID_DOSE"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Número de dosis inválido"


class DuplicateRequestException(DomainException):
    """Ya existe una solicitud pendiente para la misma dosis (409)."""

    code = "DUPLICATE_REQUEST"
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "Ya existe una solicitud pendiente para esta dosis"


class VaccineGenderMismatchException(DomainException):
    """La vacuna está restringida a otro sexo (422)."""

    code = "VACCINE_GENDER_MISMATCH"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "La vacuna no corresponde al sexo del niño"


class InvalidTransferScopeException(DomainException):
    """Destino que no es hijo directo del origen, o cantidad no positiva (422)."""

    code = "INVALID_TRANSFER_SCOPE"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Transferencia inválida"


class ConcurrentModificationException(DomainException):
    """Se perdió una carrera sobre los contadores de un lote (503, reintentable)."""

    code = "CONCURRENT_MODIFICATION"
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_detail = "El stock fue modificado por otra operación, intente nuevamente"


class AlreadyProcessedException(DomainException):
    """La transferencia o solicitud ya no está pendiente (409)."""

    code = "ALREADY_PROCESSED"
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "La operación ya fue procesada"
