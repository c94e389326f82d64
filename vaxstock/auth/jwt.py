"""
Verificación de JWT con RS256 (claves asimétricas).

Los tokens los emite el servicio de identidad con el ámbito del usuario
en la jerarquía; aquí solo se verifican con la clave pública.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from vaxstock.config import get_settings

settings = get_settings()


class TokenType:
    ACCESS = "access"


def create_access_token(
    user_id: UUID,
    role: str,
    scope_kind: str,
    scope_id: UUID | None = None,
    private_key: str | None = None,
) -> str:
    """Crea un access token RS256 (usado por herramientas internas y tests)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "scope_kind": scope_kind,
        "scope_id": str(scope_id) if scope_id else None,
        "type": TokenType.ACCESS,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(
        payload,
        private_key or settings.jwt_private_key,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str, public_key: str | None = None) -> dict:
    """
    Decodifica y verifica un token JWT.
    Lanza jwt.InvalidTokenError si el token es inválido o expirado.
    """
    return jwt.decode(
        token,
        public_key or settings.jwt_public_key,
        algorithms=[settings.JWT_ALGORITHM],
    )
