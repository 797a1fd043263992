"""
Dependencias de autorizacion para los disparadores del sync.

- Endpoints admin: `Authorization: Bearer <ADMIN_API_TOKEN>`
- Endpoint cron: `Authorization: Bearer <CRON_SECRET>`
"""
from typing import Optional

from fastapi import Header
from loguru import logger

from app.core.config import settings
from app.core.security import SecurityService
from app.shared.exceptions.auth import ForbiddenException, UnauthorizedException


def require_admin_token(authorization: Optional[str] = Header(default=None)) -> str:
    """Valida el token de administrador; retorna el origen del disparo."""
    if not settings.ADMIN_API_TOKEN:
        logger.warning("ADMIN_API_TOKEN no configurado; endpoints admin de sync deshabilitados")
        raise ForbiddenException("Endpoints de administracion deshabilitados")
    if not authorization:
        raise UnauthorizedException("Falta header Authorization")
    if not SecurityService.verify_bearer_token(authorization, settings.ADMIN_API_TOKEN):
        raise ForbiddenException("Token de administrador invalido")
    return "admin"


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> str:
    """Valida el secreto del cron externo."""
    if not settings.CRON_SECRET:
        logger.warning("CRON_SECRET no configurado; endpoint cron deshabilitado")
        raise ForbiddenException("Endpoint cron deshabilitado")
    if not SecurityService.verify_bearer_token(authorization, settings.CRON_SECRET):
        raise UnauthorizedException("Secreto de cron invalido")
    return "cron"
