"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Depends, Request

from app.application.use_cases.sync_use_cases import SyncUseCases
from app.infrastructure.external.airtable_sync.sync_service import SyncContainer


def get_sync_container(request: Request) -> SyncContainer:
    """
    Dependencia para obtener los recursos del sync creados en el startup.

    Returns:
        SyncContainer: Contenedor guardado en app.state
    """
    container = getattr(request.app.state, "sync", None)
    if container is None:
        raise RuntimeError("Motor de sync no inicializado (startup no ejecutado)")
    return container


def get_sync_use_cases(
    container: SyncContainer = Depends(get_sync_container)
) -> SyncUseCases:
    """
    Dependencia para obtener los casos de uso de sync.

    Args:
        container: Recursos del sync

    Returns:
        SyncUseCases: Instancia de casos de uso de sync
    """
    return SyncUseCases(container)
