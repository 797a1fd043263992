"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import (
    LockStatusDTO,
    PaginationDTO,
    SyncAllResultDTO,
    SyncLogDTO,
    SyncLogsResponseDTO,
    SyncResultDTO,
    WebhookAcceptedDTO,
)

__all__ = [
    "LockStatusDTO",
    "PaginationDTO",
    "SyncAllResultDTO",
    "SyncLogDTO",
    "SyncLogsResponseDTO",
    "SyncResultDTO",
    "WebhookAcceptedDTO",
]
