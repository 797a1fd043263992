"""
Rate limiting por servicio externo.

Cada servicio (p.ej. "airtable") tiene un único token bucket compartido por
todas las tareas del proceso: construir varias tablas de mapeo en paralelo
aumenta el throughput sin exceder la cuota configurada.
"""

from __future__ import annotations

from typing import Dict

from aiolimiter import AsyncLimiter
from loguru import logger


class RateLimiterRegistry:
    """
    Registro de limiters por nombre de servicio.

    Se construye explícitamente (uno por proceso) y se inyecta en los
    clientes; no hay estado global de módulo.
    """

    def __init__(self, default_rate: float = 5.0, time_period: float = 1.0) -> None:
        self._default_rate = default_rate
        self._time_period = time_period
        self._limiters: Dict[str, AsyncLimiter] = {}

    def get(self, service: str, rate: float | None = None) -> AsyncLimiter:
        """
        Retorna el limiter del servicio, creándolo la primera vez.

        Args:
            service: Nombre del servicio externo
            rate: Capacidad (requests por periodo); solo aplica al crearlo

        Returns:
            AsyncLimiter: Limiter compartido del servicio
        """
        limiter = self._limiters.get(service)
        if limiter is None:
            max_rate = rate or self._default_rate
            limiter = AsyncLimiter(max_rate, self._time_period)
            self._limiters[service] = limiter
            logger.debug(f"Rate limiter creado para '{service}': {max_rate} req/{self._time_period}s")
        return limiter
