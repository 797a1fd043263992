"""
Cliente mínimo de Airtable REST API (sin SDKs externos).

Requisitos cubiertos:
- httpx async con cliente inyectable
- rate-limit compartido por servicio (token bucket)
- reintentos con backoff exponencial + jitter (red, 429, 5xx)
- paginación por offset
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import httpx
from loguru import logger

from app.shared.exceptions.sync import AirtableApiError

from .rate_limiter import RateLimiterRegistry
from .types import AirtableRecord

AIRTABLE_SERVICE = "airtable"


@dataclass(frozen=True)
class AirtableCredentials:
    token: str
    base_id: str


@dataclass(frozen=True)
class RetryPolicy:
    """
    Política de reintentos.

    max_retries cuenta los reintentos después del primer intento.
    """

    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 20.0
    jitter_ratio: float = 0.3

    def backoff(self, attempt: int) -> float:
        """Delay para el intento `attempt` (0-based): min(max, base*2^n + jitter)."""
        exp = self.base_delay_s * (2**attempt)
        jitter = random.uniform(0, self.jitter_ratio) * exp
        return min(self.max_delay_s, exp + jitter)


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


class AirtableClient:
    """
    Cliente HTTP de Airtable.

    Importante:
    - No hace cast de tipos de campos: eso lo decide el Field Mapper.
    - El único punto de espera por cuota es el limiter; no tiene timeout
      propio, lo acota el timeout por request del cliente httpx.
    """

    def __init__(
        self,
        credentials: AirtableCredentials,
        *,
        limiters: RateLimiterRegistry,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = "https://api.airtable.com/v0",
        timeout_s: float = 30.0,
        retry: RetryPolicy = RetryPolicy(),
        requests_per_second: Optional[float] = None,
        page_size: int = 100,
    ) -> None:
        self._creds = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._retry = retry
        self._page_size = page_size
        self._limiter = limiters.get(AIRTABLE_SERVICE, requests_per_second)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def table_url(self, table_name: str) -> str:
        return f"{self._base_url}/{self._creds.base_id}/{table_name}"

    async def iter_records(
        self,
        table_name: str,
        *,
        fields: Optional[list[str]] = None,
    ) -> AsyncIterator[AirtableRecord]:
        """
        Itera todos los registros de una tabla siguiendo 'offset'.

        Args:
            table_name: Nombre de la tabla en Airtable
            fields: Whitelist opcional de campos (fields[])
        """
        url = self.table_url(table_name)
        offset: Optional[str] = None
        page = 0

        while True:
            query: list[tuple[str, Any]] = [("pageSize", self._page_size)]
            if offset:
                query.append(("offset", offset))
            for f in fields or []:
                query.append(("fields[]", f))

            payload = await self.request_json("GET", url, query=query)
            page += 1

            for rec in payload.get("records") or []:
                rec_id = rec.get("id")
                if not rec_id:
                    # Caso raro; preferimos fallar temprano y visible.
                    raise AirtableApiError(f"Airtable devolvió un record sin 'id' en '{table_name}'")
                yield AirtableRecord(record_id=rec_id, fields=rec.get("fields") or {})

            offset = payload.get("offset")
            if not offset:
                logger.debug(f"Tabla '{table_name}' leída en {page} página(s)")
                break

    async def fetch_table(self, table_name: str, *, fields: Optional[list[str]] = None) -> list[AirtableRecord]:
        """Descarga la tabla completa a memoria."""
        return [rec async for rec in self.iter_records(table_name, fields=fields)]

    async def fetch_sample(self, table_name: str, max_records: Optional[int] = None) -> list[AirtableRecord]:
        """
        Descarga una muestra (maxRecords, por defecto una página) para validar
        esquema. Airtable omite los campos vacíos de cada record, así que las
        columnas se infieren de la unión de toda la muestra.
        """
        payload = await self.request_json(
            "GET",
            self.table_url(table_name),
            query=[("maxRecords", max_records or self._page_size)],
        )
        return [
            AirtableRecord(record_id=rec["id"], fields=rec.get("fields") or {})
            for rec in payload.get("records") or []
            if rec.get("id")
        ]

    async def request_json(
        self, method: str, url: str, *, query: Optional[list[tuple[str, Any]]] = None
    ) -> dict[str, Any]:
        """
        Request HTTP con rate limit y backoff.

        Estrategia:
        - Error de red / timeout: exponencial con jitter.
        - 429: respeta Retry-After si existe, si no exponencial con jitter.
        - 5xx: exponencial con jitter.
        - 4xx (no 429): error inmediato (config/auth mal).

        Raises:
            AirtableApiError: Error permanente, o transitorio tras agotar reintentos
        """
        headers = {
            "Authorization": f"Bearer {self._creds.token}",
            "Content-Type": "application/json",
        }
        max_attempts = self._retry.max_retries + 1

        for attempt in range(max_attempts):
            async with self._limiter:
                try:
                    resp = await self._http.request(
                        method,
                        url,
                        params=query,
                        headers=headers,
                        timeout=self._timeout_s,
                    )
                except httpx.TransportError as e:
                    logger.warning(
                        f"Airtable {method} {url} intento {attempt + 1}/{max_attempts}: error de red ({e!r})"
                    )
                    if attempt + 1 >= max_attempts:
                        raise AirtableApiError(
                            f"Airtable sin respuesta tras {max_attempts} intento(s): {e}",
                            transient=True,
                        ) from e
                    await asyncio.sleep(self._retry.backoff(attempt))
                    continue

            logger.debug(f"Airtable {method} {url} intento {attempt + 1}/{max_attempts}: {resp.status_code}")

            if 200 <= resp.status_code < 300:
                return resp.json()

            if _is_retryable_status(resp.status_code):
                logger.warning(
                    f"Airtable {method} {url} intento {attempt + 1}/{max_attempts}: "
                    f"{resp.status_code} recuperable"
                )
                if attempt + 1 >= max_attempts:
                    logger.error(f"Airtable {method} {url}: reintentos agotados ({resp.status_code})")
                    raise AirtableApiError(
                        f"Airtable error {resp.status_code} tras {max_attempts} intento(s): {resp.text}",
                        status_code=resp.status_code,
                        transient=True,
                    )
                await asyncio.sleep(self._sleep_for(resp, attempt))
                continue

            # Errores no recuperables
            logger.error(f"Airtable {method} {url}: error permanente {resp.status_code}")
            raise AirtableApiError(
                f"Airtable request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        # range() vacío solo si max_retries < 0
        raise AirtableApiError("RetryPolicy inválida: max_retries debe ser >= 0")

    def _sleep_for(self, resp: httpx.Response, attempt: int) -> float:
        retry_after = resp.headers.get("Retry-After")
        if retry_after:
            try:
                return min(self._retry.max_delay_s, float(retry_after))
            except ValueError:
                pass
        return self._retry.backoff(attempt)
