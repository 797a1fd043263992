"""
Manejadores de eventos de inicio y cierre de la aplicacion.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable
from fastapi import FastAPI
from loguru import logger

from app.core.config import settings
from app.core.scheduler import build_scheduler
from app.infrastructure.external.airtable_sync.sync_service import build_from_settings


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        try:
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            # Configurar logging adicional
            logger.add(
                settings.LOG_FILE,
                rotation="500 MB",
                retention="10 days",
                level=settings.LOG_LEVEL
            )

            # Validar configuracion critica
            _validate_config()

            # Recursos del sync: base de datos, cliente HTTP, limiters, mapeos
            container = build_from_settings(settings)
            await container.database.init_db()
            app.state.sync = container
            logger.info("Base de datos y motor de sync inicializados")

            # Scheduler del sync diario
            app.state.scheduler = None
            if settings.SYNC_SCHEDULE_ENABLED:
                scheduler = build_scheduler(container, settings)
                scheduler.start()
                app.state.scheduler = scheduler
                logger.info("Scheduler iniciado")

            logger.success("Aplicacion iniciada correctamente")

            # Mostrar URLs disponibles
            _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.airtable_configured:
        warnings.append("AIRTABLE_TOKEN/AIRTABLE_BASE_ID no configurados - el sync no funcionara")
    if not settings.ADMIN_API_TOKEN:
        warnings.append("ADMIN_API_TOKEN no configurado - endpoints admin de sync deshabilitados")
    if not settings.CRON_SECRET:
        warnings.append("CRON_SECRET no configurado - endpoint cron deshabilitado")
    if not settings.AIRTABLE_WEBHOOK_SECRET:
        warnings.append("AIRTABLE_WEBHOOK_SECRET no configurado - firmas de webhook sin verificar")

    # Mostrar advertencias
    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    # Determinar la URL base de acceso
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:  {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync API:    {base_url}/api/v1/sync</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:      {base_url}/health</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicacion."""
        logger.info("Cerrando aplicacion...")

        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler detenido")

        container = getattr(app.state, "sync", None)
        if container is not None:
            await container.close()
            logger.info("Cliente HTTP y conexiones de base de datos cerrados")

        logger.success("Aplicacion cerrada correctamente")

    return shutdown


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Ciclo de vida de la aplicacion (startup -> requests -> shutdown).

    Args:
        app: Instancia de FastAPI
    """
    await startup_handler(app)()
    try:
        yield
    finally:
        await shutdown_handler(app)()
