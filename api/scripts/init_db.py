"""
Script para inicializar la base de datos del sync (documents,
system_locks y sync_audit_log) sin pasar por Alembic.
"""
import asyncio
import sys
from pathlib import Path

from loguru import logger

_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

from app.core.config import settings
from app.infrastructure.database.session import Database


async def main():
    """Función principal para inicializar la base de datos."""
    logger.info("Inicializando base de datos...")
    database = Database(settings.effective_database_url, echo=settings.DEBUG)
    try:
        await database.init_db()
        logger.success("Base de datos inicializada correctamente")
    except Exception as e:
        logger.error(f"Error al inicializar base de datos: {e}")
        raise
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
