"""
CLI: sync de directorio Airtable -> documentos.

Comparte lease, checkpoint y auditoría con el API: si hay otra corrida de
la misma entidad en curso (API, cron o webhook), el CLI falla con código 2.

Variables de entorno requeridas:
  - AIRTABLE_TOKEN
  - AIRTABLE_BASE_ID
  - DATABASE_URL (o DATABASE_* por componentes)

Ejecución:
  python scripts/airtable_sync.py users
  python scripts/airtable_sync.py all
  python scripts/airtable_sync.py districts --validate-only

Las contraseñas generadas para usuarios nuevos se imprimen UNA vez en
stdout (nunca en el log); guárdalas y compártelas por un canal seguro.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raíz `app/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde .env antes de importar `settings`.
_REPO_ROOT = _API_ROOT.parent
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_REPO_ROOT / ".env", override=False)

from app.core.config import settings
from app.infrastructure.external.airtable_sync.sync_service import SyncContainer, SyncResult, build_from_settings
from app.infrastructure.external.airtable_sync.table_mappings import ENTITY_DEFINITIONS
from app.shared.exceptions.sync import SyncException, SyncInProgressError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_IN_PROGRESS = 2


def print_result(result: SyncResult) -> None:
    summary = result.as_dict()
    print(
        f"\n{result.entity_type}: status={summary['status']} created={summary['created']} "
        f"updated={summary['updated']} deleted={summary['deleted']} skipped={summary['skipped']} "
        f"failed={summary['failed']} total={summary['total']}"
    )
    for warning in result.warnings:
        print(f"  ! {warning}")
    if result.generated_credentials:
        print("\nContraseñas generadas (se muestran una sola vez):")
        for username, password in sorted(result.generated_credentials.items()):
            print(f"  {username}: {password}")


async def _validate(container: SyncContainer, entity_types: list[str]) -> int:
    service = container.require_service()
    exit_code = EXIT_OK
    for entity_type in entity_types:
        report = await service.validate_schema(entity_type)
        for warning in report["warnings"]:
            print(f"{entity_type}: aviso: {warning}")
        for error in report["errors"]:
            print(f"{entity_type}: ERROR: {error}")
        if report["errors"]:
            exit_code = EXIT_FAILED
        else:
            print(f"{entity_type}: esquema OK")
    return exit_code


async def _sync(container: SyncContainer, entity_types: list[str]) -> int:
    service = container.require_service()
    exit_code = EXIT_OK
    for entity_type in entity_types:
        try:
            result = await service.run(entity_type, "cli")
        except SyncInProgressError as e:
            logger.warning(e.message)
            exit_code = max(exit_code, EXIT_IN_PROGRESS)
            continue
        except SyncException as e:
            logger.error(f"Sync {entity_type} falló: {e.message}")
            exit_code = EXIT_FAILED if exit_code != EXIT_IN_PROGRESS else exit_code
            continue
        print_result(result)
    return exit_code


async def run(entity: str, validate_only: bool) -> int:
    entity_types = list(ENTITY_DEFINITIONS) if entity == "all" else [entity]
    container = build_from_settings(settings)
    try:
        await container.database.init_db()
        if validate_only:
            return await _validate(container, entity_types)
        return await _sync(container, entity_types)
    finally:
        await container.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync de directorio desde Airtable")
    parser.add_argument(
        "entity",
        choices=[*ENTITY_DEFINITIONS, "all"],
        help="Entidad a sincronizar (o 'all').",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Solo valida el esquema de Airtable (maxRecords=1), sin escribir.",
    )
    args = parser.parse_args()

    try:
        return asyncio.run(run(args.entity, args.validate_only))
    except SyncException as e:
        logger.error(e.message)
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
