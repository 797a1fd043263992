"""
Configuracion central de la aplicacion.
Gestiona variables de entorno y configuraciones globales.
Soporta configuracion dinamica para desarrollo (ENVIRONMENT=development)
y produccion (ENVIRONMENT=production).
"""
import json
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


# Mapeos de campos incluidos en el paquete
DEFAULT_FIELD_MAPPINGS_PATH = str(
    Path(__file__).resolve().parent.parent
    / "infrastructure" / "external" / "airtable_sync" / "field_mappings.json"
)


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Configuracion de desarrollo vs produccion:
    - ENVIRONMENT: 'development' o 'production'
    - DATABASE_URL se puede especificar completa o por componentes
    - Las credenciales de Airtable son opcionales al arrancar; sin ellas
      el API levanta pero cada sync falla con SyncConfigError
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Portal de Validacion - Sync de Directorio")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Base de datos - Componentes separados (recomendado para flexibilidad)
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="portal_user")
    DATABASE_PASSWORD: str = Field(default="portal_pass")
    DATABASE_NAME: str = Field(default="portal_db")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Airtable - credenciales
    AIRTABLE_TOKEN: str = Field(default="")
    AIRTABLE_BASE_ID: str = Field(default="")
    AIRTABLE_API_URL: str = Field(default="https://api.airtable.com/v0")

    # Airtable - limite de 5 req/s por base
    AIRTABLE_REQUESTS_PER_SECOND: float = Field(default=5.0)
    AIRTABLE_TIMEOUT_S: float = Field(default=30.0)
    AIRTABLE_MAX_RETRIES: int = Field(default=3)
    AIRTABLE_BACKOFF_BASE_S: float = Field(default=1.0)
    AIRTABLE_BACKOFF_MAX_S: float = Field(default=20.0)
    AIRTABLE_PAGE_SIZE: int = Field(default=100)

    # Sync
    FIELD_MAPPINGS_PATH: str = Field(default=DEFAULT_FIELD_MAPPINGS_PATH)
    SYNC_LOCK_TTL_MINUTES: int = Field(default=10)
    SYNC_SCHEDULE_ENABLED: bool = Field(default=True)
    SYNC_SCHEDULE_HOUR_UTC: int = Field(default=2)

    # Disparadores del sync (tokens compartidos)
    ADMIN_API_TOKEN: str = Field(default="")
    CRON_SECRET: str = Field(default="")
    AIRTABLE_WEBHOOK_SECRET: str = Field(default="")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    @computed_field
    @property
    def airtable_configured(self) -> bool:
        """Indica si hay credenciales de Airtable."""
        return bool(self.AIRTABLE_TOKEN and self.AIRTABLE_BASE_ID)

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuracion de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        # Si no es JSON valido, retornar como lista simple
        return [origin.strip() for origin in cors_string.split(",")]


# Instancia global de configuracion
settings = Settings()
