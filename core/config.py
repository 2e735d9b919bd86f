"""
Configurazione per il processor liquidazioni usando pydantic-settings.

Gestisce variabili d'ambiente, pool database, timeout e limiti di concorrenza
della pipeline di ingestione.
"""
import logging
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Carica .env
load_dotenv()

logger = logging.getLogger(__name__)


class ProcessorConfig(BaseSettings):
    """Configurazione completa del processor."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(..., description="URL connessione PostgreSQL")
    db_pool_size: int = Field(default=5, ge=1, le=100, description="Connessioni nel pool")
    db_max_overflow: int = Field(default=5, ge=0, le=100, description="Connessioni extra oltre il pool")
    db_statement_timeout_sec: float = Field(default=15.0, gt=0, description="Timeout singolo statement SQL")

    # Server
    port: int = Field(default=8001, description="Porta server FastAPI")
    cors_allow_origins: str = Field(default="*", description="Origini CORS (separate da virgola)")

    # Pipeline
    persist_timeout_sec: float = Field(default=30.0, gt=0, description="Timeout transazione per documento")
    fetch_timeout_sec: float = Field(default=20.0, gt=0, description="Timeout download da storage")
    persist_concurrency: int = Field(default=2, ge=1, le=50, description="Transazioni concorrenti per processo")
    extract_concurrency: int = Field(default=4, ge=1, le=32, description="Estrazioni testo concorrenti per processo")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Dimensione massima documento")

    # Storage
    aws_region: str = Field(default="us-east-2", description="Regione AWS per S3")
    s3_bucket: str = Field(default="", description="Bucket documenti liquidazioni")

    # Processor info
    processor_name: str = Field(default="Settlements Processor", description="Nome processor")
    processor_version: str = Field(default="1.0.0", description="Versione processor")

    def get_cors_origins_list(self) -> List[str]:
        """Ritorna lista origini CORS."""
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    def validate_config(self) -> bool:
        """Valida configurazione critica."""
        errors = []

        if not self.database_url:
            errors.append("DATABASE_URL non configurato")

        if self.persist_concurrency > self.db_pool_size + self.db_max_overflow:
            errors.append(
                f"PERSIST_CONCURRENCY={self.persist_concurrency} supera la capacità del pool "
                f"({self.db_pool_size}+{self.db_max_overflow})"
            )

        if not self.s3_bucket:
            # Warning, non errore (solo ingestione diretta)
            logger.warning("S3_BUCKET non configurato - eventi storage accettati da qualsiasi bucket")

        if errors:
            error_msg = "❌ Configurazione processor mancante:\n" + "\n".join(f"  - {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("✅ Configurazione processor validata con successo")
        return True


# Istanza globale configurazione
_config: ProcessorConfig | None = None


def get_config() -> ProcessorConfig:
    """Ottiene istanza configurazione (singleton)."""
    global _config
    if _config is None:
        _config = ProcessorConfig()
        _config.validate_config()
    return _config


def validate_config() -> bool:
    """Valida configurazione critica (funzione standalone per compatibilità)."""
    config = get_config()
    return config.validate_config()
