"""
Configurazione pytest e fixture comuni.
"""
import os

# Prima di importare moduli che leggono la configurazione
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio

from core.config import ProcessorConfig
from core.database import SettlementStore
from ingest.pipeline import parse_settlement_text

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")


def read_fixture(name: str) -> str:
    with open(os.path.join(DATA_DIR, name), encoding="utf-8") as f:
        return f.read()


@pytest.fixture
def primary_text():
    """Liquidazione primaria con CTG in layout primario e Datos Adicionales."""
    return read_fixture("liquidacion_primaria.txt")


@pytest.fixture
def adjustment_text():
    """Ajuste unificado con CTG solo in layout fallback."""
    return read_fixture("liquidacion_ajuste.txt")


@pytest.fixture
def primary_settlement(primary_text):
    return parse_settlement_text(primary_text)


@pytest.fixture
def adjustment_settlement(adjustment_text):
    return parse_settlement_text(adjustment_text)


@pytest.fixture
def pipeline_config():
    """Configurazione pipeline per test (nessun .env richiesto)."""
    return ProcessorConfig(
        database_url="sqlite+aiosqlite:///:memory:",
        persist_timeout_sec=5.0,
        fetch_timeout_sec=5.0,
        persist_concurrency=1,
        extract_concurrency=2,
        max_file_size_mb=1,
    )


@pytest_asyncio.fixture
async def store(tmp_path):
    """SettlementStore reale su file SQLite temporaneo."""
    db_path = tmp_path / "settlements.db"
    settlement_store = SettlementStore.from_url(f"sqlite+aiosqlite:///{db_path}")
    await settlement_store.create_tables()
    yield settlement_store
    await settlement_store.dispose()
