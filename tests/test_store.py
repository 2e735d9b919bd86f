"""
Test SettlementStore su SQLite temporaneo (aiosqlite).
"""
import dataclasses
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from core.database import CTGEntry, Settlement, normalize_database_url, parse_settlement_date
from ingest.errors import MissingOperationCodeError
from ingest.types import CTGItem


async def _count(store, model):
    async with store.session_factory() as session:
        return len((await session.execute(select(model))).scalars().all())


class TestUpsertSettlement:
    """Test upsert transazionale."""

    @pytest.mark.asyncio
    async def test_insert_maps_columns(self, store, primary_settlement):
        settlement_id = await store.upsert_settlement(primary_settlement, source_key="in/liq.pdf", user_id="u1")

        data = await store.get_settlement(settlement_id, user_id="u1")
        assert data["coe"] == "330223456789"
        assert data["settlement_number"] == "330223456789"
        assert data["company_id"] == "20222222223"
        assert data["settlement_date"] == "2024-03-15"
        assert data["grain_type"] == "11 - CEBADA FORRAJERA"
        assert data["total_gross_kg"] == 59361
        assert data["total_net_kg"] == 59361
        assert data["net_amount"] == pytest.approx(12946250.30)
        assert data["total_waste_kg"] == 0
        assert data["status"] == "procesada"
        assert data["tipo_operacion"] == "primaria"
        assert data["s3_key"] == "in/liq.pdf"
        assert data["datos_adicionales"]["descuento_comercial"] == pytest.approx(-2658.72)
        assert [e["nro_comprobante"] for e in data["ctg_entries"]] == ["101234567890", "101234567891"]
        assert data["ctg_entries"][0]["ctg_number"] == "101234567890"
        assert data["ctg_entries"][0]["gross_kg"] == 29680.0

    @pytest.mark.asyncio
    async def test_reingestion_is_idempotent(self, store, primary_settlement):
        first_id = await store.upsert_settlement(primary_settlement, user_id="u1")
        second_id = await store.upsert_settlement(primary_settlement, user_id="u1")

        assert first_id == second_id
        assert await _count(store, Settlement) == 1
        assert await _count(store, CTGEntry) == 2

    @pytest.mark.asyncio
    async def test_reingestion_updates_only_fixed_subset(self, store, primary_settlement):
        settlement_id = await store.upsert_settlement(primary_settlement, source_key="a.pdf", user_id="u1")

        changed = dataclasses.replace(
            primary_settlement,
            comprador_razon_social="OTRA RAZON SOCIAL",
            grano_tipo="01 - SOJA",
            pago_condiciones=1000.0,
            ctgs=[dataclasses.replace(primary_settlement.ctgs[0], peso_kg=1.0, procedencia="OTRA")],
        )
        await store.upsert_settlement(changed, source_key="b.pdf", user_id="u1")

        data = await store.get_settlement(settlement_id, user_id="u1")
        assert data["net_amount"] == 1000.0
        assert data["pago_condiciones"] == 1000.0
        assert data["s3_key"] == "b.pdf"
        assert data["comprador_razon_social"] == "ACOPIADORA DEL SUR S.A."
        assert data["grain_type"] == "11 - CEBADA FORRAJERA"

        entry = data["ctg_entries"][0]
        assert entry["gross_kg"] == 1.0
        assert entry["procedencia"] == "PERGAMINO"

    @pytest.mark.asyncio
    async def test_failed_ctg_rolls_back_document(self, store, primary_settlement):
        broken = dataclasses.replace(
            primary_settlement,
            ctgs=primary_settlement.ctgs + [CTGItem(nro_comprobante=None, peso_kg=1.0)],
        )

        with pytest.raises(IntegrityError):
            await store.upsert_settlement(broken, user_id="u1")

        assert await _count(store, Settlement) == 0
        assert await _count(store, CTGEntry) == 0

    @pytest.mark.asyncio
    async def test_missing_coe_rejected(self, store, primary_settlement):
        with pytest.raises(MissingOperationCodeError):
            await store.upsert_settlement(dataclasses.replace(primary_settlement, coe=None))
        assert await _count(store, Settlement) == 0

    @pytest.mark.asyncio
    async def test_missing_fields_use_defaults(self, store, adjustment_settlement):
        settlement_id = await store.upsert_settlement(adjustment_settlement, user_id="u1")

        data = await store.get_settlement(settlement_id, user_id="u1")
        assert data["total_gross_kg"] == 0
        assert data["base_price_per_ton"] == 0
        assert data["grado"] is None
        assert data["datos_adicionales"] == {}
        assert data["ctg_entries"][1]["gross_kg"] == pytest.approx(30001.5)


class TestReadSettlements:
    """Test lista e dettaglio."""

    @pytest.mark.asyncio
    async def test_list_scoped_to_user(self, store, primary_settlement, adjustment_settlement):
        await store.upsert_settlement(primary_settlement, user_id="u1")
        await store.upsert_settlement(adjustment_settlement, user_id="u2")

        result = await store.list_settlements(user_id="u1")
        assert [row["coe"] for row in result["data"]] == ["330223456789"]
        assert result["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}

    @pytest.mark.asyncio
    async def test_list_filters_and_pagination(self, store, primary_settlement, adjustment_settlement):
        await store.upsert_settlement(primary_settlement, user_id="u1")
        await store.upsert_settlement(adjustment_settlement, user_id="u1")

        by_grain = await store.list_settlements(user_id="u1", grain="02 - TRIGO PAN")
        assert [row["coe"] for row in by_grain["data"]] == ["330229999999"]

        by_status = await store.list_settlements(user_id="u1", status="pendiente")
        assert by_status["pagination"]["total"] == 0

        paged = await store.list_settlements(user_id="u1", page=2, limit=1)
        assert len(paged["data"]) == 1
        assert paged["pagination"] == {"page": 2, "limit": 1, "total": 2, "pages": 2}

    @pytest.mark.asyncio
    async def test_limit_clamped(self, store):
        result = await store.list_settlements(user_id="u1", page=0, limit=500)
        assert result["pagination"]["page"] == 1
        assert result["pagination"]["limit"] == 100

    @pytest.mark.asyncio
    async def test_detail_other_user_not_found(self, store, primary_settlement):
        settlement_id = await store.upsert_settlement(primary_settlement, user_id="u1")
        assert await store.get_settlement(settlement_id, user_id="u2") is None
        assert await store.get_settlement("missing-id", user_id="u1") is None


class TestHelpers:
    """Test helper database."""

    def test_parse_settlement_date(self):
        assert parse_settlement_date("15/03/2024") == date(2024, 3, 15)
        assert isinstance(parse_settlement_date(None), date)
        assert isinstance(parse_settlement_date("2024-03-15"), date)

    def test_normalize_database_url(self):
        assert normalize_database_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert normalize_database_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert normalize_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"
