"""
Database core module per il processor liquidazioni.

Modelli settlements / ctg_entries e SettlementStore: handle esplicito
(engine + session factory) creato allo startup e chiuso allo shutdown.
L'upsert usa INSERT ... ON CONFLICT DO UPDATE nativo del dialetto.
"""
import logging
import math
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, Date, DateTime, Float, ForeignKey, String, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from core.config import get_config
from ingest.errors import MissingOperationCodeError
from ingest.types import ParsedSettlement, SettlementStatus

logger = logging.getLogger(__name__)

# Base per i modelli
Base = declarative_base()

DEFAULT_GRAIN_TYPE = "desconocido"
MAX_PAGE_SIZE = 100

# Colonne aggiornate quando la stessa liquidazione (coe) viene re-ingerita
SETTLEMENT_UPDATE_COLUMNS = (
    "total_gross_kg",
    "total_net_kg",
    "gross_amount",
    "freight_amount",
    "net_amount",
    "pago_condiciones",
    "datos_adicionales",
    "s3_key",
    "status",
    "updated_at",
)
CTG_UPDATE_COLUMNS = ("factor", "gross_kg", "grado")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Colonne TIMESTAMP senza timezone: si salva UTC naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Settlement(Base):
    """Liquidazione grani (una per C.O.E.)"""
    __tablename__ = 'settlements'

    id = Column(String(36), primary_key=True, default=_new_id)
    settlement_number = Column(String(50))
    company_id = Column(String(20))
    settlement_date = Column(Date)

    grain_type = Column(String(100))
    base_price_per_ton = Column(Float, default=0)

    total_gross_kg = Column(Float, default=0)
    total_net_kg = Column(Float, default=0)
    total_waste_kg = Column(Float, default=0)

    gross_amount = Column(Float, default=0)
    commercial_discount = Column(Float, default=0)
    commission_amount = Column(Float, default=0)
    paritarias_amount = Column(Float, default=0)
    freight_amount = Column(Float, default=0)
    net_amount = Column(Float, default=0)

    status = Column(String(20), nullable=False, default=SettlementStatus.PENDIENTE.value, index=True)

    # Campi estratti dal documento
    coe = Column(String(50), nullable=False, unique=True, index=True)
    coe_original = Column(String(50))
    tipo_operacion = Column(String(20))
    lugar = Column(String(200))
    comprador_cuit = Column(String(20))
    comprador_razon_social = Column(String(300))
    vendedor_cuit = Column(String(20))
    vendedor_razon_social = Column(String(300))
    grano_codigo = Column(String(10))
    grano_tipo = Column(String(100))
    grado = Column(String(10))
    flete_tn = Column(Float)
    puerto = Column(String(200))
    fecha_contrato = Column(String(20))
    pago_condiciones = Column(Float)
    datos_adicionales = Column(JSON().with_variant(JSONB(), "postgresql"))

    s3_key = Column(String(1024))
    user_id = Column(String(100), index=True)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class CTGEntry(Base):
    """Carta de porte collegata a una liquidazione"""
    __tablename__ = 'ctg_entries'

    id = Column(String(36), primary_key=True, default=_new_id)
    settlement_id = Column(String(36), ForeignKey('settlements.id'), nullable=False, index=True)
    ctg_number = Column(String(20))
    nro_comprobante = Column(String(20), nullable=False, unique=True, index=True)
    grado = Column(String(10))
    factor = Column(Float)
    contenido_proteico = Column(Float)
    gross_kg = Column(Float)
    procedencia = Column(String(200))
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def model_to_dict(instance) -> Dict[str, Any]:
    return {
        column.name: _serialize(getattr(instance, column.name))
        for column in instance.__table__.columns
    }


def parse_settlement_date(fecha: Optional[str]) -> date:
    """dd/mm/yyyy -> date; data odierna se assente o non valida."""
    if fecha:
        try:
            return datetime.strptime(fecha, "%d/%m/%Y").date()
        except ValueError:
            logger.warning(f"[DB] Data liquidazione non valida '{fecha}', uso data odierna")
    return _utcnow().date()


def _or_zero(value: Optional[float]) -> float:
    return value if value is not None else 0


def settlement_values(
    parsed: ParsedSettlement,
    source_key: Optional[str],
    user_id: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    """
    Mappa ParsedSettlement -> riga settlements.

    I campi aggregati usano 0 come default, i campi estratti restano None.
    """
    return {
        "id": _new_id(),
        "settlement_number": parsed.coe,
        "company_id": parsed.vendedor_cuit,
        "settlement_date": parse_settlement_date(parsed.fecha),
        "grain_type": parsed.grano_tipo or DEFAULT_GRAIN_TYPE,
        "base_price_per_ton": _or_zero(parsed.precio_tn),
        "total_gross_kg": _or_zero(parsed.cantidad_kg),
        "total_net_kg": _or_zero(parsed.cantidad_kg),
        "total_waste_kg": 0,
        "gross_amount": _or_zero(parsed.subtotal),
        "commercial_discount": 0,
        "commission_amount": 0,
        "paritarias_amount": 0,
        "freight_amount": _or_zero(parsed.flete_tn),
        "net_amount": _or_zero(parsed.pago_condiciones),
        "status": SettlementStatus.PROCESADA.value,
        "coe": parsed.coe,
        "coe_original": parsed.coe_original,
        "tipo_operacion": parsed.tipo_operacion.value,
        "lugar": parsed.lugar,
        "comprador_cuit": parsed.comprador_cuit,
        "comprador_razon_social": parsed.comprador_razon_social,
        "vendedor_cuit": parsed.vendedor_cuit,
        "vendedor_razon_social": parsed.vendedor_razon_social,
        "grano_codigo": parsed.grano_codigo,
        "grano_tipo": parsed.grano_tipo,
        "grado": parsed.grado,
        "flete_tn": parsed.flete_tn,
        "puerto": parsed.puerto,
        "fecha_contrato": parsed.fecha_contrato,
        "pago_condiciones": parsed.pago_condiciones,
        "datos_adicionales": parsed.datos_adicionales or {},
        "s3_key": source_key,
        "user_id": user_id,
        "created_at": now,
        "updated_at": now,
    }


def normalize_database_url(url: str) -> str:
    """postgres:// e postgresql:// -> driver asyncpg; altri URL invariati."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


class SettlementStore:
    """
    Handle di persistenza liquidazioni.

    Creato una volta per processo e passato per riferimento
    (BatchCoordinator, router). Nessun engine a livello modulo.
    """

    def __init__(self, engine):
        self.engine = engine
        self.session_factory = sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    @classmethod
    def from_url(
        cls,
        database_url: str,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
        statement_timeout_sec: Optional[float] = None
    ) -> "SettlementStore":
        url = normalize_database_url(database_url)
        engine_kwargs: Dict[str, Any] = {"echo": False}

        if url.startswith("postgresql"):
            # Pool e timeout si applicano solo a PostgreSQL
            if pool_size is not None:
                engine_kwargs["pool_size"] = pool_size
            if max_overflow is not None:
                engine_kwargs["max_overflow"] = max_overflow
            engine_kwargs["pool_pre_ping"] = True
            if statement_timeout_sec is not None:
                engine_kwargs["connect_args"] = {"command_timeout": statement_timeout_sec}

        engine = create_async_engine(url, **engine_kwargs)
        logger.info(f"[DB] Engine creato (dialect={engine.dialect.name})")
        return cls(engine)

    @classmethod
    def from_config(cls, config=None) -> "SettlementStore":
        config = config or get_config()
        return cls.from_url(
            config.database_url,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            statement_timeout_sec=config.db_statement_timeout_sec,
        )

    async def create_tables(self):
        """Crea tabelle settlements e ctg_entries se non esistono."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("[DB] Tabelle settlements, ctg_entries pronte")
        except Exception as e:
            logger.error(f"[DB] Errore creazione tabelle: {e}", exc_info=True)
            raise

    async def dispose(self):
        await self.engine.dispose()
        logger.info("[DB] Engine chiuso")

    def _insert(self, table):
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        if self.engine.dialect.name == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"Upsert non supportato per dialect {self.engine.dialect.name}")

    async def upsert_settlement(
        self,
        parsed: ParsedSettlement,
        source_key: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> str:
        """
        Inserisce o aggiorna una liquidazione e le sue CTG in una transazione.

        - settlements: ON CONFLICT (coe) aggiorna solo SETTLEMENT_UPDATE_COLUMNS
        - ctg_entries: ON CONFLICT (nro_comprobante) aggiorna factor, gross_kg, grado
        Qualsiasi errore annulla l'intero documento.

        Args:
            parsed: Liquidazione estratta
            source_key: Key S3 del documento sorgente (se da storage)
            user_id: Utente proprietario (opaco)

        Returns:
            id della liquidazione (esistente se già presente)

        Raises:
            MissingOperationCodeError: liquidazione senza coe
        """
        if not parsed.coe:
            raise MissingOperationCodeError()

        now = _utcnow()
        values = settlement_values(parsed, source_key, user_id, now)

        settlement_table = Settlement.__table__
        stmt = self._insert(settlement_table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[settlement_table.c.coe],
            set_={name: stmt.excluded[name] for name in SETTLEMENT_UPDATE_COLUMNS},
        ).returning(settlement_table.c.id)

        ctg_table = CTGEntry.__table__

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                settlement_id = result.scalar_one()

                for ctg in parsed.ctgs:
                    ctg_stmt = self._insert(ctg_table).values(
                        id=_new_id(),
                        settlement_id=settlement_id,
                        ctg_number=ctg.nro_comprobante,
                        nro_comprobante=ctg.nro_comprobante,
                        grado=ctg.grado,
                        factor=ctg.factor,
                        contenido_proteico=ctg.contenido_proteico,
                        gross_kg=ctg.peso_kg,
                        procedencia=ctg.procedencia,
                        created_at=now,
                        updated_at=now,
                    )
                    ctg_stmt = ctg_stmt.on_conflict_do_update(
                        index_elements=[ctg_table.c.nro_comprobante],
                        set_={name: ctg_stmt.excluded[name] for name in CTG_UPDATE_COLUMNS},
                    )
                    await session.execute(ctg_stmt)

        logger.info(
            f"[DB] Liquidazione salvata: coe={parsed.coe}, id={settlement_id}, "
            f"ctgs={len(parsed.ctgs)}"
        )
        return settlement_id

    async def list_settlements(
        self,
        user_id: Optional[str],
        page: int = 1,
        limit: int = 20,
        grain: Optional[str] = None,
        status: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Lista paginata delle liquidazioni dell'utente (più recenti prima).

        Returns:
            Dict con 'data' e 'pagination' (page, limit, total, pages)
        """
        page = max(1, page)
        limit = max(1, min(MAX_PAGE_SIZE, limit))

        filters = [Settlement.user_id == user_id]
        if grain:
            filters.append(Settlement.grain_type == grain)
        if status:
            filters.append(Settlement.status == status)

        query = (
            select(Settlement)
            .where(*filters)
            .order_by(Settlement.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        count_query = select(func.count()).select_from(Settlement).where(*filters)

        async with self.session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
            total = (await session.execute(count_query)).scalar_one()

        return {
            "data": [model_to_dict(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    async def get_settlement(self, settlement_id: str, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Dettaglio liquidazione con le CTG ordinate per created_at.

        Returns:
            Dict liquidazione con 'ctg_entries', None se non trovata per l'utente
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Settlement).where(
                    Settlement.id == settlement_id,
                    Settlement.user_id == user_id,
                )
            )
            settlement = result.scalar_one_or_none()
            if settlement is None:
                return None

            ctg_result = await session.execute(
                select(CTGEntry)
                .where(CTGEntry.settlement_id == settlement_id)
                .order_by(CTGEntry.created_at.asc(), CTGEntry.nro_comprobante.asc())
            )
            entries = ctg_result.scalars().all()

        data = model_to_dict(settlement)
        data["ctg_entries"] = [model_to_dict(entry) for entry in entries]
        return data
