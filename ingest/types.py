from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Any, Dict, List


class OperationType(str, Enum):
    PRIMARIA = "primaria"
    AJUSTE = "ajuste"
    OTRO = "otro"


class SettlementStatus(str, Enum):
    PENDIENTE = "pendiente"
    PROCESADA = "procesada"


@dataclass
class CTGItem:
    nro_comprobante: str
    peso_kg: Optional[float] = None
    grado: Optional[str] = None
    factor: Optional[float] = None
    contenido_proteico: Optional[float] = None
    procedencia: Optional[str] = None


@dataclass
class ParsedSettlement:
    # Encabezado
    coe: Optional[str] = None
    coe_original: Optional[str] = None
    tipo_operacion: OperationType = OperationType.OTRO
    fecha: Optional[str] = None
    lugar: Optional[str] = None
    # Partes
    comprador_cuit: Optional[str] = None
    comprador_razon_social: Optional[str] = None
    vendedor_cuit: Optional[str] = None
    vendedor_razon_social: Optional[str] = None
    # Condiciones
    grano_codigo: Optional[str] = None
    grano_tipo: Optional[str] = None
    grado: Optional[str] = None
    precio_tn: Optional[float] = None
    flete_tn: Optional[float] = None
    puerto: Optional[str] = None
    fecha_contrato: Optional[str] = None
    # Operación
    cantidad_kg: Optional[float] = None
    precio_kg: Optional[float] = None
    subtotal: Optional[float] = None
    iva_alicuota: float = 10.5
    iva_importe: Optional[float] = None
    total_operacion: Optional[float] = None
    total_deducciones: Optional[float] = None
    total_percepciones: Optional[float] = None
    iva_rg: Optional[float] = None
    importe_neto: Optional[float] = None
    pago_condiciones: Optional[float] = None
    # Dettaglio
    ctgs: List[CTGItem] = field(default_factory=list)
    datos_adicionales: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tipo_operacion"] = self.tipo_operacion.value
        return data
