"""
Esquemas de datos para operaciones de comercio internacional.

Este módulo define las estructuras que recorren el pipeline: la información
general extraída del texto libre, giros y liberaciones, el progreso por fase,
los estados de proceso, los rangos de fechas sintetizados, el resultado de la
validación y la operación ensamblada.

Las estructuras derivadas son inmutables (``frozen=True``); los pasos que
completan datos (por ejemplo, fechas de vencimiento) producen copias nuevas
con ``dataclasses.replace`` en lugar de modificar el objeto original.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from .constants import DEFAULT_CURRENCY, EstadoProceso

logger = logging.getLogger(__name__)


def _iso(value: Optional[Any]) -> Optional[str]:
    """Serializa fechas a ISO 8601 dejando pasar None."""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


# ============================================================================
# INFORMACIÓN GENERAL
# ============================================================================
@dataclass(frozen=True)
class Giro:
    """Giro solicitado contra el valor total de la operación."""

    valor_solicitado: float
    numero_giro: str
    porcentaje_giro: str = ""
    estado: EstadoProceso = EstadoProceso.PENDIENTE
    fecha_vencimiento: Optional[date] = None

    @property
    def is_valid(self) -> bool:
        return self.valor_solicitado > 0 and bool(self.numero_giro)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valor_solicitado": self.valor_solicitado,
            "numero_giro": self.numero_giro,
            "porcentaje_giro": self.porcentaje_giro,
            "estado": self.estado.value,
            "fecha_vencimiento": _iso(self.fecha_vencimiento),
        }


@dataclass(frozen=True)
class Liberacion:
    """Liberación de capital usada para conciliar el cierre de la operación."""

    numero: int
    capital: float
    fecha: str  # YYYY-MM-DD
    estado: EstadoProceso = EstadoProceso.PENDIENTE
    fecha_vencimiento: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "numero": self.numero,
            "capital": self.capital,
            "fecha": self.fecha,
            "estado": self.estado.value,
            "fecha_vencimiento": _iso(self.fecha_vencimiento),
        }


@dataclass(frozen=True)
class DatosBancarios:
    """Datos bancarios del beneficiario (proveedor)."""

    beneficiario: str = ""
    banco: str = ""
    direccion: str = ""
    numero_cuenta: str = ""
    swift: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beneficiario": self.beneficiario,
            "banco": self.banco,
            "direccion": self.direccion,
            "numero_cuenta": self.numero_cuenta,
            "swift": self.swift,
        }


@dataclass(frozen=True)
class ParsedGeneralInfo:
    """
    Campos estructurados extraídos del bloque "Info Gnal + Info Compra Int".

    Invariantes: ``valor_total_compra`` nunca es negativo y ``moneda_pago``
    siempre tiene un código (se usa USD cuando el texto no es interpretable).
    """

    cliente: str = ""
    pais_importador: str = ""
    pais_exportador: str = ""
    valor_total_compra: float = 0.0
    moneda_pago: str = DEFAULT_CURRENCY.value
    terminos_pago: str = ""
    incoterm_compra: str = ""
    incoterm_venta: str = ""
    datos_bancarios: DatosBancarios = field(default_factory=DatosBancarios)
    giros: Tuple[Giro, ...] = ()
    liberaciones: Tuple[Liberacion, ...] = ()

    def __post_init__(self):
        if self.valor_total_compra < 0:
            object.__setattr__(self, "valor_total_compra", 0.0)
        if not self.moneda_pago:
            object.__setattr__(self, "moneda_pago", DEFAULT_CURRENCY.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cliente": self.cliente,
            "pais_importador": self.pais_importador,
            "pais_exportador": self.pais_exportador,
            "valor_total_compra": self.valor_total_compra,
            "moneda_pago": self.moneda_pago,
            "terminos_pago": self.terminos_pago,
            "incoterm_compra": self.incoterm_compra,
            "incoterm_venta": self.incoterm_venta,
            "datos_bancarios": self.datos_bancarios.to_dict(),
            "giros": [g.to_dict() for g in self.giros],
            "liberaciones": [lib.to_dict() for lib in self.liberaciones],
        }


# ============================================================================
# PROGRESO Y ESTADOS
# ============================================================================
@dataclass(frozen=True)
class PhaseProgress:
    """Progreso calculado para una de las cinco fases."""

    phase: int
    name: str
    progress: int
    status: EstadoProceso
    reason: str
    dependencies_satisfied: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "name": self.name,
            "progress": self.progress,
            "status": self.status.value,
            "reason": self.reason,
            "dependencies_satisfied": self.dependencies_satisfied,
        }


@dataclass(frozen=True)
class OverallProgress:
    """Agregado ponderado de las cinco fases."""

    total_progress: int
    completed_phases: int
    current_phase: Optional[int]
    next_phase: Optional[int]
    phase_details: Tuple[PhaseProgress, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_progress": self.total_progress,
            "completed_phases": self.completed_phases,
            "current_phase": self.current_phase,
            "next_phase": self.next_phase,
            "phase_details": [p.to_dict() for p in self.phase_details],
        }


@dataclass(frozen=True)
class EstadosProceso:
    """Seis estados de proceso usados para reportes agregados."""

    cotizacion: EstadoProceso = EstadoProceso.PENDIENTE
    documentos_legales: EstadoProceso = EstadoProceso.PENDIENTE
    cuota_operacional: EstadoProceso = EstadoProceso.PENDIENTE
    compra_internacional: EstadoProceso = EstadoProceso.PENDIENTE
    giro_proveedor: EstadoProceso = EstadoProceso.PENDIENTE
    factura_final: EstadoProceso = EstadoProceso.PENDIENTE

    def to_dict(self) -> Dict[str, str]:
        return {
            "cotizacion": self.cotizacion.value,
            "documentos_legales": self.documentos_legales.value,
            "cuota_operacional": self.cuota_operacional.value,
            "compra_internacional": self.compra_internacional.value,
            "giro_proveedor": self.giro_proveedor.value,
            "factura_final": self.factura_final.value,
        }


# ============================================================================
# FECHAS
# ============================================================================
@dataclass(frozen=True)
class DateRange:
    """
    Fechas sintetizadas de una fase.

    Invariantes: ``actual`` nunca es posterior al "ahora" usado para
    sintetizarla y ``start`` nunca es anterior a la fecha de la fase de la
    que depende.
    """

    phase: int
    start: datetime
    end: datetime
    estimated: datetime
    actual: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "estimated": _iso(self.estimated),
            "actual": _iso(self.actual),
        }


# ============================================================================
# VALIDACIÓN Y ALERTAS
# ============================================================================
@dataclass(frozen=True)
class ValidationWarning:
    phase: int
    type: str  # dependency | inconsistency | data_quality
    message: str
    severity: str  # low | medium | high

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "type": self.type,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ValidationError:
    phase: int
    type: str  # logical_error | missing_data | invalid_state
    message: str
    blocking: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "type": self.type,
            "message": self.message,
            "blocking": self.blocking,
        }


@dataclass
class ValidationResult:
    """Resultado de la validación cruzada de una operación."""

    is_valid: bool = True
    warnings: List[ValidationWarning] = field(default_factory=list)
    errors: List[ValidationError] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def blocking_errors(self) -> List[ValidationError]:
        return [e for e in self.errors if e.blocking]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class Alerta:
    """Alerta visible para el usuario."""

    tipo: str  # info | warning | error
    mensaje: str
    fecha: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"tipo": self.tipo, "mensaje": self.mensaje, "fecha": _iso(self.fecha)}


@dataclass(frozen=True)
class Extracostos:
    comision_bancaria: int = 0
    gastos_logisticos: int = 0
    seguro_carga: int = 0

    @property
    def total_extracostos(self) -> int:
        return self.comision_bancaria + self.gastos_logisticos + self.seguro_carga

    def to_dict(self) -> Dict[str, Any]:
        return {
            "comision_bancaria": self.comision_bancaria,
            "gastos_logisticos": self.gastos_logisticos,
            "seguro_carga": self.seguro_carga,
            "total_extracostos": self.total_extracostos,
        }


@dataclass(frozen=True)
class TimelineEvent:
    id: str
    fase: str
    descripcion: str
    estado: EstadoProceso
    progreso: int
    responsable: str
    fecha: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fase": self.fase,
            "descripcion": self.descripcion,
            "estado": self.estado.value,
            "progreso": self.progreso,
            "responsable": self.responsable,
            "fecha": _iso(self.fecha),
        }


# ============================================================================
# OPERACIÓN ENSAMBLADA
# ============================================================================
@dataclass(frozen=True)
class OperationDetail:
    """
    Operación ensamblada a partir de una fila del export.

    Se reconstruye completa en cada ciclo de parseo; ``id`` es determinista
    (cliente + token estable de la fila + índice de fila).
    """

    id: str
    numero_operacion: str
    pais: str
    cliente_completo: str
    cliente_nit: str
    tipo_empresa: str
    proveedor_beneficiario: str
    persona_asignada: str
    pais_exportador: str
    pais_importador: str
    ruta_comercial: str
    incoterms: str
    valor_total: float
    valor_operacion: Optional[float]
    moneda: str
    terminos_pago: str
    montos_liberados: float
    montos_pendientes: float
    extracostos: Extracostos
    datos_bancarios: DatosBancarios
    estados: EstadosProceso
    giros: Tuple[Giro, ...]
    liberaciones: Tuple[Liberacion, ...]
    progreso: OverallProgress
    validation: ValidationResult
    date_ranges: Tuple[DateRange, ...]
    timeline: Tuple[TimelineEvent, ...]
    alertas: Tuple[Alerta, ...]
    observaciones: str
    row_number: int

    @property
    def progreso_general(self) -> int:
        return self.progreso.total_progress

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "numero_operacion": self.numero_operacion,
            "pais": self.pais,
            "cliente_completo": self.cliente_completo,
            "cliente_nit": self.cliente_nit,
            "tipo_empresa": self.tipo_empresa,
            "proveedor_beneficiario": self.proveedor_beneficiario,
            "persona_asignada": self.persona_asignada,
            "pais_exportador": self.pais_exportador,
            "pais_importador": self.pais_importador,
            "ruta_comercial": self.ruta_comercial,
            "incoterms": self.incoterms,
            "valor_total": self.valor_total,
            "valor_operacion": self.valor_operacion,
            "moneda": self.moneda,
            "terminos_pago": self.terminos_pago,
            "progreso_general": self.progreso_general,
            "montos_liberados": self.montos_liberados,
            "montos_pendientes": self.montos_pendientes,
            "extracostos": self.extracostos.to_dict(),
            "datos_bancarios": self.datos_bancarios.to_dict(),
            "estados": self.estados.to_dict(),
            "giros": [g.to_dict() for g in self.giros],
            "liberaciones": [lib.to_dict() for lib in self.liberaciones],
            "progreso": self.progreso.to_dict(),
            "validation": self.validation.to_dict(),
            "date_ranges": [r.to_dict() for r in self.date_ranges],
            "timeline": [t.to_dict() for t in self.timeline],
            "alertas": [a.to_dict() for a in self.alertas],
            "observaciones": self.observaciones,
            "row_number": self.row_number,
        }
