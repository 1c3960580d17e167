"""
Mapeo de las columnas de estado de una fila a los seis estados de proceso.

Las reglas se parecen a las del calculador de progreso pero son
independientes: el calculador alimenta la línea de tiempo detallada y este
módulo alimenta los reportes agregados. El perfil de país se recibe de forma
explícita; para países sin columna de documento legal por compra esa
condición se considera cumplida.
"""

import logging
from typing import Any, Dict, Tuple

from .constants import ColumnNames, CountryProfile, EstadoProceso, ProcessingThresholds
from .csv_splitter import RawRow
from .progress_calculator import (
    REJECTION_KEYWORDS,
    calculate_release_completion,
)
from .progress_calculator import calculate_payment_progress as _payment_progress
from .schemas import EstadosProceso, ParsedGeneralInfo
from .utils import contains_all, contains_any

logger = logging.getLogger(__name__)

StateDecision = Tuple[EstadoProceso, str]


def _field(row: RawRow, column: str) -> str:
    return row.get(column, "") or ""


# ============================================================================
# REGLAS POR ESTADO
# ============================================================================
def _cotizacion(row: RawRow) -> StateDecision:
    proceso = _field(row, ColumnNames.PROCESO)
    firma = _field(row, ColumnNames.FIRMA_COTIZACION)

    if contains_any(proceso, ["1. Aprobación de Cotización"]) or contains_any(firma, ["listo"]):
        return EstadoProceso.COMPLETADO, "Cotización aprobada o firmada"
    if contains_any(firma, REJECTION_KEYWORDS):
        return EstadoProceso.RECHAZADO, f"Firma rechazada: \"{firma}\""
    if proceso.strip() or firma.strip():
        return EstadoProceso.EN_PROCESO, "Cotización en trámite"
    return EstadoProceso.PENDIENTE, "Sin información de cotización"


def _cuota_operacional(row: RawRow) -> StateDecision:
    cuota = _field(row, ColumnNames.CUOTA_OPERACIONAL)

    if contains_any(cuota, ["listo"]):
        return EstadoProceso.COMPLETADO, "Cuota operacional pagada"
    if contains_any(cuota, REJECTION_KEYWORDS):
        return EstadoProceso.RECHAZADO, f"Cuota rechazada: \"{cuota}\""
    if contains_any(cuota, ["proceso", "revision", "pendiente confirmacion"]):
        return EstadoProceso.EN_PROCESO, f"Cuota en trámite: \"{cuota}\""
    return EstadoProceso.PENDIENTE, "Cuota operacional sin pagar"


def _doc_legal_ok(row: RawRow, profile: CountryProfile) -> bool:
    if not profile.has_doc_legal_x_comp:
        return True
    return contains_any(_field(row, ColumnNames.DOC_LEGAL_X_COMP), ["listo", "completado"])


def _documentos_legales(
    row: RawRow,
    profile: CountryProfile,
    cotizacion: EstadoProceso,
    cuota: EstadoProceso,
) -> StateDecision:
    doc_legal = _doc_legal_ok(row, profile)
    if cotizacion is EstadoProceso.COMPLETADO and cuota is EstadoProceso.COMPLETADO and doc_legal:
        return EstadoProceso.COMPLETADO, "Cotización, cuota y documento legal completos"
    if cotizacion is EstadoProceso.COMPLETADO:
        faltante = "cuota operacional" if cuota is not EstadoProceso.COMPLETADO else "documento legal"
        return EstadoProceso.EN_PROCESO, f"Pendiente: {faltante}"
    return EstadoProceso.PENDIENTE, "Cotización sin aprobar"


def _giro_proveedor(row: RawRow) -> StateDecision:
    giro = _field(row, ColumnNames.GIRO_PROVEEDOR)

    if contains_all(giro, ["listo", "pago confirmado"]):
        return EstadoProceso.COMPLETADO, "Pago al proveedor confirmado"
    if contains_any(giro, REJECTION_KEYWORDS):
        return EstadoProceso.RECHAZADO, f"Giro rechazado: \"{giro}\""
    if contains_any(giro, ["proceso", "revision", "preparacion"]):
        return EstadoProceso.EN_PROCESO, f"Giro en trámite: \"{giro}\""
    if contains_any(giro, ["listo"]) and not contains_any(giro, ["confirmado"]):
        return EstadoProceso.EN_PROCESO, "Giro listo sin confirmación de pago"
    return EstadoProceso.PENDIENTE, "Sin giro al proveedor"


def _compra_internacional(cuota: EstadoProceso, giro: EstadoProceso) -> StateDecision:
    if cuota is not EstadoProceso.COMPLETADO:
        return EstadoProceso.PENDIENTE, "Requiere cuota operacional pagada"
    if giro is EstadoProceso.COMPLETADO:
        return EstadoProceso.COMPLETADO, "Cuota pagada y giro confirmado"
    return EstadoProceso.EN_PROCESO, "Cuota pagada, giro en curso"


def _factura_final(row: RawRow) -> StateDecision:
    factura = _field(row, ColumnNames.PROFORMA_FACTURA)

    if contains_all(factura, ["listo", "factura final"]):
        return EstadoProceso.COMPLETADO, "Factura final lista"
    if contains_any(factura, REJECTION_KEYWORDS):
        return EstadoProceso.RECHAZADO, f"Factura rechazada: \"{factura}\""
    if contains_any(factura, ["proceso", "revision", "proforma"]):
        return EstadoProceso.EN_PROCESO, f"Factura en trámite: \"{factura}\""
    if contains_any(factura, ["listo"]) and not contains_any(factura, ["final"]):
        return EstadoProceso.EN_PROCESO, "Proforma lista, falta factura final"
    return EstadoProceso.PENDIENTE, "Sin facturación"


# ============================================================================
# API PÚBLICA
# ============================================================================
def analyze_states(row: RawRow, profile: CountryProfile) -> Dict[str, Any]:
    """
    Calcula los seis estados con la razón de cada decisión.

    Returns:
        ``{"estados": EstadosProceso, "analysis": {estado: {"result", "reason"}}}``
    """
    cotizacion = _cotizacion(row)
    cuota = _cuota_operacional(row)
    documentos = _documentos_legales(row, profile, cotizacion[0], cuota[0])
    giro = _giro_proveedor(row)
    compra = _compra_internacional(cuota[0], giro[0])
    factura = _factura_final(row)

    decisions = {
        "cotizacion": cotizacion,
        "documentos_legales": documentos,
        "cuota_operacional": cuota,
        "compra_internacional": compra,
        "giro_proveedor": giro,
        "factura_final": factura,
    }
    estados = EstadosProceso(**{name: decision[0] for name, decision in decisions.items()})
    analysis = {
        name: {"result": decision[0].value, "reason": decision[1]}
        for name, decision in decisions.items()
    }
    analysis["documentos_legales"]["doc_legal_requerido"] = profile.has_doc_legal_x_comp
    return {"estados": estados, "analysis": analysis}


def map_states(row: RawRow, profile: CountryProfile) -> EstadosProceso:
    """Devuelve los seis estados de proceso para la fila."""
    return analyze_states(row, profile)["estados"]


def calculate_payment_progress(info: ParsedGeneralInfo) -> Dict[str, Any]:
    payment = _payment_progress(info)
    return {
        "total_giros": payment.paid_amount,
        "porcentaje": payment.progress_percent,
        "giros_completados": sum(1 for g in info.giros if g.estado is EstadoProceso.COMPLETADO),
        "total_value": payment.total_amount,
        "pending_value": payment.pending_amount,
    }


def validate_liberations(
    info: ParsedGeneralInfo,
    tolerance: float = ProcessingThresholds.RELEASE_TOLERANCE,
) -> Dict[str, Any]:
    """Concilia la suma de liberaciones contra el valor total declarado."""
    completion = calculate_release_completion(info, tolerance)
    return {
        "total_liberado": completion.total_liberated,
        "diferencia": completion.difference,
        "is_complete": completion.is_complete,
        "porcentaje": completion.completion_percent,
        "total_value": completion.total_value,
    }
