"""
Calculador de progreso de las cinco fases de una operación.

Cada fase tiene una función de reglas escalonadas que inspecciona uno o más
campos de estado de la fila (y, en las fases 3 y 5, los giros y las
liberaciones): una condición exacta de "terminado" da 100, varias
subcadenas intermedias dan porcentajes fijos observados en la operación
real, y la ausencia de señal da 0/pendiente.

Después del cálculo independiente se valida la coherencia entre fases. Esa
validación solo desactiva la bandera ``dependencies_satisfied``; nunca
modifica el progreso ni el estado de la fase.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import numpy as np

from .constants import (
    PHASE_NAMES,
    PHASE_WEIGHTS,
    ColumnNames,
    EstadoProceso,
    ProcessingThresholds,
)
from .csv_splitter import RawRow
from .schemas import OverallProgress, ParsedGeneralInfo, PhaseProgress
from .utils import contains_all, contains_any, round_half_up

logger = logging.getLogger(__name__)

REJECTION_KEYWORDS = ("rechazad", "cancelad")


@dataclass(frozen=True)
class PaymentProgress:
    """Relación entre la suma de giros y el valor total declarado."""

    total_amount: float
    paid_amount: float
    progress_percent: int

    @property
    def pending_amount(self) -> float:
        return self.total_amount - self.paid_amount


@dataclass(frozen=True)
class ReleaseCompletion:
    """Conciliación de liberaciones contra el valor total declarado."""

    total_value: float
    total_liberated: float
    completion_percent: int
    difference: float
    is_complete: bool


def _phase(
    phase: int,
    progress: int,
    status: EstadoProceso,
    reason: str,
    dependencies: bool = True,
) -> PhaseProgress:
    return PhaseProgress(
        phase=phase,
        name=PHASE_NAMES[phase - 1],
        progress=int(max(0, min(100, progress))),
        status=status,
        reason=reason,
        dependencies_satisfied=dependencies,
    )


def _rejected(phase: int, value: str) -> PhaseProgress:
    return _phase(phase, 0, EstadoProceso.RECHAZADO, f"Estado rechazado: \"{value}\"")


# ============================================================================
# CÁLCULOS FINANCIEROS AUXILIARES
# ============================================================================
def calculate_payment_progress(info: ParsedGeneralInfo) -> PaymentProgress:
    total = float(info.valor_total_compra or 0.0)
    paid = float(sum(g.valor_solicitado for g in info.giros))
    percent = round_half_up(paid / total * 100) if total > 0 else 0
    return PaymentProgress(total_amount=total, paid_amount=paid, progress_percent=percent)


def calculate_release_completion(
    info: ParsedGeneralInfo,
    tolerance: float = ProcessingThresholds.RELEASE_TOLERANCE,
) -> ReleaseCompletion:
    total = float(info.valor_total_compra or 0.0)
    liberated = float(sum(lib.capital for lib in info.liberaciones))
    difference = abs(total - liberated)
    percent = round_half_up(liberated / total * 100) if total > 0 else 0
    return ReleaseCompletion(
        total_value=total,
        total_liberated=liberated,
        completion_percent=percent,
        difference=difference,
        is_complete=difference <= tolerance and liberated > 0,
    )


# ============================================================================
# REGLAS POR FASE
# ============================================================================
def calculate_phase1_progress(row: RawRow) -> PhaseProgress:
    """Fase 1: Solicitud Enviada."""
    proceso = row.get(ColumnNames.PROCESO, "") or ""
    firma = row.get(ColumnNames.FIRMA_COTIZACION, "") or ""

    proceso_aprobado = contains_any(proceso, ["1. Aprobación de Cotización"])
    if proceso_aprobado or contains_any(firma, ["listo"]):
        reason = (
            f"Proceso aprobado: \"{proceso}\"" if proceso_aprobado
            else f"Firma completada: \"{firma}\""
        )
        return _phase(1, 100, EstadoProceso.COMPLETADO, reason)

    if contains_any(firma, REJECTION_KEYWORDS):
        return _rejected(1, firma)

    if contains_any(proceso, ["cotizacion", "revision"]) or contains_any(firma, ["proceso"]):
        return _phase(1, 65, EstadoProceso.EN_PROCESO, "Cotización en proceso de aprobación")

    if proceso.strip() or firma.strip():
        return _phase(1, 30, EstadoProceso.EN_PROCESO, "Información parcial disponible")

    return _phase(1, 0, EstadoProceso.PENDIENTE, "Sin información de cotización")


def calculate_phase2_progress(row: RawRow) -> PhaseProgress:
    """Fase 2: Documentos de Operación y Pago Cuota Operacional."""
    cuota = row.get(ColumnNames.CUOTA_OPERACIONAL, "") or ""

    if contains_any(cuota, ["listo"]):
        return _phase(2, 100, EstadoProceso.COMPLETADO, f"Cuota operacional pagada: \"{cuota}\"")
    if contains_any(cuota, REJECTION_KEYWORDS):
        return _rejected(2, cuota)
    if contains_any(cuota, ["confirmado", "procesado"]):
        return _phase(2, 85, EstadoProceso.EN_PROCESO, "Cuota en confirmación final")
    if contains_any(cuota, ["proceso", "revision"]):
        return _phase(2, 60, EstadoProceso.EN_PROCESO, "Cuota en proceso de pago")
    if contains_any(cuota, ["pendiente", "documentos"]):
        return _phase(2, 35, EstadoProceso.EN_PROCESO, "Documentos en preparación")
    if cuota.strip():
        return _phase(2, 15, EstadoProceso.EN_PROCESO, f"Estado: \"{cuota}\"")

    return _phase(2, 0, EstadoProceso.PENDIENTE, "Sin información de cuota operacional", False)


def calculate_phase3_progress(row: RawRow, info: ParsedGeneralInfo) -> PhaseProgress:
    """
    Fase 3: Procesamiento de Pago.

    El porcentaje de pagos (suma de giros / total) manda; el estado del giro
    solo puede subirlo, con techo de 90 hasta ver la confirmación de pago.
    Sin giros registrados la fase queda en 0/pendiente.
    """
    giro = row.get(ColumnNames.GIRO_PROVEEDOR, "") or ""

    if not info.giros:
        return _phase(3, 0, EstadoProceso.PENDIENTE, "Sin giros registrados", False)

    if contains_any(giro, REJECTION_KEYWORDS):
        return _rejected(3, giro)

    payment = calculate_payment_progress(info)
    percent = payment.progress_percent
    confirmado = contains_all(giro, ["listo", "pago confirmado"])

    if percent >= 100 and confirmado:
        return _phase(3, 100, EstadoProceso.COMPLETADO, f"Pagos completos ({percent}%) y confirmados")

    if percent >= 100:
        return _phase(3, 95, EstadoProceso.EN_PROCESO, "Pagos completos, esperando confirmación final")

    if percent > 0:
        adjusted = min(percent * 0.9, ProcessingThresholds.PAYMENT_CEILING)
        if contains_any(giro, ["proceso"]):
            adjusted = max(adjusted, 50)
        elif contains_any(giro, ["listo"]):
            adjusted = max(adjusted, 75)
        return _phase(
            3,
            round_half_up(adjusted),
            EstadoProceso.EN_PROCESO,
            f"Progreso de pagos: {percent}% ({payment.paid_amount:g}/{payment.total_amount:g})",
        )

    # Giros sin valor total de referencia: solo queda la señal del estado
    if contains_any(giro, ["preparacion", "proceso"]):
        return _phase(3, 25, EstadoProceso.EN_PROCESO, "Preparando procesamiento de pagos")
    if giro.strip():
        return _phase(3, 10, EstadoProceso.EN_PROCESO, f"Estado giro: \"{giro}\"")

    return _phase(3, 0, EstadoProceso.PENDIENTE, "Sin información de pagos", False)


def calculate_phase4_progress(row: RawRow, info: ParsedGeneralInfo) -> PhaseProgress:
    """Fase 4: Envío y Logística."""
    factura = row.get(ColumnNames.PROFORMA_FACTURA, "") or ""
    liberaciones = len(info.liberaciones)
    factura_final = contains_all(factura, ["listo", "factura final"])

    if factura_final and liberaciones:
        return _phase(
            4, 100, EstadoProceso.COMPLETADO,
            f"Factura final lista con {liberaciones} liberación(es) programada(s)",
        )
    if factura_final:
        return _phase(4, 85, EstadoProceso.EN_PROCESO, "Factura final lista, programando liberaciones")
    if contains_any(factura, REJECTION_KEYWORDS):
        return _rejected(4, factura)
    if contains_any(factura, ["listo"]) and not contains_any(factura, ["final"]):
        return _phase(4, 70, EstadoProceso.EN_PROCESO, "Proforma lista, preparando factura final")
    if contains_any(factura, ["proceso", "proforma"]):
        return _phase(4, 45, EstadoProceso.EN_PROCESO, "Procesando documentación de envío")
    if contains_any(factura, ["preparacion", "revision"]):
        return _phase(4, 25, EstadoProceso.EN_PROCESO, "Preparando documentación final")
    if factura.strip():
        return _phase(4, 10, EstadoProceso.EN_PROCESO, f"Estado factura: \"{factura}\"")

    return _phase(4, 0, EstadoProceso.PENDIENTE, "Sin información de facturación", False)


def calculate_phase5_progress(
    info: ParsedGeneralInfo,
    tolerance: float = ProcessingThresholds.RELEASE_TOLERANCE,
) -> PhaseProgress:
    """
    Fase 5: Operación Completada.

    Completa cuando la suma liberada está dentro de la tolerancia del valor
    total (y es mayor que cero), aunque el porcentaje no sea exactamente 100.
    """
    completion = calculate_release_completion(info, tolerance)
    percent = completion.completion_percent
    liberated = completion.total_liberated

    if completion.is_complete:
        return _phase(5, 100, EstadoProceso.COMPLETADO, f"Operación completada: ${liberated:,.0f} liberado")
    if percent >= 90:
        return _phase(5, 95, EstadoProceso.EN_PROCESO, f"Liberaciones casi completas: {percent}%")
    if percent >= 50:
        return _phase(
            5, round_half_up(percent * 0.8), EstadoProceso.EN_PROCESO,
            f"Liberaciones en proceso: {percent}%",
        )
    if liberated > 0:
        return _phase(
            5, max(round_half_up(percent * 0.6), 15), EstadoProceso.EN_PROCESO,
            f"Liberaciones iniciadas: ${liberated:,.0f}",
        )

    return _phase(5, 0, EstadoProceso.PENDIENTE, "Sin liberaciones programadas", False)


# ============================================================================
# DEPENDENCIAS Y AGREGADO
# ============================================================================
def validate_phase_dependencies(
    phases: List[PhaseProgress],
    tolerance: int = ProcessingThresholds.DEPENDENCY_TOLERANCE,
) -> Tuple[List[PhaseProgress], List[str]]:
    """
    Marca incoherencias entre fases consecutivas.

    Una fase completada con la anterior sin completar, o con un progreso que
    supera al de la anterior en más de ``tolerance`` puntos, queda con
    ``dependencies_satisfied=False``. Progreso y estado no se tocan.

    Returns:
        (fases actualizadas, descripciones de las incoherencias)
    """
    updated = list(phases)
    issues: List[str] = []

    for i in range(1, len(updated)):
        current = updated[i]
        previous = updated[i - 1]
        if previous.status is EstadoProceso.COMPLETADO:
            continue

        if current.status is EstadoProceso.COMPLETADO:
            issues.append(
                f"Fase {current.phase} completada pero fase {previous.phase} no está completada"
            )
            updated[i] = replace(current, dependencies_satisfied=False)
        elif current.progress > previous.progress + tolerance:
            issues.append(
                f"Fase {current.phase} ({current.progress}%) supera a fase "
                f"{previous.phase} ({previous.progress}%) en más de {tolerance} puntos"
            )
            updated[i] = replace(current, dependencies_satisfied=False)

    for issue in issues:
        logger.debug(f"Dependencia: {issue}")
    return updated, issues


def calculate_weighted_progress(phases: List[PhaseProgress]) -> int:
    """Suma ponderada 15/20/25/25/15 de los porcentajes de fase."""
    progress = np.array([p.progress for p in phases], dtype=float)
    weights = np.array(PHASE_WEIGHTS[: len(phases)], dtype=float)
    return round_half_up(float(np.dot(progress, weights)) / 100.0)


def determine_current_phase(phases: List[PhaseProgress]) -> Tuple[Optional[int], Optional[int]]:
    current = next((p.phase for p in phases if p.status is EstadoProceso.EN_PROCESO), None)
    nxt = next((p.phase for p in phases if p.status is EstadoProceso.PENDIENTE), None)
    return current, nxt


def calculate_precise_progress(
    row: RawRow,
    info: ParsedGeneralInfo,
    release_tolerance: float = ProcessingThresholds.RELEASE_TOLERANCE,
) -> OverallProgress:
    """
    Calcula el progreso de las cinco fases y el agregado ponderado.

    Args:
        row: Fila cruda del export.
        info: Información general extraída de la fila.
        release_tolerance: Tolerancia de conciliación de liberaciones.

    Returns:
        OverallProgress con el detalle de cada fase.
    """
    phases = [
        calculate_phase1_progress(row),
        calculate_phase2_progress(row),
        calculate_phase3_progress(row, info),
        calculate_phase4_progress(row, info),
        calculate_phase5_progress(info, release_tolerance),
    ]
    phases, _ = validate_phase_dependencies(phases)

    total = calculate_weighted_progress(phases)
    current, nxt = determine_current_phase(phases)
    completed = sum(1 for p in phases if p.status is EstadoProceso.COMPLETADO)

    logger.debug(f"📊 Progreso total: {total}%, fases completadas: {completed}/5")
    return OverallProgress(
        total_progress=total,
        completed_phases=completed,
        current_phase=current,
        next_phase=nxt,
        phase_details=tuple(phases),
    )
