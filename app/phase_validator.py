"""
Validación cruzada del timeline de cinco fases.

Combina cuatro grupos de reglas: detalle por fase, dependencias entre fases,
coherencia lógica del conjunto y calidad de los datos de entrada. Ninguna
regla impide derivar la operación; solo los errores marcados como
``blocking`` hacen que ``is_valid`` sea falso.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .constants import ColumnNames, EstadoProceso, ProcessingThresholds
from .csv_splitter import RawRow
from .progress_calculator import calculate_payment_progress, calculate_release_completion
from .schemas import (
    OverallProgress,
    ParsedGeneralInfo,
    PhaseProgress,
    ValidationError,
    ValidationResult,
    ValidationWarning,
)
from .utils import contains_all, contains_any

logger = logging.getLogger(__name__)

# Columna crítica -> fase a la que se atribuye su ausencia (0 = general)
CRITICAL_FIELD_PHASES: Dict[str, int] = {
    ColumnNames.PROCESO: 1,
    ColumnNames.FIRMA_COTIZACION: 1,
    ColumnNames.CUOTA_OPERACIONAL: 2,
    ColumnNames.GIRO_PROVEEDOR: 3,
    ColumnNames.PROFORMA_FACTURA: 4,
    ColumnNames.EQUIPO_COMERCIAL: 0,
}


@dataclass(frozen=True)
class PhaseValidationContext:
    row: RawRow
    info: ParsedGeneralInfo
    progress: OverallProgress

    @property
    def phases(self) -> Sequence[PhaseProgress]:
        return self.progress.phase_details

    def field(self, column: str) -> str:
        return self.row.get(column, "") or ""


@dataclass
class _Findings:
    warnings: List[ValidationWarning] = field(default_factory=list)
    errors: List[ValidationError] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def warn(self, phase: int, type_: str, message: str, severity: str) -> None:
        self.warnings.append(ValidationWarning(phase=phase, type=type_, message=message, severity=severity))

    def error(self, phase: int, type_: str, message: str, blocking: bool) -> None:
        self.errors.append(ValidationError(phase=phase, type=type_, message=message, blocking=blocking))


class PhaseValidator:
    """Valida la coherencia de una operación a partir de su contexto de fases."""

    def __init__(
        self,
        release_tolerance: float = ProcessingThresholds.RELEASE_TOLERANCE,
        dependency_tolerance: int = ProcessingThresholds.VALIDATION_DEPENDENCY_TOLERANCE,
        order_tolerance: int = ProcessingThresholds.PHASE_ORDER_TOLERANCE,
    ):
        self.release_tolerance = release_tolerance
        self.dependency_tolerance = dependency_tolerance
        self.order_tolerance = order_tolerance
        self._phase_rules: Dict[int, Callable[[PhaseProgress, PhaseValidationContext, _Findings], None]] = {
            1: self._validate_phase1,
            2: self._validate_phase2,
            3: self._validate_phase3,
            4: self._validate_phase4,
            5: self._validate_phase5,
        }

    def validate(self, context: PhaseValidationContext) -> ValidationResult:
        findings = _Findings()

        for number in range(1, 6):
            phase = self._phase(context, number)
            if phase is None:
                findings.error(number, "missing_data", f"Fase {number} no encontrada en los datos", True)
                continue
            self._phase_rules[number](phase, context, findings)

        self._validate_dependencies(context, findings)
        self._validate_logical_coherence(context, findings)
        self._validate_data_quality(context, findings)

        result = ValidationResult(
            warnings=findings.warnings,
            errors=findings.errors,
            suggestions=findings.suggestions,
        )
        result.is_valid = not result.blocking_errors

        logger.debug(
            f"🔍 Validación: {'VÁLIDO' if result.is_valid else 'INVÁLIDO'} "
            f"({len(result.warnings)} advertencias, {len(result.errors)} errores)"
        )
        return result

    @staticmethod
    def _phase(context: PhaseValidationContext, number: int) -> Optional[PhaseProgress]:
        phases = context.phases
        return phases[number - 1] if len(phases) >= number else None

    # ------------------------------------------------------------------
    # Reglas por fase
    # ------------------------------------------------------------------
    def _validate_phase1(self, phase: PhaseProgress, context: PhaseValidationContext, out: _Findings) -> None:
        proceso = context.field(ColumnNames.PROCESO)
        firma = context.field(ColumnNames.FIRMA_COTIZACION)

        if not proceso.strip() and not firma.strip():
            out.error(1, "missing_data", "Faltan datos críticos: Proceso y Estado Firma Cotización", True)

        if phase.status is EstadoProceso.COMPLETADO:
            aprobado = contains_any(proceso, ["1. Aprobación de Cotización"])
            if not aprobado and not contains_any(firma, ["listo"]):
                out.warn(1, "inconsistency", "Fase marcada como COMPLETADA pero no cumple condiciones exactas", "high")
                out.suggestions.append(
                    "Verificar que el proceso contenga \"1. Aprobación de Cotización\" "
                    "o que el estado de firma sea \"Listo\""
                )

        if phase.progress == 100 and phase.status is not EstadoProceso.COMPLETADO:
            out.warn(1, "inconsistency", "Progreso 100% pero estado no es COMPLETADO", "medium")

        if proceso.strip() and not contains_any(proceso, ["aprobacion", "cotizacion"]):
            out.suggestions.append("El campo Proceso podría ser más específico para mejor seguimiento")

    def _validate_phase2(self, phase: PhaseProgress, context: PhaseValidationContext, out: _Findings) -> None:
        cuota = context.field(ColumnNames.CUOTA_OPERACIONAL)
        previous = context.phases[0]

        if phase.status is EstadoProceso.COMPLETADO and previous.status is not EstadoProceso.COMPLETADO:
            out.warn(2, "dependency", "Fase 2 completa pero Fase 1 no está completada", "high")

        if not cuota.strip():
            out.error(2, "missing_data", "Falta información del estado de pago de cuota operacional", False)

        if phase.status is EstadoProceso.COMPLETADO and not contains_any(cuota, ["listo"]):
            out.warn(2, "inconsistency", "Fase marcada como COMPLETADA pero cuota operacional no está \"Listo\"", "high")

        if phase.progress > previous.progress + 20 and previous.status is not EstadoProceso.COMPLETADO:
            out.warn(2, "inconsistency", "Progreso de Fase 2 excesivamente alto comparado con Fase 1", "medium")

    def _validate_phase3(self, phase: PhaseProgress, context: PhaseValidationContext, out: _Findings) -> None:
        giro = context.field(ColumnNames.GIRO_PROVEEDOR)
        giros = context.info.giros

        if not giros and phase.status is not EstadoProceso.PENDIENTE:
            out.warn(3, "data_quality", "No se encontraron giros pero la fase no está pendiente", "medium")

        if giros:
            payment = calculate_payment_progress(context.info)
            percent = payment.progress_percent
            if phase.status is EstadoProceso.COMPLETADO:
                if percent < 95:
                    out.warn(3, "inconsistency", f"Fase completa pero solo {percent}% pagado", "high")
                if not contains_any(giro, ["pago confirmado"]):
                    out.warn(3, "inconsistency", "Fase completa pero giro no confirmado", "high")
            if phase.progress > percent + 10:
                out.warn(3, "inconsistency", "Progreso reportado excede porcentaje de pagos efectivos", "medium")

        if giro.strip() and not contains_any(giro, ["confirmado"]) and phase.progress > 90:
            out.suggestions.append("Considerar confirmar el giro para completar la fase de pagos")

    def _validate_phase4(self, phase: PhaseProgress, context: PhaseValidationContext, out: _Findings) -> None:
        factura = context.field(ColumnNames.PROFORMA_FACTURA)
        previous = context.phases[2]

        if phase.status is EstadoProceso.COMPLETADO:
            if previous.status is not EstadoProceso.COMPLETADO:
                out.warn(4, "dependency", "Envío completo pero pagos no están completados", "high")
            if not contains_all(factura, ["listo", "factura final"]):
                out.warn(4, "inconsistency", "Fase completa pero factura final no está lista", "high")
            if not context.info.liberaciones:
                out.warn(4, "inconsistency", "Envío completo pero no hay liberaciones programadas", "medium")

        if not factura.strip() and phase.progress > 50:
            out.error(4, "missing_data", "Falta información crítica del estado de factura", False)

    def _validate_phase5(self, phase: PhaseProgress, context: PhaseValidationContext, out: _Findings) -> None:
        completion = calculate_release_completion(context.info, self.release_tolerance)
        previous = context.phases[3]

        if phase.status is EstadoProceso.COMPLETADO:
            if previous.status is not EstadoProceso.COMPLETADO:
                out.warn(5, "dependency", "Operación completa pero envío no está completado", "high")
            if completion.difference > self.release_tolerance:
                out.warn(
                    5, "inconsistency",
                    f"Diferencia entre valor total ({completion.total_value:g}) y liberado "
                    f"({completion.total_liberated:g}) excede tolerancia",
                    "high",
                )
            if not context.info.liberaciones:
                out.error(5, "logical_error", "Operación marcada como completa pero no hay liberaciones", True)

        if completion.total_value > 0:
            expected = min(completion.total_liberated / completion.total_value * 100, 100)
            if phase.progress > expected + 15:
                out.warn(5, "inconsistency", "Progreso reportado excede liberaciones efectivas", "medium")

        diferencia = completion.difference
        if completion.total_liberated > 0 and 0 < diferencia <= self.release_tolerance * 2:
            out.suggestions.append(
                f"Diferencia menor detectada: ${diferencia:,.0f}. Verificar liberaciones finales."
            )

    # ------------------------------------------------------------------
    # Reglas entre fases
    # ------------------------------------------------------------------
    def _validate_dependencies(self, context: PhaseValidationContext, out: _Findings) -> None:
        phases = context.phases
        for i in range(1, len(phases)):
            current, previous = phases[i], phases[i - 1]
            previous_done = previous.status is EstadoProceso.COMPLETADO

            if current.status is EstadoProceso.COMPLETADO and not previous_done:
                out.warn(current.phase, "dependency",
                         f"Fase {current.phase} completa pero Fase {previous.phase} no está completada", "high")

            if not previous_done and current.progress > previous.progress + self.dependency_tolerance:
                out.warn(
                    current.phase, "dependency",
                    f"Progreso de Fase {current.phase} ({current.progress}%) excede significativamente "
                    f"Fase {previous.phase} ({previous.progress}%)",
                    "medium",
                )

            if not current.dependencies_satisfied and current.status is not EstadoProceso.PENDIENTE:
                out.suggestions.append(f"Revisar dependencias de Fase {current.phase}: {current.name}")

    def _validate_logical_coherence(self, context: PhaseValidationContext, out: _Findings) -> None:
        phases = context.phases
        total = context.progress.total_progress
        completed = sum(1 for p in phases if p.status is EstadoProceso.COMPLETADO)
        expected_min = completed * ProcessingThresholds.MIN_PROGRESS_PER_COMPLETED_PHASE

        if total < expected_min:
            out.warn(0, "inconsistency",
                     f"Progreso general ({total}%) parece bajo para {completed} fases completadas", "medium")

        highest = 0
        for phase in phases:
            if phase.progress < highest - self.order_tolerance:
                out.warn(phase.phase, "inconsistency",
                         f"Progreso de Fase {phase.phase} es menor que la fase anterior", "low")
            highest = max(highest, phase.progress)

        completed_after_pending = any(
            phase.status is EstadoProceso.COMPLETADO
            and any(p.status is EstadoProceso.PENDIENTE for p in phases[:index])
            for index, phase in enumerate(phases)
        )
        if completed_after_pending:
            out.warn(0, "inconsistency", "Hay fases completadas con fases anteriores pendientes", "high")

    def _validate_data_quality(self, context: PhaseValidationContext, out: _Findings) -> None:
        for column, phase in CRITICAL_FIELD_PHASES.items():
            if not context.field(column).strip():
                out.warn(phase, "data_quality", f"Campo crítico faltante: {column}", "medium")

        info = context.info
        if info.valor_total_compra <= 0:
            out.error(0, "missing_data", "Valor total de compra no encontrado o inválido", False)
        if not info.giros:
            out.warn(3, "data_quality", "No se encontraron giros en la información parseada", "low")
        if not info.liberaciones:
            out.warn(5, "data_quality", "No se encontraron liberaciones en la información parseada", "low")
        if info.cliente and len(info.cliente) < 5:
            out.suggestions.append("Información de cliente parece incompleta, verificar datos de entrada")


def validate_complete_timeline(
    row: RawRow,
    info: ParsedGeneralInfo,
    progress: OverallProgress,
    validator: Optional[PhaseValidator] = None,
) -> ValidationResult:
    """Atajo funcional sobre ``PhaseValidator.validate``."""
    context = PhaseValidationContext(row=row, info=info, progress=progress)
    return (validator or PhaseValidator()).validate(context)


def generate_validation_report(validation: ValidationResult) -> str:
    """Reporte de texto legible de un ValidationResult."""
    lines = ["", "🔍 REPORTE DE VALIDACIÓN DEL TIMELINE", "=" * 48, ""]
    lines.append(f"✅ Estado General: {'VÁLIDO' if validation.is_valid else 'REQUIERE ATENCIÓN'}")
    lines.append(f"📊 Resumen: {len(validation.errors)} errores, {len(validation.warnings)} advertencias")
    lines.append("")

    if validation.errors:
        lines.append("❌ ERRORES CRÍTICOS:")
        for error in validation.errors:
            lines.append(f"   [Fase {error.phase}] {error.message}")
            lines.append(f"   Tipo: {error.type}, Bloquea: {'Sí' if error.blocking else 'No'}")
            lines.append("")

    if validation.warnings:
        lines.append("⚠️ ADVERTENCIAS:")
        for warning in validation.warnings:
            lines.append(f"   [Fase {warning.phase}] {warning.message}")
            lines.append(f"   Tipo: {warning.type}, Severidad: {warning.severity}")
            lines.append("")

    if validation.suggestions:
        lines.append("💡 SUGERENCIAS DE MEJORA:")
        lines.extend(f"   • {s}" for s in validation.suggestions)
        lines.append("")

    lines.append("=" * 48)
    return "\n".join(lines) + "\n"
