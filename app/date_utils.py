"""
Síntesis de fechas para la línea de tiempo y vencimientos de giros/liberaciones.

El export no trae fechas por fase, así que se generan fechas plausibles a
partir del progreso: cada fase tiene un retraso base respecto de la fase de
la que depende, una ventana de variación y una marca de si solo cuentan días
hábiles.

La aleatoriedad (fecha real de fases completadas) viene de un
``random.Random`` inyectado; con una semilla fija y un ``now`` fijo la
salida es exactamente reproducible.
"""

import logging
import math
import random
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .constants import EstadoProceso
from .schemas import DateRange, Giro, Liberacion, PhaseProgress
from .utils import round_half_up

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

DEFAULT_ALERT_WINDOW_DAYS = 7
DEFAULT_RELEASE_BUFFER_DAYS = 15
DEFAULT_PAYMENT_TERM_DAYS = 30

PAYMENT_DAYS_PATTERN = re.compile(r"(\d+)\s*d[ií]as?", re.IGNORECASE)

# Festivos de fecha fija (mes, día); solo los usa adjust_to_working_day
FIXED_HOLIDAYS: Tuple[Tuple[int, int], ...] = (
    (1, 1),    # Año Nuevo
    (5, 1),    # Día del Trabajo
    (7, 20),   # Independencia
    (8, 7),    # Batalla de Boyacá
    (12, 8),   # Inmaculada Concepción
    (12, 25),  # Navidad
)


@dataclass(frozen=True)
class PhaseDateConfig:
    name: str
    base_delay_days: int
    variation_days: int
    business_days_only: bool
    dependency: Optional[int]  # índice 0-based de la fase previa


PHASE_DATE_CONFIGS: Tuple[PhaseDateConfig, ...] = (
    PhaseDateConfig("Solicitud Enviada", 0, 2, True, None),
    PhaseDateConfig("Documentos de Operación y Pago Cuota Operacional", 5, 3, True, 0),
    PhaseDateConfig("Procesamiento de Pago", 12, 5, True, 1),
    PhaseDateConfig("Envío y Logística", 8, 4, True, 2),
    PhaseDateConfig("Operación Completada", 15, 7, False, 3),
)


# ============================================================================
# ARITMÉTICA DE DÍAS HÁBILES
# ============================================================================
def is_business_day(value: DateLike) -> bool:
    return value.weekday() < 5


def is_holiday(value: DateLike) -> bool:
    return (value.month, value.day) in FIXED_HOLIDAYS


def add_business_days(value: DateLike, days: int, business_days_only: bool = True) -> DateLike:
    """
    Suma (o resta, con ``days`` negativo) días a una fecha.

    Con ``business_days_only`` se saltan sábados y domingos; los festivos no
    se consideran aquí.
    """
    if not business_days_only:
        return value + timedelta(days=days)

    step = timedelta(days=1 if days >= 0 else -1)
    remaining = abs(days)
    result = value
    while remaining > 0:
        result = result + step
        if is_business_day(result):
            remaining -= 1
    return result


def subtract_business_days(value: DateLike, days: int, business_days_only: bool = True) -> DateLike:
    return add_business_days(value, -days, business_days_only)


def adjust_to_business_day(value: DateLike, forward: bool = True) -> DateLike:
    step = timedelta(days=1 if forward else -1)
    result = value
    while not is_business_day(result):
        result = result + step
    return result


def adjust_to_working_day(value: DateLike, forward: bool = True) -> DateLike:
    """Mueve la fecha al día laborable más cercano evitando fines de semana y festivos."""
    step = timedelta(days=1 if forward else -1)
    result = value
    while not is_business_day(result) or is_holiday(result):
        result = result + step
    return result


def business_days_between(start: DateLike, end: DateLike) -> int:
    """Cuenta días hábiles en el intervalo cerrado [start, end]."""
    current = start.date() if isinstance(start, datetime) else start
    last = end.date() if isinstance(end, datetime) else end
    count = 0
    while current <= last:
        if is_business_day(current):
            count += 1
        current += timedelta(days=1)
    return count


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        logger.warning(f"⚠️ Fecha inválida: '{value}'")
        return None


def payment_term_days(terminos_pago: Optional[str]) -> int:
    """Días de plazo según los términos de pago ("45 días", "60", "90"...)."""
    text = terminos_pago or ""
    match = PAYMENT_DAYS_PATTERN.search(text)
    if match:
        return int(match.group(1))
    if "60" in text:
        return 60
    if "90" in text:
        return 90
    return DEFAULT_PAYMENT_TERM_DAYS


# ============================================================================
# VENCIMIENTOS
# ============================================================================
def is_vencimiento_proximo(
    fecha_vencimiento: Optional[DateLike],
    today: DateLike,
    dias_alerta: int = DEFAULT_ALERT_WINDOW_DAYS,
) -> bool:
    if fecha_vencimiento is None:
        return False
    diferencia = (_as_date(fecha_vencimiento) - _as_date(today)).days
    return 0 <= diferencia <= dias_alerta


def is_vencimiento_vencido(fecha_vencimiento: Optional[DateLike], today: DateLike) -> bool:
    if fecha_vencimiento is None:
        return False
    return _as_date(fecha_vencimiento) < _as_date(today)


# ============================================================================
# SINTETIZADOR
# ============================================================================
class DateSynthesizer:
    """
    Genera rangos de fechas por fase y completa vencimientos faltantes.

    Args:
        now: Instante de referencia ("ahora"). Se fija al construir para que
            todo un ciclo de procesamiento use la misma referencia.
        rng: Fuente aleatoria. Si no se da, se crea una con ``seed``.
        seed: Semilla para la fuente aleatoria por defecto.
        release_buffer_days: Días hábiles de margen para liberaciones.
    """

    def __init__(
        self,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        release_buffer_days: int = DEFAULT_RELEASE_BUFFER_DAYS,
        configs: Sequence[PhaseDateConfig] = PHASE_DATE_CONFIGS,
    ):
        self.now = now or datetime.now()
        self.rng = rng or random.Random(seed)
        self.release_buffer_days = release_buffer_days
        self.configs = tuple(configs)

    @property
    def today(self) -> date:
        return self.now.date()

    # ------------------------------------------------------------------
    # Fechas por fase
    # ------------------------------------------------------------------
    def generate_realistic_dates(
        self,
        phases: Sequence[PhaseProgress],
        base_date: Optional[datetime] = None,
    ) -> List[DateRange]:
        """
        Genera un DateRange por fase respetando el orden de dependencias.

        Args:
            phases: Las cinco fases calculadas.
            base_date: Fecha de partida; por defecto ``now``.
        """
        current = adjust_to_business_day(base_date or self.now, forward=True)
        ranges: List[DateRange] = []

        for index, phase in enumerate(phases):
            if index >= len(self.configs):
                break
            config = self.configs[index]
            date_range = self._generate_phase_date(phase, config, current, ranges)
            ranges.append(date_range)

            if phase.status is EstadoProceso.COMPLETADO and date_range.actual is not None:
                current = date_range.actual
            else:
                current = date_range.estimated

        logger.debug(f"📅 Fechas generadas para {len(ranges)} fases")
        return ranges

    def _generate_phase_date(
        self,
        phase: PhaseProgress,
        config: PhaseDateConfig,
        base: datetime,
        previous: List[DateRange],
    ) -> DateRange:
        start = self._phase_start(config, base, previous)
        estimated = self._estimated_date(start, config, phase)
        end = add_business_days(
            estimated, math.ceil(config.variation_days * 1.5), config.business_days_only
        )
        actual = self._actual_date(phase, estimated, config)
        return DateRange(phase=phase.phase, start=start, end=end, estimated=estimated, actual=actual)

    @staticmethod
    def _phase_start(config: PhaseDateConfig, base: datetime, previous: List[DateRange]) -> datetime:
        if config.dependency is None or config.dependency >= len(previous):
            return base
        dependency = previous[config.dependency]
        completion = dependency.actual or dependency.estimated
        return max(base, completion)

    def _estimated_date(self, start: datetime, config: PhaseDateConfig, phase: PhaseProgress) -> datetime:
        estimated = add_business_days(start, config.base_delay_days, config.business_days_only)

        # Más progreso, menos variación pendiente
        variation = round_half_up(config.variation_days * (1 - phase.progress / 100))
        if variation > 0:
            estimated = add_business_days(estimated, variation, config.business_days_only)

        if phase.status is EstadoProceso.COMPLETADO and estimated > self.now:
            estimated = adjust_to_business_day(self.now, forward=False)
        return estimated

    def _actual_date(
        self, phase: PhaseProgress, estimated: datetime, config: PhaseDateConfig
    ) -> Optional[datetime]:
        actual: Optional[datetime] = None
        if phase.status is EstadoProceso.COMPLETADO:
            days_back = self.rng.randint(1, max(1, config.variation_days))
            actual = subtract_business_days(estimated, days_back, config.business_days_only)
        elif phase.status is EstadoProceso.EN_PROCESO and phase.progress > 50:
            factor = (phase.progress - 50) / 50
            days_into_phase = math.floor(config.base_delay_days * factor)
            actual = add_business_days(estimated, -days_into_phase, config.business_days_only)

        if actual is not None and actual > self.now:
            actual = adjust_to_business_day(self.now, forward=False)
        return actual

    def calculate_phase_duration(self, phase: PhaseProgress) -> Dict[str, Optional[int]]:
        """Duración estimada (y real, si aplica) de una fase en días."""
        config = self.configs[phase.phase - 1]
        base = config.base_delay_days
        factor = phase.progress / 100
        estimated_days = math.ceil(base * (1 - factor * 0.3))

        actual_days: Optional[int] = None
        if phase.status is EstadoProceso.COMPLETADO:
            actual_days = max(1, base - self.rng.randrange(max(1, config.variation_days)))
        elif phase.status is EstadoProceso.EN_PROCESO and phase.progress > 70:
            actual_days = math.ceil(base * factor)

        return {"estimated_days": estimated_days, "actual_days": actual_days}

    # ------------------------------------------------------------------
    # Vencimientos
    # ------------------------------------------------------------------
    def giro_vencimiento(self, giro: Giro, terminos_pago: str = "", base: Optional[DateLike] = None) -> date:
        """Vencimiento del giro: el existente o base + plazo de pago en días hábiles."""
        if giro.fecha_vencimiento is not None:
            return giro.fecha_vencimiento
        start = _as_date(base or self.now)
        return add_business_days(start, payment_term_days(terminos_pago), True)

    def liberacion_vencimiento(self, liberacion: Liberacion) -> Optional[date]:
        """Vencimiento de la liberación: el existente o su fecha + margen hábil."""
        if liberacion.fecha_vencimiento is not None:
            return liberacion.fecha_vencimiento
        fecha = parse_iso_date(liberacion.fecha)
        if fecha is None:
            return None
        return add_business_days(fecha, self.release_buffer_days, True)

    def fill_missing_vencimientos(
        self,
        giros: Sequence[Giro],
        liberaciones: Sequence[Liberacion],
        terminos_pago: str = "",
    ) -> Tuple[Tuple[Giro, ...], Tuple[Liberacion, ...]]:
        """Devuelve copias de giros y liberaciones con el vencimiento completado."""
        giros_out = tuple(
            g if g.fecha_vencimiento is not None
            else replace(g, fecha_vencimiento=self.giro_vencimiento(g, terminos_pago))
            for g in giros
        )
        liberaciones_out = tuple(
            lib if lib.fecha_vencimiento is not None
            else replace(lib, fecha_vencimiento=self.liberacion_vencimiento(lib))
            for lib in liberaciones
        )
        return giros_out, liberaciones_out


# ============================================================================
# REPORTES
# ============================================================================
_STATUS_ICONS = {
    EstadoProceso.COMPLETADO: "✅",
    EstadoProceso.EN_PROCESO: "🔄",
    EstadoProceso.RECHAZADO: "❌",
}


def generate_date_report(phases: Sequence[PhaseProgress], ranges: Sequence[DateRange]) -> str:
    lines = ["", "📅 REPORTE DE FECHAS DEL TIMELINE", "=" * 45, ""]

    for phase, date_range in zip(phases, ranges):
        icon = _STATUS_ICONS.get(phase.status, "⏳")
        lines.append(f"{icon} FASE {phase.phase}: {phase.name}")
        lines.append(f"   Estado: {phase.status.value} ({phase.progress}%)")
        lines.append(f"   Inicio: {_as_date(date_range.start).isoformat()}")
        lines.append(f"   Estimado: {_as_date(date_range.estimated).isoformat()}")
        if date_range.actual is not None:
            lines.append(f"   Actual: {_as_date(date_range.actual).isoformat()}")
        lines.append(f"   Límite: {_as_date(date_range.end).isoformat()}")
        if date_range.actual is not None:
            diff = (date_range.actual - date_range.estimated).days
            lines.append(f"   Variación: {'+' if diff > 0 else ''}{diff} días")
        lines.append("")

    lines.append("=" * 45)
    return "\n".join(lines) + "\n"
