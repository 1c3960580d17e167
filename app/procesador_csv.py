import hashlib
import logging
import math
import random
import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .constants import (
    EXTRA_COST_RATES,
    ColumnNames,
    CountryProfile,
    EstadoProceso,
    ProcessingThresholds,
    detect_country_profile,
)
from .csv_splitter import (
    CSVSplitter,
    ParserError,
    RawRow,
    SourceUnavailableError,
    SplitResult,
    read_source_text,
)
from .date_utils import (
    DEFAULT_ALERT_WINDOW_DAYS,
    DEFAULT_RELEASE_BUFFER_DAYS,
    DateSynthesizer,
    generate_date_report,
    is_vencimiento_proximo,
    is_vencimiento_vencido,
)
from .info_parser import extract_field, extract_general_info, extract_value_from_text
from .nit_utils import extract_client_identity
from .phase_validator import PhaseValidator, PhaseValidationContext, generate_validation_report
from .progress_calculator import calculate_precise_progress, calculate_release_completion
from .schemas import (
    Alerta,
    Extracostos,
    OperationDetail,
    TimelineEvent,
)
from .state_mapper import map_states

logger = logging.getLogger(__name__)

SIN_OBSERVACIONES = "Sin observaciones específicas"
SIN_ASIGNAR = "Sin asignar"
RUTA_NO_ESPECIFICADA = "Ruta no especificada"
INCOTERMS_FALLBACK = "FOB / CIF"

COMPANY_SUFFIX_PATTERN = re.compile(r"\b(?:S\.?A\.?S?|LTDA)\b\.?", re.IGNORECASE)


# ============================================================================
# PIPELINE POR FILA
# ============================================================================
class ProcessingStep(ABC):
    @abstractmethod
    def execute(self, context: dict) -> dict:
        pass


class ProcessingPipeline:
    """Ejecuta pasos en orden; un paso puede cortar la cadena con ``context["skip"]``."""

    def __init__(self, steps: List[ProcessingStep]):
        self.steps = steps

    def run(self, initial_context: dict) -> dict:
        context = initial_context
        for step in self.steps:
            context = step.execute(context)
            if context.get("skip"):
                break
        return context


class ExtractInfoStep(ProcessingStep):
    """Extrae la información general y la identidad del cliente."""

    def execute(self, context: dict) -> dict:
        row: RawRow = context["row"]
        profile: CountryProfile = context["profile"]
        synthesizer: DateSynthesizer = context["synthesizer"]

        info_text = row.get(ColumnNames.INFO_GENERAL, "") or ""
        extraction = extract_general_info(info_text, synthesizer.today)
        identity = extract_client_identity(row.get(ColumnNames.DOCU_CLIENTE, ""))
        info = extraction.info

        if info.valor_total_compra <= 0:
            fallback = identity.valor_operacion or extract_value_from_text(info_text)
            if fallback and fallback > 0:
                info = replace(info, valor_total_compra=fallback)
                context["warnings"].append(f"Valor total inferido: {fallback:g}")

        if not info.pais_importador:
            info = replace(info, pais_importador=profile.default_importer)

        context["info_text"] = info_text
        context["info"] = info
        context["identity"] = identity
        context["warnings"].extend(
            f"{issue.field}: {issue.error}" for issue in extraction.errors + extraction.warnings
        )
        return context


class ResolveClientStep(ProcessingStep):
    """Resuelve el nombre del cliente; sin cliente la fila no es derivable."""

    def execute(self, context: dict) -> dict:
        row: RawRow = context["row"]
        cliente = (
            context["identity"].cliente
            or context["info"].cliente
            or (row.get(ColumnNames.NOMBRE, "") or "").strip()
        )
        if not cliente:
            logger.warning(f"⚠️ Fila {context['row_index'] + 1} sin cliente identificable, se omite")
            context["skip"] = True
            return context
        context["cliente"] = cliente
        return context


class ProgressStep(ProcessingStep):
    def __init__(self, release_tolerance: float):
        self.release_tolerance = release_tolerance

    def execute(self, context: dict) -> dict:
        context["progress"] = calculate_precise_progress(
            context["row"], context["info"], self.release_tolerance
        )
        context["estados"] = map_states(context["row"], context["profile"])
        return context


class DatesStep(ProcessingStep):
    """Sintetiza fechas por fase y completa vencimientos de giros/liberaciones."""

    def execute(self, context: dict) -> dict:
        synthesizer: DateSynthesizer = context["synthesizer"]
        info = context["info"]
        context["date_ranges"] = synthesizer.generate_realistic_dates(context["progress"].phase_details)
        giros, liberaciones = synthesizer.fill_missing_vencimientos(
            info.giros, info.liberaciones, info.terminos_pago
        )
        context["info"] = replace(info, giros=giros, liberaciones=liberaciones)
        return context


class ValidationStep(ProcessingStep):
    def __init__(self, validator: PhaseValidator):
        self.validator = validator

    def execute(self, context: dict) -> dict:
        validation_context = PhaseValidationContext(
            row=context["row"], info=context["info"], progress=context["progress"]
        )
        context["validation"] = self.validator.validate(validation_context)
        return context


class AlertsStep(ProcessingStep):
    """Genera alertas de progreso, vencimientos y conciliación."""

    def __init__(self, alert_window_days: int, release_tolerance: float):
        self.alert_window_days = alert_window_days
        self.release_tolerance = release_tolerance

    def execute(self, context: dict) -> dict:
        synthesizer: DateSynthesizer = context["synthesizer"]
        now = synthesizer.now
        today = synthesizer.today
        info = context["info"]
        alertas: List[Alerta] = []

        if context["progress"].total_progress < 25:
            alertas.append(Alerta("info", "Operación en etapa inicial", now))
        if context["estados"].cuota_operacional is EstadoProceso.PENDIENTE:
            alertas.append(Alerta("warning", "Cuota operacional pendiente de pago", now))

        for giro in info.giros:
            label = giro.numero_giro or f"${giro.valor_solicitado:,.0f}"
            if is_vencimiento_vencido(giro.fecha_vencimiento, today):
                alertas.append(Alerta("error", f"Giro {label} vencido desde {giro.fecha_vencimiento}", now))
            elif is_vencimiento_proximo(giro.fecha_vencimiento, today, self.alert_window_days):
                alertas.append(Alerta("warning", f"Giro {label} vence el {giro.fecha_vencimiento}", now))

        for liberacion in info.liberaciones:
            if is_vencimiento_vencido(liberacion.fecha_vencimiento, today):
                alertas.append(Alerta(
                    "error", f"Liberación {liberacion.numero} vencida desde {liberacion.fecha_vencimiento}", now
                ))
            elif is_vencimiento_proximo(liberacion.fecha_vencimiento, today, self.alert_window_days):
                alertas.append(Alerta(
                    "warning", f"Liberación {liberacion.numero} vence el {liberacion.fecha_vencimiento}", now
                ))

        completion = calculate_release_completion(info, self.release_tolerance)
        if info.liberaciones and completion.difference > self.release_tolerance:
            tipo = "error" if completion.total_liberated > completion.total_value else "warning"
            alertas.append(Alerta(
                tipo,
                f"Diferencia de conciliación: ${completion.difference:,.0f} entre valor total "
                f"(${completion.total_value:,.0f}) y liberado (${completion.total_liberated:,.0f})",
                now,
            ))

        total_giros = sum(g.valor_solicitado for g in info.giros)
        if info.valor_total_compra > 0 and total_giros > info.valor_total_compra + self.release_tolerance:
            alertas.append(Alerta(
                "warning",
                f"Giros (${total_giros:,.0f}) superan el valor total (${info.valor_total_compra:,.0f})",
                now,
            ))

        context["alertas"] = tuple(alertas)
        return context


class AssembleStep(ProcessingStep):
    """Ensambla el OperationDetail final."""

    def execute(self, context: dict) -> dict:
        row: RawRow = context["row"]
        info = context["info"]
        identity = context["identity"]
        progress = context["progress"]
        synthesizer: DateSynthesizer = context["synthesizer"]
        cliente = context["cliente"]
        row_index = context["row_index"]

        persona = resolve_persona_asignada(row)
        montos_liberados = float(sum(lib.capital for lib in info.liberaciones))
        timeline = tuple(
            TimelineEvent(
                id=f"phase-{phase.phase}",
                fase=phase.name,
                descripcion=phase.reason,
                estado=phase.status,
                progreso=phase.progress,
                responsable=persona,
                fecha=(date_range.actual or date_range.estimated),
            )
            for phase, date_range in zip(progress.phase_details, context["date_ranges"])
        )

        context["operation"] = OperationDetail(
            id=generate_operation_id(cliente, row.get(ColumnNames.ITEM_ID, ""), row_index),
            numero_operacion=f"OP-{synthesizer.now.year}-{row_index + 1:04d}",
            pais=context["profile"].code,
            cliente_completo=cliente,
            cliente_nit=identity.nit,
            tipo_empresa=infer_company_type(cliente),
            proveedor_beneficiario=info.datos_bancarios.beneficiario,
            persona_asignada=persona,
            pais_exportador=info.pais_exportador,
            pais_importador=info.pais_importador,
            ruta_comercial=build_trade_route(info.pais_exportador, info.pais_importador),
            incoterms=format_incoterms(info.incoterm_compra, info.incoterm_venta),
            valor_total=info.valor_total_compra,
            valor_operacion=identity.valor_operacion,
            moneda=info.moneda_pago,
            terminos_pago=info.terminos_pago,
            montos_liberados=montos_liberados,
            montos_pendientes=info.valor_total_compra - montos_liberados,
            extracostos=calculate_extracostos(info.valor_total_compra),
            datos_bancarios=info.datos_bancarios,
            estados=context["estados"],
            giros=info.giros,
            liberaciones=info.liberaciones,
            progreso=progress,
            validation=context["validation"],
            date_ranges=tuple(context["date_ranges"]),
            timeline=timeline,
            alertas=context["alertas"],
            observaciones=collect_observaciones(row, context["info_text"]),
            row_number=row_index + 1,
        )
        return context


# ============================================================================
# FUNCIONES DE ENSAMBLAJE
# ============================================================================
def generate_operation_id(cliente: str, item_id: str, row_index: int) -> str:
    """Id determinista: mismo cliente, token de fila e índice dan el mismo id."""
    token = f"{cliente.strip().upper()}|{(item_id or '').strip()}|{row_index}"
    return "op-" + hashlib.sha1(token.encode("utf-8")).hexdigest()[:16]


def infer_company_type(cliente: str) -> str:
    upper = (cliente or "").upper()
    if "IMPORT" in upper:
        return "IMPORTADORA"
    if "EXPORT" in upper:
        return "EXPORTADORA"
    if "COMERCIALIZ" in upper:
        return "COMERCIALIZADORA"
    if "DISTRIBU" in upper:
        return "DISTRIBUIDORA"
    if COMPANY_SUFFIX_PATTERN.search(upper):
        return "EMPRESA"
    return "COMERCIAL"


def build_trade_route(exportador: str, importador: str) -> str:
    if exportador and importador:
        return f"{exportador} → {importador}"
    return RUTA_NO_ESPECIFICADA


def format_incoterms(compra: str, venta: str) -> str:
    if compra and venta:
        return f"{compra} / {venta}"
    return compra or venta or INCOTERMS_FALLBACK


def calculate_extracostos(valor_total: float) -> Extracostos:
    return Extracostos(**{
        name: int(math.floor(valor_total * rate)) for name, rate in EXTRA_COST_RATES.items()
    })


def collect_observaciones(row: RawRow, info_text: str = "") -> str:
    notas = [
        value.strip()
        for column, value in row.items()
        if value and value.strip() and any(k in column.lower() for k in ("observ", "nota"))
    ]
    if not notas and info_text:
        from_text = extract_field(info_text, "observaciones")
        if from_text:
            notas.append(from_text)
    return "; ".join(notas) if notas else SIN_OBSERVACIONES


def resolve_persona_asignada(row: RawRow) -> str:
    for column in (ColumnNames.EQUIPO_COMERCIAL, ColumnNames.PERSONA_ASIGNADA):
        value = (row.get(column, "") or "").strip()
        if value:
            return value
    return SIN_ASIGNAR


# ============================================================================
# RESULTADO
# ============================================================================
@dataclass
class ProcessingResult:
    """Resultado estandarizado del procesamiento de un export."""

    success: bool
    data: List[OperationDetail] = field(default_factory=list)
    raw_data: List[RawRow] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    total_processed: int = 0
    valid_operations: int = 0
    validation_report: str = ""
    date_report: str = ""
    country: Optional[str] = None

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "data": [op.to_dict() for op in self.data],
            "fields": list(self.fields),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "total_processed": self.total_processed,
            "valid_operations": self.valid_operations,
            "validation_report": self.validation_report,
            "date_report": self.date_report,
            "country": self.country,
        }
        if include_raw:
            result["raw_data"] = [dict(r) for r in self.raw_data]
        return result


# ============================================================================
# PROCESADOR
# ============================================================================
class OperationProcessor:
    """
    Servicio de derivación: texto crudo del export → lista de OperationDetail.

    Cada llamada a ``process_content`` es una pasada independiente y sin
    efectos laterales; la referencia temporal y la fuente aleatoria se fijan
    al inicio de la pasada.

    Args:
        now: "Ahora" fijo para toda la pasada (por defecto, el reloj).
        rng: Fuente aleatoria inyectada; se consume una sola vez para fijar
            la semilla de todas las pasadas.
        seed: Semilla usada cuando no se inyecta ``rng``.
        alert_window_days: Ventana de alerta de vencimientos.
        release_buffer_days: Margen hábil para vencimiento de liberaciones.
        min_field_ratio: Fracción mínima de columnas para aceptar una fila.
        release_tolerance: Tolerancia de conciliación de liberaciones.
    """

    def __init__(
        self,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        alert_window_days: int = DEFAULT_ALERT_WINDOW_DAYS,
        release_buffer_days: int = DEFAULT_RELEASE_BUFFER_DAYS,
        min_field_ratio: float = ProcessingThresholds.MIN_ROW_FIELD_RATIO,
        release_tolerance: float = ProcessingThresholds.RELEASE_TOLERANCE,
    ):
        self.now = now
        self.rng = rng
        self.seed = seed
        self._pass_seed = rng.random() if rng is not None else seed
        self.alert_window_days = alert_window_days
        self.release_buffer_days = release_buffer_days
        self.release_tolerance = release_tolerance
        self.min_field_ratio = min_field_ratio
        self.pipeline = ProcessingPipeline([
            ExtractInfoStep(),
            ResolveClientStep(),
            ProgressStep(release_tolerance),
            DatesStep(),
            ValidationStep(PhaseValidator(release_tolerance=release_tolerance)),
            AlertsStep(alert_window_days, release_tolerance),
            AssembleStep(),
        ])

    @classmethod
    def from_config(cls, config: Dict[str, Any], **overrides) -> "OperationProcessor":
        """Construye el procesador desde un mapping de configuración de Flask."""
        options = {
            "seed": config.get("DATE_RANDOM_SEED"),
            "alert_window_days": config.get("ALERT_WINDOW_DAYS", DEFAULT_ALERT_WINDOW_DAYS),
            "release_buffer_days": config.get("RELEASE_BUFFER_DAYS", DEFAULT_RELEASE_BUFFER_DAYS),
            "min_field_ratio": config.get("MIN_ROW_FIELD_RATIO", ProcessingThresholds.MIN_ROW_FIELD_RATIO),
        }
        options.update(overrides)
        return cls(**options)

    def new_synthesizer(self) -> DateSynthesizer:
        return DateSynthesizer(
            now=self.now or datetime.now(),
            rng=random.Random(self._pass_seed),
            release_buffer_days=self.release_buffer_days,
        )

    def parse(self, source_text: str) -> SplitResult:
        # Un splitter por pasada: las pasadas por país corren en paralelo
        return CSVSplitter(min_field_ratio=self.min_field_ratio).split(source_text)

    def derive_operation(
        self,
        row: RawRow,
        profile: CountryProfile,
        row_index: int = 0,
        synthesizer: Optional[DateSynthesizer] = None,
        warnings: Optional[List[str]] = None,
    ) -> Optional[OperationDetail]:
        """
        Deriva una operación completa de una fila cruda.

        Returns:
            El OperationDetail, o None si la fila no tiene cliente identificable.
        """
        context = self.pipeline.run({
            "row": row,
            "row_index": row_index,
            "profile": profile,
            "synthesizer": synthesizer or self.new_synthesizer(),
            "warnings": [],
        })
        if warnings is not None:
            warnings.extend(f"Fila {row_index + 1}: {w}" for w in context["warnings"])
        return None if context.get("skip") else context["operation"]

    def process_content(self, content: str, profile: Optional[CountryProfile] = None) -> ProcessingResult:
        split = self.parse(content)
        if not split.fields:
            return ProcessingResult(
                success=False,
                errors=["No se encontró cabecera en el contenido"],
                warnings=list(split.warnings),
            )

        profile = profile or detect_country_profile(split.fields)
        synthesizer = self.new_synthesizer()
        logger.info(f"🚀 Procesando {len(split.rows)} filas ({profile.name})")

        operations: List[OperationDetail] = []
        errors: List[str] = []
        warnings: List[str] = list(split.warnings)

        for index, row in enumerate(split.rows):
            operation = self.derive_operation(row, profile, index, synthesizer, warnings)
            if operation is None:
                errors.append(f"Fila {index + 1}: sin cliente identificable")
                continue
            operations.append(operation)

        valid = sum(1 for op in operations if op.validation.is_valid)
        logger.info(f"✅ {len(operations)} operaciones derivadas ({valid} válidas) para {profile.code}")

        return ProcessingResult(
            success=True,
            data=operations,
            raw_data=split.rows,
            fields=split.fields,
            errors=errors,
            warnings=warnings,
            total_processed=len(split.rows),
            valid_operations=valid,
            validation_report=generate_consolidated_validation_report(operations),
            date_report=generate_consolidated_date_report(operations, synthesizer.today, self.alert_window_days),
            country=profile.code,
        )

    def process_file(
        self, file_path: Union[str, Path], profile: Optional[CountryProfile] = None
    ) -> ProcessingResult:
        """Procesa un archivo; si no está disponible devuelve ``success=False`` sin lanzar."""
        try:
            content = read_source_text(file_path)
        except SourceUnavailableError as e:
            logger.warning(f"⚠️ Fuente no disponible: {e}")
            return ProcessingResult(success=False, errors=[str(e)], country=profile.code if profile else None)
        except ParserError as e:
            logger.error(f"❌ Error leyendo {file_path}: {e}")
            return ProcessingResult(success=False, errors=[str(e)], country=profile.code if profile else None)
        return self.process_content(content, profile)


# ============================================================================
# REPORTES CONSOLIDADOS
# ============================================================================
def generate_consolidated_validation_report(operations: Sequence[OperationDetail]) -> str:
    if not operations:
        return "Sin operaciones para validar"

    valid = sum(1 for op in operations if op.validation.is_valid)
    warnings = Counter(w.type for op in operations for w in op.validation.warnings)
    errors = Counter(e.type for op in operations for e in op.validation.errors)

    lines = [
        "🔍 REPORTE CONSOLIDADO DE VALIDACIÓN",
        "=" * 48,
        f"Operaciones: {len(operations)} ({valid} válidas, {len(operations) - valid} requieren atención)",
        f"Advertencias: {sum(warnings.values())} " + str(dict(warnings)),
        f"Errores: {sum(errors.values())} " + str(dict(errors)),
    ]
    invalid = [op for op in operations if not op.validation.is_valid]
    for op in invalid[:10]:
        lines.append(f"--- {op.numero_operacion} ({op.cliente_completo}) ---")
        lines.append(generate_validation_report(op.validation).strip())
    return "\n".join(lines)


def generate_consolidated_date_report(
    operations: Sequence[OperationDetail],
    today,
    alert_window_days: int = DEFAULT_ALERT_WINDOW_DAYS,
) -> str:
    if not operations:
        return "Sin operaciones para reportar fechas"

    proximos = vencidos = 0
    for op in operations:
        fechas = [g.fecha_vencimiento for g in op.giros] + [lib.fecha_vencimiento for lib in op.liberaciones]
        proximos += sum(1 for f in fechas if is_vencimiento_proximo(f, today, alert_window_days))
        vencidos += sum(1 for f in fechas if is_vencimiento_vencido(f, today))

    lines = [
        "📅 REPORTE CONSOLIDADO DE FECHAS",
        "=" * 45,
        f"Operaciones: {len(operations)}",
        f"Vencimientos próximos ({alert_window_days} días): {proximos}",
        f"Vencimientos vencidos: {vencidos}",
    ]
    first = operations[0]
    lines.append(f"Ejemplo {first.numero_operacion}:")
    lines.append(generate_date_report(first.progreso.phase_details, first.date_ranges).strip())
    return "\n".join(lines)


# ============================================================================
# EXPORTACIÓN A DATAFRAME
# ============================================================================
def operations_to_dataframe(operations: Sequence[OperationDetail]) -> pd.DataFrame:
    records = []
    for op in operations:
        record = {
            "id": op.id,
            "numero_operacion": op.numero_operacion,
            "pais": op.pais,
            "cliente": op.cliente_completo,
            "nit": op.cliente_nit,
            "tipo_empresa": op.tipo_empresa,
            "persona_asignada": op.persona_asignada,
            "ruta_comercial": op.ruta_comercial,
            "valor_total": op.valor_total,
            "moneda": op.moneda,
            "progreso_general": op.progreso_general,
            "fase_actual": op.progreso.current_phase,
            "fases_completadas": op.progreso.completed_phases,
            "montos_liberados": op.montos_liberados,
            "montos_pendientes": op.montos_pendientes,
            "giros": len(op.giros),
            "liberaciones": len(op.liberaciones),
            "alertas": len(op.alertas),
            "is_valid": op.validation.is_valid,
        }
        record.update({f"estado_{k}": v for k, v in op.estados.to_dict().items()})
        records.append(record)

    df = pd.DataFrame.from_records(records)
    if not df.empty:
        df["fase_actual"] = df["fase_actual"].astype("Int64")
        df["valor_total"] = df["valor_total"].astype(np.float64)
    return df


def rows_to_dataframe(rows: Sequence[RawRow], fields: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=list(fields)).fillna("")


# ============================================================================
# FUNCIONES DE MÓDULO
# ============================================================================
def parse(source_text: str, min_field_ratio: float = ProcessingThresholds.MIN_ROW_FIELD_RATIO) -> Dict[str, Any]:
    """Devuelve ``{"rows", "fields"}`` para el texto crudo de un export."""
    split = CSVSplitter(min_field_ratio=min_field_ratio).split(source_text)
    return {"rows": split.rows, "fields": split.fields, "warnings": split.warnings}


def derive_operation(
    row: RawRow,
    profile: CountryProfile,
    row_index: int = 0,
    processor: Optional[OperationProcessor] = None,
) -> Optional[OperationDetail]:
    return (processor or OperationProcessor()).derive_operation(row, profile, row_index)


def stats(source_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Metadatos del archivo fuente.

    ``row_count_estimate`` es el número de filas lógicas; si el parseo falla
    se usa el número de líneas no vacías menos la cabecera.
    """
    path = Path(source_path)
    if not path.is_file():
        return {"exists": False, "size": 0, "row_count_estimate": 0, "last_modified": None}

    info = path.stat()
    try:
        content = read_source_text(path)
    except ParserError as e:
        logger.warning(f"⚠️ No se pudo leer {path} para estadísticas: {e}")
        return {
            "exists": True,
            "size": info.st_size,
            "row_count_estimate": 0,
            "last_modified": datetime.fromtimestamp(info.st_mtime).isoformat(),
        }

    try:
        estimate = len(CSVSplitter().split(content).rows)
    except (ValueError, re.error) as e:
        logger.warning(f"⚠️ Estimación de filas por líneas: {e}")
        estimate = max(0, sum(1 for ln in content.splitlines() if ln.strip()) - 1)

    return {
        "exists": True,
        "size": info.st_size,
        "row_count_estimate": estimate,
        "last_modified": datetime.fromtimestamp(info.st_mtime).isoformat(),
    }
