"""
Extractor de campos del bloque de texto libre "Info Gnal + Info Compra Int".

Cada operación trae un único bloque de texto con etiquetas ("CLIENTE:",
"VALOR TOTAL DE COMPRA:", "VALOR SOLICITADO:", "Liberación 1" ...). Este
módulo aplica un conjunto único de reglas por campo (ver `RegexPatterns`) y
expone dos puntos de entrada sobre las mismas reglas:

- `parse_operation_info`: modo tolerante, siempre devuelve un
  `ParsedGeneralInfo` con valores por defecto para lo que no encuentre.
- `OperationInfoParser.parse`: modo estricto (compatibilidad), acumula
  errores por campo y devuelve ``success=False`` si falta un campo requerido,
  junto con los datos parciales recuperados.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from .constants import DEFAULT_CURRENCY, Currency, EstadoProceso
from .patterns import RegexPatterns
from .schemas import DatosBancarios, Giro, Liberacion, ParsedGeneralInfo
from .utils import parse_number

logger = logging.getLogger(__name__)

# Palabras que delatan que un "giro" es en realidad un dato bancario
GIRO_BANKING_KEYWORDS = ("CUENTA", "BANCO", "SWIFT", "BENEFICIARIO")

REQUIRED_FIELDS = ("cliente", "pais_importador", "pais_exportador", "valor_total_compra")


@dataclass(frozen=True)
class FieldIssue:
    """Error o advertencia asociado a un campo concreto."""

    field: str
    error: str
    raw_value: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "error": self.error, "raw_value": self.raw_value}


@dataclass
class ExtractionResult:
    """Resultado del modo tolerante: datos más incidencias no fatales."""

    info: ParsedGeneralInfo
    errors: List[FieldIssue] = field(default_factory=list)
    warnings: List[FieldIssue] = field(default_factory=list)


@dataclass
class StrictParseResult:
    """Resultado del modo estricto."""

    success: bool
    data: Optional[ParsedGeneralInfo]
    errors: List[FieldIssue] = field(default_factory=list)
    warnings: List[FieldIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data.to_dict() if self.data else None,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ============================================================================
# FUNCIONES AUXILIARES
# ============================================================================
def clean_text(text: Optional[str]) -> str:
    """Normaliza saltos de línea, colapsa líneas en blanco y recorta."""
    if not text:
        return ""
    text = RegexPatterns.CRLF.sub("\n", str(text))
    text = RegexPatterns.EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def _truncate_at_next_label(value: str) -> str:
    match = RegexPatterns.ANY_LABEL.search(value)
    if match:
        value = value[: match.start()]
    return RegexPatterns.WHITESPACE.sub(" ", value).strip()


def extract_field(text: str, name: str) -> str:
    """
    Extrae el valor de una etiqueta conocida.

    El valor llega hasta el fin de la línea o hasta la siguiente etiqueta
    conocida en la misma línea. Devuelve "" si la etiqueta no aparece o si
    aparece sin valor.
    """
    pattern = RegexPatterns.FIELDS[name]
    try:
        for match in pattern.finditer(text):
            value = _truncate_at_next_label(match.group("value"))
            if value:
                return value
    except re.error as e:
        logger.error(f"❌ Error de regex extrayendo '{name}': {e}")
    return ""


def extract_multiline_field(text: str, name: str) -> str:
    """
    Como `extract_field`, pero el valor continúa en las líneas siguientes
    hasta una línea en blanco, otra etiqueta o un encabezado de sección.
    """
    match = RegexPatterns.FIELDS[name].search(text)
    if not match:
        return ""

    first = match.group("value")
    label_in_line = RegexPatterns.ANY_LABEL.search(first)
    if label_in_line:
        return _truncate_at_next_label(first)

    parts = [first.strip()]
    for line in text[match.end():].split("\n")[1:]:
        stripped = line.strip()
        if (
            not stripped
            or RegexPatterns.ANY_LABEL.search(stripped)
            or RegexPatterns.SECTION_HEADER.match(stripped)
            or RegexPatterns.SEPARATOR_LINE.match(stripped)
        ):
            break
        parts.append(stripped)
    return RegexPatterns.WHITESPACE.sub(" ", " ".join(p for p in parts if p)).strip()


def extract_monetary_value(text: Optional[str]) -> float:
    """Primer monto del texto ("USD 100,000.50" -> 100000.5); 0 si no hay."""
    if not text:
        return 0.0
    match = RegexPatterns.NUMBER.search(str(text))
    if not match:
        return 0.0
    return parse_number(match.group(0).rstrip(".,"), default_value=0.0)


def extract_percentage(text: Optional[str]) -> Optional[float]:
    """Porcentaje explícito del texto ("30% del total" -> 30.0)."""
    if not text:
        return None
    match = RegexPatterns.PERCENTAGE.search(str(text))
    if not match:
        return None
    return parse_number(match.group(1), default_value=0.0)


def is_valid_date(value: Optional[str]) -> bool:
    """True si el valor es una fecha ISO (YYYY-MM-DD) de calendario real."""
    if not value or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value.strip()):
        return False
    try:
        datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError:
        return False
    return True


def extract_value_from_text(text: Optional[str]) -> float:
    """Monto total alternativo cuando "VALOR TOTAL DE COMPRA" no es interpretable."""
    if not text:
        return 0.0
    for pattern in RegexPatterns.VALUE_FALLBACKS:
        match = pattern.search(text)
        if match:
            value = parse_number(match.group(1).rstrip(".,"), default_value=0.0)
            if value > 0:
                return value
    return 0.0


def _parse_currency(raw: str) -> Tuple[str, Optional[str]]:
    """Devuelve (código, advertencia) aplicando la moneda por defecto."""
    if not raw:
        return DEFAULT_CURRENCY.value, "Moneda no especificada, se asume USD"
    match = RegexPatterns.CURRENCY_CODE.search(raw.upper())
    currency = Currency.from_code(match.group(1)) if match else None
    if currency is None:
        return DEFAULT_CURRENCY.value, f"Moneda no reconocida '{raw}', se asume USD"
    return currency.value, None


def _parse_incoterm(raw: str) -> str:
    match = RegexPatterns.INCOTERM_CODE.match(raw or "")
    return match.group(1).upper() if match else ""


# ============================================================================
# GIROS Y LIBERACIONES
# ============================================================================
def extract_giros(text: str) -> List[Giro]:
    """
    Extrae los giros anclados en "VALOR SOLICITADO:".

    Se descartan los fragmentos que contienen etiquetas de la sección
    bancaria, y un giro solo es válido con monto positivo y una etiqueta de
    giro que no sea un dato bancario.
    """
    giros: List[Giro] = []
    chunks = [
        c for c in RegexPatterns.GIRO_SPLIT.split(text)
        if RegexPatterns.FIELDS["valor_solicitado"].search(c)
    ]

    for chunk in chunks:
        if RegexPatterns.GIRO_BANKING_MARKERS.search(chunk):
            logger.debug("Bloque de giro descartado: contiene datos bancarios")
            continue

        valor = extract_monetary_value(extract_field(chunk, "valor_solicitado"))
        numero = extract_field(chunk, "numero_giro")
        porcentaje = extract_field(chunk, "porcentaje_giro")

        if valor > 0 and numero and not any(k in numero.upper() for k in GIRO_BANKING_KEYWORDS):
            giros.append(
                Giro(
                    valor_solicitado=valor,
                    numero_giro=numero,
                    porcentaje_giro=porcentaje,
                    estado=EstadoProceso.PENDIENTE,
                    fecha_vencimiento=None,
                )
            )
        else:
            logger.debug(f"Bloque descartado - Valor: {valor}, Giro: '{numero}'")

    return giros


def _release_status(fecha: str, today: date) -> EstadoProceso:
    try:
        released_on = datetime.strptime(fecha, "%Y-%m-%d").date()
    except ValueError:
        return EstadoProceso.PENDIENTE
    return EstadoProceso.COMPLETADO if released_on <= today else EstadoProceso.PENDIENTE


def extract_liberaciones(text: str, today: Optional[date] = None) -> List[Liberacion]:
    """
    Extrae liberaciones con el patrón de tres líneas (marcador, capital, fecha).

    Si el patrón estricto no encuentra ninguna, se intenta una única
    extracción relajada (cualquier capital + cualquier fecha ISO). Las
    liberaciones con fecha pasada o de hoy se marcan como completadas.
    """
    today = today or date.today()
    liberaciones: List[Liberacion] = []

    for match in RegexPatterns.LIBERACION_STRICT.finditer(text):
        capital = parse_number(match.group("capital").rstrip(".,"), default_value=0.0)
        fecha = match.group("fecha")
        if capital <= 0 or not is_valid_date(fecha):
            continue
        liberaciones.append(
            Liberacion(
                numero=int(match.group("numero")),
                capital=capital,
                fecha=fecha,
                estado=_release_status(fecha, today),
            )
        )

    if liberaciones:
        return liberaciones

    capital_match = RegexPatterns.CAPITAL_ANY.search(text)
    date_match = RegexPatterns.ISO_DATE.search(text)
    if capital_match and date_match:
        capital = parse_number(capital_match.group(1).rstrip(".,"), default_value=0.0)
        fecha = date_match.group(1)
        if capital > 0 and is_valid_date(fecha):
            logger.info(f"ℹ️ Liberación recuperada con extracción relajada: {capital} - {fecha}")
            liberaciones.append(
                Liberacion(numero=1, capital=capital, fecha=fecha, estado=_release_status(fecha, today))
            )

    return liberaciones


def extract_datos_bancarios(text: str) -> DatosBancarios:
    return DatosBancarios(
        beneficiario=extract_field(text, "beneficiario"),
        banco=extract_field(text, "banco"),
        direccion=extract_field(text, "direccion"),
        numero_cuenta=extract_field(text, "numero_cuenta"),
        swift=extract_field(text, "swift"),
    )


# ============================================================================
# MODO TOLERANTE
# ============================================================================
def extract_general_info(text: Optional[str], today: Optional[date] = None) -> ExtractionResult:
    """
    Aplica todas las reglas de campo y devuelve datos más incidencias.

    Nunca lanza excepciones: cada campo ausente se reemplaza por su valor por
    defecto y queda registrado como error (campos requeridos) o advertencia.
    """
    clean = clean_text(text)
    errors: List[FieldIssue] = []
    warnings: List[FieldIssue] = []

    if not clean:
        errors.append(FieldIssue("texto", "Texto de información general vacío"))
        errors.extend(FieldIssue(f, "Campo requerido no encontrado") for f in REQUIRED_FIELDS)
        return ExtractionResult(ParsedGeneralInfo(), errors, warnings)

    cliente = extract_field(clean, "cliente")
    pais_importador = extract_field(clean, "pais_importador")
    pais_exportador = extract_field(clean, "pais_exportador")

    raw_total = extract_field(clean, "valor_total_compra")
    valor_total = extract_monetary_value(raw_total)

    moneda, moneda_warning = _parse_currency(extract_field(clean, "moneda_pago"))
    if moneda_warning:
        warnings.append(FieldIssue("moneda_pago", moneda_warning))

    terminos_pago = extract_multiline_field(clean, "terminos_pago")
    incoterm_compra = _parse_incoterm(extract_field(clean, "incoterm_compra"))
    incoterm_venta = _parse_incoterm(extract_field(clean, "incoterm_venta"))

    datos_bancarios = extract_datos_bancarios(clean)
    giros = extract_giros(clean)
    liberaciones = extract_liberaciones(clean, today)

    for name, value in (
        ("cliente", cliente),
        ("pais_importador", pais_importador),
        ("pais_exportador", pais_exportador),
    ):
        if not value:
            errors.append(FieldIssue(name, "Campo requerido no encontrado"))
    if valor_total <= 0:
        errors.append(
            FieldIssue("valor_total_compra", "Valor total de compra inválido o ausente", raw_total)
        )

    optional_fields = {
        "terminos_pago": terminos_pago,
        "incoterm_compra": incoterm_compra,
        "incoterm_venta": incoterm_venta,
    }
    for name, value in optional_fields.items():
        if not value:
            warnings.append(FieldIssue(name, "Campo no encontrado"))

    info = ParsedGeneralInfo(
        cliente=cliente,
        pais_importador=pais_importador,
        pais_exportador=pais_exportador,
        valor_total_compra=valor_total,
        moneda_pago=moneda,
        terminos_pago=terminos_pago,
        incoterm_compra=incoterm_compra,
        incoterm_venta=incoterm_venta,
        datos_bancarios=datos_bancarios,
        giros=tuple(giros),
        liberaciones=tuple(liberaciones),
    )

    logger.debug(
        f"Info general extraída: cliente='{cliente}', valor={valor_total}, "
        f"giros={len(giros)}, liberaciones={len(liberaciones)}"
    )
    return ExtractionResult(info, errors, warnings)


def parse_operation_info(text: Optional[str], today: Optional[date] = None) -> ParsedGeneralInfo:
    """Punto de entrada tolerante: siempre devuelve un `ParsedGeneralInfo`."""
    return extract_general_info(text, today).info


# ============================================================================
# MODO ESTRICTO
# ============================================================================
class OperationInfoParser:
    """
    Parser estricto de compatibilidad.

    Usa las mismas reglas de campo que el modo tolerante y añade
    validaciones de formato (SWIFT, número de cuenta, fechas de liberación).
    ``success`` es False si hay cualquier error de campo.
    """

    @staticmethod
    def parse(text: Optional[str], today: Optional[date] = None) -> StrictParseResult:
        extraction = extract_general_info(text, today)
        info = extraction.info
        errors = list(extraction.errors)
        warnings = list(extraction.warnings)

        if clean_text(text):
            OperationInfoParser._validate_banking(info.datos_bancarios, errors, warnings)
            OperationInfoParser._validate_release_dates(clean_text(text), info, warnings)

        success = not errors
        if success:
            logger.info(f"✅ Información de operación válida: {info.cliente}")
        else:
            logger.warning(
                f"⚠️ Parseo estricto con {len(errors)} errores: "
                f"{', '.join(sorted({e.field for e in errors}))}"
            )
        return StrictParseResult(success=success, data=info, errors=errors, warnings=warnings)

    @staticmethod
    def _validate_banking(
        datos: DatosBancarios, errors: List[FieldIssue], warnings: List[FieldIssue]
    ) -> None:
        for name in ("beneficiario", "banco", "numero_cuenta"):
            if not getattr(datos, name):
                warnings.append(FieldIssue(name, "Dato bancario no encontrado"))

        if datos.swift and not RegexPatterns.SWIFT.match(datos.swift.upper().replace(" ", "")):
            errors.append(FieldIssue("swift", "Formato de código SWIFT inválido", datos.swift))

        cuenta = re.sub(r"[\s\-]", "", datos.numero_cuenta)
        if cuenta and not RegexPatterns.ACCOUNT_NUMBER.match(cuenta):
            errors.append(
                FieldIssue("numero_cuenta", "El número de cuenta debe ser numérico", datos.numero_cuenta)
            )

    @staticmethod
    def _validate_release_dates(
        text: str, info: ParsedGeneralInfo, warnings: List[FieldIssue]
    ) -> None:
        mentions = len(re.findall(r"Liberaci[oó]n\s*\d+", text, re.IGNORECASE))
        if mentions > len(info.liberaciones):
            warnings.append(
                FieldIssue(
                    "liberaciones",
                    f"{mentions - len(info.liberaciones)} liberaciones sin formato reconocible "
                    "(se espera 'Capital: <monto> <moneda>' y 'Fecha: YYYY-MM-DD')",
                )
            )
