import re
from typing import Dict, Pattern

# Etiquetas conocidas del bloque "Info Gnal + Info Compra Int". Cada valor se
# extrae hasta el fin de línea o hasta la siguiente etiqueta conocida.
FIELD_LABELS: Dict[str, str] = {
    "cliente": r"CLIENTE",
    "pais_importador": r"PA[IÍ]S\s+IMPORTADOR",
    "pais_exportador": r"PA[IÍ]S\s+EXPORTADOR",
    "valor_total_compra": r"VALOR\s+TOTAL\s+DE\s+COMPRA",
    "moneda_pago": r"MONEDA\s+DE\s+PAGO(?:\s+SOLICITAD[OA])?",
    "terminos_pago": r"T[EÉ]RMINOS\s+DE\s+PAGO",
    "beneficiario": r"BENEFICIARIO",
    "banco": r"BANCO",
    "direccion": r"DIRECCI[OÓ]N",
    "numero_cuenta": r"N[UÚ]MERO\s+DE\s+CUENTA",
    "swift": r"SWIFT(?:\s+CODE)?",
    "incoterm_compra": r"I[NC]?COTERMS?\s+COMPRA",
    "incoterm_venta": r"I[NC]?COTERMS?\s+VENTA",
    "observaciones": r"OBSERVACIONES",
    "valor_solicitado": r"VALOR\s+SOLICITADO",
    "numero_giro": r"N[UÚ]MERO\s+DE\s+GIRO",
    "porcentaje_giro": r"PORCENTAJE\s+DE\s+GIRO",
    "capital": r"CAPITAL",
    "fecha": r"FECHA",
}

# Encabezados de sección sin valor propio
SECTION_HEADERS = r"DATOS\s+BANCARIOS|NPS\b|LIBERACI[OÓ]N(?:ES)?\b"

_LABEL_PREFIX = r"(?:^|(?<=[\s\-•]))"


def label_pattern(label: str) -> Pattern:
    """Compila el patrón "ETIQUETA: valor" tolerante a viñetas y mayúsculas."""
    return re.compile(
        _LABEL_PREFIX + r"(?:" + label + r")\s*:[ \t]*(?P<value>[^\n]*)",
        re.IGNORECASE | re.MULTILINE,
    )


class RegexPatterns:
    """Patrones regex pre-compilados para alto rendimiento."""

    FIELDS: Dict[str, Pattern] = {name: label_pattern(lbl) for name, lbl in FIELD_LABELS.items()}

    # Cualquier etiqueta conocida seguida de ":"; marca el fin de un valor
    ANY_LABEL: Pattern = re.compile(
        _LABEL_PREFIX + r"(?:" + "|".join(FIELD_LABELS.values()) + r")\s*:",
        re.IGNORECASE,
    )
    # Encabezados de sección, también decorados ("*****DATOS BANCARIOS*****")
    SECTION_HEADER: Pattern = re.compile(
        r"^[\s\-•*=_#]*(?:" + SECTION_HEADERS + r")", re.IGNORECASE
    )
    SEPARATOR_LINE: Pattern = re.compile(r"^[\s*\-=_#]{3,}$")

    # Limpieza básica
    CRLF: Pattern = re.compile(r"\r\n?")
    EXCESS_BLANK_LINES: Pattern = re.compile(r"\n{3,}")
    WHITESPACE: Pattern = re.compile(r"[ \t]+")

    # Valores
    NUMBER: Pattern = re.compile(r"\d[\d.,]*")
    CURRENCY_CODE: Pattern = re.compile(r"\b([A-Z]{3})\b")
    INCOTERM_CODE: Pattern = re.compile(r"^\s*([A-Z]{3})\b", re.IGNORECASE)
    PERCENTAGE: Pattern = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
    ISO_DATE: Pattern = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
    SWIFT: Pattern = re.compile(r"^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$")
    ACCOUNT_NUMBER: Pattern = re.compile(r"^\d+$")

    # Giros
    GIRO_SPLIT: Pattern = re.compile(r"(?=VALOR\s+SOLICITADO\s*:)", re.IGNORECASE)
    GIRO_BANKING_MARKERS: Pattern = re.compile(
        r"DATOS\s+BANCARIOS|BENEFICIARIO\s*:|N[UÚ]MERO\s+DE\s+CUENTA\s*:|(?<![A-ZÁÉÍÓÚÑ])BANCO\s*:",
        re.IGNORECASE,
    )

    # Liberaciones: marcador, "Capital: <monto> <moneda>" y "Fecha: <ISO>",
    # en líneas separadas o en una sola línea separadas por " - "
    LIBERACION_STRICT: Pattern = re.compile(
        r"Liberaci[oó]n\s*(?:N[°º.o]*\s*)?(?P<numero>\d+)[ \t]*(?:\n|-)"
        r"(?:(?!Liberaci[oó]n)[\s\S])*?Capital\s*:\s*(?P<capital>\d[\d.,]*)(?:[ \t]*[A-Z]{3})?[ \t]*(?:\n|-)"
        r"(?:(?!Liberaci[oó]n)[\s\S])*?Fecha\s*:\s*(?P<fecha>\d{4}-\d{2}-\d{2})",
        re.IGNORECASE,
    )
    CAPITAL_ANY: Pattern = re.compile(r"Capital\s*:\s*(\d[\d.,]*)", re.IGNORECASE)

    # Valor total alternativo cuando la etiqueta principal falta
    VALUE_FALLBACKS = (
        re.compile(r"VALOR\s+TOTAL[:\s]+(\d[\d.,]*)", re.IGNORECASE),
        re.compile(r"\$[\s]*(\d[\d.,]*)"),
        re.compile(r"(\d[\d.,]*)\s*(?:USD|DOLLARS?)\b", re.IGNORECASE),
    )
