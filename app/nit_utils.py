"""
Extracción de identidad del cliente desde la columna "1.Docu. Cliente".

Formato habitual::

    - CLIENTE: ACME SAS
    - NIT: 900123456-7
    - VALOR OPERACIÓN: 80000

Soporta NIT colombiano (numérico, con dígito de verificación) y RFC
mexicano (alfanumérico). La ausencia de identificador es un resultado
normal (centinela ``SIN_NIT``), nunca un error.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .utils import parse_number

logger = logging.getLogger(__name__)

SIN_NIT = "Sin NIT"

_RFC_BODY = r"[A-ZÑ&]{3,4}[0-9]{6}[A-Z0-9]{3}"
# "NIT:", "NIT.", "NIT :", "N.I.T.:" y "RFC:"
_TAX_LABEL = r"\b(?:N\.?\s?I\.?\s?T|RFC)\s*[.:]?\s*[:]?\s*"

CLIENTE_PATTERN = re.compile(r"[-\s]*CLIENTE\s*:\s*(.+?)(?=\n|$)", re.IGNORECASE)
LABELED_RFC_PATTERN = re.compile(_TAX_LABEL + r"(" + _RFC_BODY + r")\b", re.IGNORECASE)
LABELED_NIT_PATTERN = re.compile(_TAX_LABEL + r"([0-9][0-9.]*(?:\s?-\s?[0-9Kk])?)", re.IGNORECASE)
FREE_RFC_PATTERN = re.compile(r"\b(" + _RFC_BODY + r")\b", re.IGNORECASE)
ALNUM_RUN_PATTERN = re.compile(r"\b(?=[A-Z0-9]*[0-9])[A-Z0-9]{8,}\b", re.IGNORECASE)
VALOR_OPERACION_PATTERN = re.compile(
    r"[-\s]*VALOR\s+(?:DE\s+LA\s+)?OPERACI[ÓO]N\s*:\s*([0-9][0-9.,]*)", re.IGNORECASE
)

RFC_FORMAT = re.compile(r"^" + _RFC_BODY + r"$")
NIT_FORMAT = re.compile(r"^[0-9]{6,15}$")


@dataclass(frozen=True)
class ClientIdentity:
    """Nombre del cliente, identificador tributario y valor de la operación."""

    cliente: str
    nit: str
    valor_operacion: Optional[float] = None
    source: str = "none"  # label | rfc | fallback | none

    @property
    def has_nit(self) -> bool:
        return self.nit != SIN_NIT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cliente": self.cliente,
            "nit": self.nit,
            "valor_operacion": self.valor_operacion,
            "source": self.source,
        }


def _fallback_id(text: str) -> Optional[str]:
    # Se ignoran las líneas de cliente y valor para no confundir nombres o montos con ids
    candidates = [
        line for line in text.split("\n")
        if not re.search(r"CLIENTE\s*:|VALOR\s", line, re.IGNORECASE)
    ]
    match = ALNUM_RUN_PATTERN.search("\n".join(candidates))
    return match.group(0).upper() if match else None


def extract_client_identity(text: Optional[str]) -> ClientIdentity:
    """
    Extrae (cliente, nit) de un campo compuesto. Nunca falla.

    Orden: etiqueta + RFC, etiqueta + NIT numérico, RFC sin etiqueta,
    cualquier secuencia alfanumérica de 8+ caracteres con dígitos y, por
    último, el centinela ``SIN_NIT``.
    """
    if not text or not isinstance(text, str) or not text.strip():
        return ClientIdentity(cliente="", nit=SIN_NIT)

    clean = text.replace("\r\n", "\n").replace("\r", "\n").strip()

    cliente_match = CLIENTE_PATTERN.search(clean)
    cliente = cliente_match.group(1).strip() if cliente_match else ""

    valor_match = VALOR_OPERACION_PATTERN.search(clean)
    valor_operacion = (
        parse_number(valor_match.group(1).rstrip(".,"), default_value=0.0) if valor_match else None
    )
    if valor_operacion is not None and valor_operacion <= 0:
        valor_operacion = None

    nit, source = "", "none"
    match = LABELED_RFC_PATTERN.search(clean)
    if match:
        nit, source = match.group(1).upper(), "label"
    if not nit:
        match = LABELED_NIT_PATTERN.search(clean)
        if match:
            nit, source = re.sub(r"\s", "", match.group(1)), "label"
    if not nit:
        match = FREE_RFC_PATTERN.search(clean)
        if match:
            nit, source = match.group(1).upper(), "rfc"
    if not nit:
        fallback = _fallback_id(clean)
        if fallback:
            nit, source = fallback, "fallback"
            logger.debug(f"Identificador recuperado por secuencia alfanumérica: {nit}")
    if not nit:
        nit = SIN_NIT
        logger.debug(f"Sin identificador tributario para cliente '{cliente}'")

    return ClientIdentity(cliente=cliente, nit=nit, valor_operacion=valor_operacion, source=source)


def normalize_nit(nit: Optional[str]) -> str:
    """Quita espacios, guiones y puntos y pasa a mayúsculas."""
    if not nit or not isinstance(nit, str) or nit == SIN_NIT:
        return ""
    return re.sub(r"[\s\-.]", "", nit.strip()).upper()


def validate_nit_format(nit: Optional[str]) -> Dict[str, Any]:
    """Clasifica un identificador normalizado como RFC, NIT o UNKNOWN."""
    normalized = normalize_nit(nit)
    if RFC_FORMAT.match(normalized):
        return {"is_valid": True, "type": "RFC", "normalized": normalized}
    if NIT_FORMAT.match(normalized):
        return {"is_valid": True, "type": "NIT", "normalized": normalized}
    return {"is_valid": False, "type": "UNKNOWN", "normalized": normalized}


def find_operations_by_nit(operations: Iterable[Any], nit: str) -> List[Any]:
    """
    Filtra operaciones cuyo ``cliente_nit`` coincide con el NIT/RFC buscado.

    La comparación es por identificador normalizado; para NIT colombianos
    también coincide la forma sin dígito de verificación.
    """
    target = normalize_nit(nit)
    if not target:
        return []

    matches = []
    for operation in operations:
        candidate = normalize_nit(getattr(operation, "cliente_nit", ""))
        if not candidate:
            continue
        if candidate == target or (candidate.isdigit() and candidate[:-1] == target):
            matches.append(operation)
    logger.info(f"🔍 {len(matches)} operaciones encontradas para NIT {target}")
    return matches
