"""
Módulo de utilidades para el procesamiento de operaciones.

Este módulo proporciona funciones robustas para normalización de texto,
conversión de números y saneamiento de estructuras para JSON.
"""

import logging
import re
from dataclasses import is_dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Iterable, Optional, Union

import numpy as np
import pandas as pd
from unidecode import unidecode

# Configuración del logger
logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTES Y CONFIGURACIÓN
# ============================================================================

WHITESPACE_PATTERN = re.compile(r"\s+")
NUMBER_CHARS_PATTERN = re.compile(r"[^0-9,.\-]")
THOUSANDS_COMMA_PATTERN = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d+)?$")
THOUSANDS_DOT_PATTERN = re.compile(r"^-?\d{1,3}(\.\d{3})+(,\d+)?$")

# ============================================================================
# FUNCIONES DE NORMALIZACIÓN DE TEXTO
# ============================================================================


@lru_cache(maxsize=4096)
def normalize_text(text: str) -> str:
    """
    Normaliza un texto para comparaciones por subcadena.

    Pasa a minúsculas, elimina acentos y colapsa espacios. Se usa para que
    "Preparación" y "preparacion" se traten igual en las reglas de estado.

    Args:
        text: Texto a normalizar

    Returns:
        Texto normalizado ("" para valores vacíos)
    """
    if not text:
        return ""
    if not isinstance(text, str):
        text = str(text)

    text = unidecode(text.lower())
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    """Indica si el texto normalizado contiene alguna de las palabras clave."""
    normalized = normalize_text(text)
    if not normalized:
        return False
    return any(normalize_text(k) in normalized for k in keywords)


def contains_all(text: str, keywords: Iterable[str]) -> bool:
    """Indica si el texto normalizado contiene todas las palabras clave."""
    normalized = normalize_text(text)
    if not normalized:
        return False
    return all(normalize_text(k) in normalized for k in keywords)


# ============================================================================
# FUNCIONES DE CONVERSIÓN NUMÉRICA
# ============================================================================


def parse_number(
    s: Optional[Union[str, float, int]],
    default_value: float = 0.0,
) -> float:
    """
    Convierte una cadena monetaria a número de punto flotante.

    Maneja separadores de miles con coma ("100,000") o con punto
    ("100.000,50"), símbolos de moneda y espacios.

    Args:
        s: Valor a convertir (string, float, int o None)
        default_value: Valor por defecto si la conversión falla

    Returns:
        float: Número parseado o default_value si falla

    Examples:
        >>> parse_number("1,234.56")
        1234.56
        >>> parse_number("100,000")
        100000.0
        >>> parse_number("USD 98470")
        98470.0
    """
    if s is None:
        return default_value

    if isinstance(s, (int, float, np.integer, np.floating)):
        value = float(s)
        return value if np.isfinite(value) else default_value

    cleaned = NUMBER_CHARS_PATTERN.sub("", str(s).strip())
    if not cleaned or not any(c.isdigit() for c in cleaned):
        return default_value

    if THOUSANDS_COMMA_PATTERN.match(cleaned):
        cleaned = cleaned.replace(",", "")
    elif THOUSANDS_DOT_PATTERN.match(cleaned):
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif cleaned.count(",") == 1 and "." not in cleaned:
        # Coma única sin grupo de miles: separador decimal
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        value = float(cleaned)
    except ValueError:
        logger.debug(f"No se pudo convertir '{s}' a número")
        return default_value

    return value if np.isfinite(value) else default_value


def round_half_up(value: float) -> int:
    """Redondeo comercial (0.5 hacia arriba), no el redondeo bancario de round()."""
    return int(np.floor(float(value) + 0.5))


# ============================================================================
# SERIALIZACIÓN
# ============================================================================


def sanitize_for_json(data: Any, max_depth: int = 100) -> Any:
    """
    Convierte tipos de datos no serializables a tipos nativos de Python.

    Args:
        data: La estructura de datos a sanear
        max_depth: Profundidad máxima de recursión

    Returns:
        La estructura de datos saneada

    Raises:
        RecursionError: Si se excede la profundidad máxima
    """
    if max_depth <= 0:
        raise RecursionError("Profundidad máxima de recursión alcanzada")

    # Dataclasses del dominio exponen to_dict()
    if is_dataclass(data) and not isinstance(data, type) and hasattr(data, "to_dict"):
        return sanitize_for_json(data.to_dict(), max_depth - 1)

    if isinstance(data, Enum):
        return data.value

    if isinstance(data, dict):
        return {k: sanitize_for_json(v, max_depth - 1) for k, v in data.items()}

    if isinstance(data, (list, tuple)):
        return [sanitize_for_json(v, max_depth - 1) for v in data]

    if isinstance(data, pd.Series):
        return sanitize_for_json(data.to_list(), max_depth - 1)

    if isinstance(data, pd.DataFrame):
        return sanitize_for_json(data.to_dict("records"), max_depth - 1)

    if isinstance(data, (bool, np.bool_)):
        return bool(data)

    if isinstance(data, np.integer):
        return int(data)

    if isinstance(data, (float, np.floating)):
        if np.isnan(data) or np.isinf(data):
            return None
        return float(data)

    if isinstance(data, np.ndarray):
        return sanitize_for_json(data.tolist(), max_depth - 1)

    if data is None or isinstance(data, (str, int)):
        return data

    # Manejar pd.NA, pd.NaT y otros nulos de Pandas
    try:
        if pd.isna(data):
            return None
    except (TypeError, ValueError):
        pass

    if hasattr(data, "isoformat"):
        return data.isoformat()

    return str(data)
