"""
Suite de pruebas para utils.py

Normalización de texto, búsqueda por subcadena, conversión numérica,
redondeo comercial y saneamiento para JSON.
"""

from dataclasses import dataclass
from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest

# Importar módulo a probar
from app import utils
from app.constants import EstadoProceso

# ============================================================================
# FIXTURES - Datos de prueba reutilizables
# ============================================================================


@pytest.fixture
def sample_numeric_strings():
    """Fixture con strings numéricos en varios formatos."""
    return {
        'integer': ('98470', 98470.0),
        'thousands_comma': ('100,000', 100000.0),
        'thousands_comma_decimals': ('1,234,567.89', 1234567.89),
        'thousands_dot': ('100.000', 100000.0),
        'thousands_dot_decimals': ('1.234,56', 1234.56),
        'decimal_comma': ('1234,56', 1234.56),
        'decimal_dot': ('1234.56', 1234.56),
        'currency_prefix': ('USD 98470', 98470.0),
        'currency_symbol': ('$ 25,000', 25000.0),
    }


@dataclass
class _Dummy:
    valor: float

    def to_dict(self):
        return {"valor": self.valor}


# ============================================================================
# NORMALIZACIÓN DE TEXTO
# ============================================================================


class TestNormalizeText:
    """Pruebas para normalize_text"""

    def test_lowercase_and_accents(self):
        assert utils.normalize_text("Preparación EN Revisión") == "preparacion en revision"

    def test_collapses_whitespace(self):
        assert utils.normalize_text("  Listo   -  Factura\nFinal ") == "listo - factura final"

    @pytest.mark.parametrize("value", ["", None])
    def test_empty_values(self, value):
        assert utils.normalize_text(value) == ""

    def test_non_string_is_converted(self):
        assert utils.normalize_text(12345) == "12345"


class TestContains:
    """Pruebas para contains_any y contains_all"""

    def test_contains_any_ignores_case_and_accents(self):
        assert utils.contains_any("En PREPARACIÓN", ["preparacion"])
        assert utils.contains_any("1. Aprobación de Cotización", ["1. Aprobación de Cotización"])

    def test_contains_any_no_match(self):
        assert not utils.contains_any("Pendiente", ["listo", "proceso"])

    def test_contains_any_empty_text(self):
        assert not utils.contains_any("", ["listo"])

    def test_contains_all(self):
        assert utils.contains_all("Listo, pago confirmado", ["listo", "pago confirmado"])
        assert not utils.contains_all("Listo", ["listo", "pago confirmado"])


# ============================================================================
# CONVERSIÓN NUMÉRICA
# ============================================================================


class TestParseNumber:
    """Pruebas para parse_number"""

    def test_all_formats(self, sample_numeric_strings):
        for name, (raw, expected) in sample_numeric_strings.items():
            assert utils.parse_number(raw) == pytest.approx(expected), name

    @pytest.mark.parametrize("value", [None, "", "ABC", "N/A"])
    def test_invalid_returns_default(self, value):
        assert utils.parse_number(value, default_value=-1.0) == -1.0

    def test_numeric_passthrough(self):
        assert utils.parse_number(42) == 42.0
        assert utils.parse_number(np.float64(3.5)) == 3.5

    def test_non_finite_returns_default(self):
        assert utils.parse_number(float("nan"), default_value=0.0) == 0.0
        assert utils.parse_number(float("inf"), default_value=0.0) == 0.0


class TestRoundHalfUp:
    """El redondeo comercial no usa redondeo bancario."""

    @pytest.mark.parametrize(
        "value,expected",
        [(2.5, 3), (0.5, 1), (1.4, 1), (30.75, 31), (98.75, 99), (36.0, 36)],
    )
    def test_round_half_up(self, value, expected):
        assert utils.round_half_up(value) == expected


# ============================================================================
# SERIALIZACIÓN
# ============================================================================


class TestSanitizeForJson:
    """Pruebas para sanitize_for_json"""

    def test_numpy_types(self):
        data = {"a": np.int64(5), "b": np.float64(1.5), "c": np.bool_(True)}
        assert utils.sanitize_for_json(data) == {"a": 5, "b": 1.5, "c": True}

    def test_nan_and_inf_become_none(self):
        assert utils.sanitize_for_json([float("nan"), np.inf]) == [None, None]

    def test_enum_and_dates(self):
        data = {"estado": EstadoProceso.COMPLETADO, "fecha": date(2025, 9, 1), "ts": datetime(2025, 9, 1, 8, 30)}
        assert utils.sanitize_for_json(data) == {
            "estado": "completado",
            "fecha": "2025-09-01",
            "ts": "2025-09-01T08:30:00",
        }

    def test_dataclass_with_to_dict(self):
        assert utils.sanitize_for_json([_Dummy(np.float64(2.0))]) == [{"valor": 2.0}]

    def test_pandas_structures(self):
        df = pd.DataFrame({"x": [1, 2]})
        assert utils.sanitize_for_json(df) == [{"x": 1}, {"x": 2}]
        assert utils.sanitize_for_json(pd.Series([1.0, None])) == [1.0, None]

    def test_max_depth(self):
        with pytest.raises(RecursionError):
            utils.sanitize_for_json({"a": {"b": 1}}, max_depth=1)
