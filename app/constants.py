from dataclasses import dataclass
from enum import Enum
from typing import Dict, Final, List, Optional, Tuple


class ColumnNames:
    """Nombres de columnas del export de operaciones."""

    # Identificadores y Básicos
    NOMBRE: Final[str] = "Nombre"
    ITEM_ID: Final[str] = "Item ID"
    COMPLETADO: Final[str] = "Completado"
    PERSONA_ASIGNADA: Final[str] = "Persona asignada"
    PROCESO: Final[str] = "Proceso"
    EQUIPO_COMERCIAL: Final[str] = "15. Equipo Comercial"

    # Campos de texto libre
    DOCU_CLIENTE: Final[str] = "1.Docu. Cliente"
    INFO_GENERAL: Final[str] = "5. Info Gnal + Info Compra Int"

    # Estados por fase
    FIRMA_COTIZACION: Final[str] = "1. ESTADO Firma Cotización"
    CUOTA_OPERACIONAL: Final[str] = "4. ESTADO pago Cuota Operacional"
    DOC_LEGAL_X_COMP: Final[str] = "8. ESTADO Doc Legal X Comp"
    PROFORMA_FACTURA: Final[str] = "9. ESTADO Proforma / Factura final"
    GIRO_PROVEEDOR: Final[str] = "10. ESTADO Giro Proveedor"


REQUIRED_COLUMNS: Final[Tuple[str, ...]] = (
    ColumnNames.NOMBRE,
    ColumnNames.DOCU_CLIENTE,
    ColumnNames.INFO_GENERAL,
)


class EstadoProceso(Enum):
    """Estados posibles de una fase o de un estado de proceso."""

    PENDIENTE = "pendiente"
    EN_PROCESO = "en_proceso"
    COMPLETADO = "completado"
    RECHAZADO = "rechazado"


class Currency(Enum):
    """Monedas reconocidas en los campos de pago."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    COP = "COP"

    @classmethod
    def from_code(cls, code: Optional[str]) -> Optional["Currency"]:
        """Devuelve la moneda para un código ISO o None si no se reconoce."""
        if not code:
            return None
        try:
            return cls(code.strip().upper())
        except ValueError:
            return None


DEFAULT_CURRENCY: Final[Currency] = Currency.USD


# ============================================================================
# PERFILES DE PAÍS
# ============================================================================
@dataclass(frozen=True)
class CountryProfile:
    """
    Descriptor estático de una jurisdicción soportada.

    Attributes:
        code: Código ISO del país ("CO", "MX").
        name: Nombre para mostrar.
        has_doc_legal_x_comp: Si el export trae la columna de documento legal
            por compra; cuando no la trae, esa condición se da por cumplida.
        default_importer: País importador asumido cuando el texto no lo dice.
    """

    code: str
    name: str
    has_doc_legal_x_comp: bool
    default_importer: str

    @property
    def extra_columns(self) -> Tuple[str, ...]:
        """Columnas opcionales que solo existen para este país."""
        if self.has_doc_legal_x_comp:
            return (ColumnNames.DOC_LEGAL_X_COMP,)
        return ()


COLOMBIA: Final[CountryProfile] = CountryProfile(
    code="CO",
    name="Colombia",
    has_doc_legal_x_comp=True,
    default_importer="Colombia",
)

MEXICO: Final[CountryProfile] = CountryProfile(
    code="MX",
    name="México",
    has_doc_legal_x_comp=False,
    default_importer="México",
)

COUNTRY_PROFILES: Final[Dict[str, CountryProfile]] = {
    COLOMBIA.code: COLOMBIA,
    MEXICO.code: MEXICO,
}


def detect_country_profile(fields: List[str]) -> CountryProfile:
    """Selecciona el perfil según las columnas opcionales presentes en la cabecera."""
    present = set(fields or [])
    for profile in COUNTRY_PROFILES.values():
        if profile.extra_columns and all(col in present for col in profile.extra_columns):
            return profile
    return MEXICO


# ============================================================================
# FASES Y UMBRALES
# ============================================================================
PHASE_NAMES: Final[Tuple[str, ...]] = (
    "Solicitud Enviada",
    "Documentos de Operación y Pago Cuota Operacional",
    "Procesamiento de Pago",
    "Envío y Logística",
    "Operación Completada",
)

PHASE_WEIGHTS: Final[Tuple[int, ...]] = (15, 20, 25, 25, 15)


class ProcessingThresholds:
    """Umbrales y tolerancias del cálculo de progreso y validación."""

    RELEASE_TOLERANCE: float = 1000.0  # Unidades monetarias
    DEPENDENCY_TOLERANCE: int = 10  # Puntos porcentuales
    VALIDATION_DEPENDENCY_TOLERANCE: int = 25
    PHASE_ORDER_TOLERANCE: int = 5
    MIN_PROGRESS_PER_COMPLETED_PHASE: int = 15
    PAYMENT_CEILING: int = 90
    MIN_ROW_FIELD_RATIO: float = 0.5


EXTRA_COST_RATES: Final[Dict[str, float]] = {
    "comision_bancaria": 0.02,
    "gastos_logisticos": 0.03,
    "seguro_carga": 0.01,
}
