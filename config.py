import os

from dotenv import load_dotenv

# Cargar variables de entorno desde un archivo .env
load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _optional_int(name: str):
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else None


class Config:
    """Configuración base."""

    SECRET_KEY = os.environ.get("SECRET_KEY") or "una-clave-secreta-muy-dificil-de-adivinar"
    DEBUG = False
    TESTING = False

    # Fuentes de datos: un export por país
    DATA_FOLDER = os.environ.get("DATA_FOLDER") or os.path.join(BASE_DIR, "data")
    CSV_FILES = {
        "CO": os.environ.get("CSV_FILE_CO") or "integra_co_data.csv",
        "MX": os.environ.get("CSV_FILE_MX") or "integra_mx_data.csv",
    }

    # Procesamiento
    CACHE_TTL_SECONDS = int(os.environ.get("CACHE_TTL_SECONDS", 30))
    ALERT_WINDOW_DAYS = int(os.environ.get("ALERT_WINDOW_DAYS", 7))
    RELEASE_BUFFER_DAYS = int(os.environ.get("RELEASE_BUFFER_DAYS", 15))
    DATE_RANDOM_SEED = _optional_int("DATE_RANDOM_SEED")
    MIN_ROW_FIELD_RATIO = float(os.environ.get("MIN_ROW_FIELD_RATIO", 0.5))

    LOG_FOLDER = os.environ.get("LOG_FOLDER") or "logs"


class DevelopmentConfig(Config):
    """Configuración para desarrollo."""

    DEBUG = True
    FLASK_ENV = "development"


class ProductionConfig(Config):
    """Configuración para producción."""

    FLASK_ENV = "production"
    CACHE_TTL_SECONDS = int(os.environ.get("CACHE_TTL_SECONDS", 120))


class TestingConfig(Config):
    """Configuración para pruebas."""

    TESTING = True
    SECRET_KEY = "test-secret-key"
    DATA_FOLDER = os.path.join(BASE_DIR, "tests", "fixtures")
    DATE_RANDOM_SEED = 42
    CACHE_TTL_SECONDS = 3600


# Mapeo de nombres de configuración a clases
config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
