import os
import random
import sys

import pytest

# Añadir el directorio raíz al path para asegurar que los módulos se encuentren
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.app import create_app
from app.procesador_csv import OperationProcessor
from tests.test_data import FIXED_NOW, TEST_SEED


@pytest.fixture(scope="module")
def app():
    """Crea y configura una nueva instancia de la aplicación para cada módulo de prueba."""
    # Usar la configuración de 'testing'
    app = create_app("testing")

    # Establecer el contexto de la aplicación
    with app.app_context():
        yield app


@pytest.fixture(scope="module")
def client(app):
    """Un cliente de prueba para la aplicación."""
    return app.test_client()


@pytest.fixture
def processor():
    """Procesador con reloj y semilla fijos."""
    return OperationProcessor(now=FIXED_NOW, seed=TEST_SEED)


@pytest.fixture
def seeded_rng():
    return random.Random(TEST_SEED)
