"""
Módulo principal de la aplicación Flask.

Expone las operaciones derivadas de los exports por país. Es una capa
delgada: toda la lógica vive en el procesador y el caché de operaciones.
"""

import logging
import os
import sys
import time
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from markupsafe import escape

# Configuración del path del sistema
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config import config_by_name

from .cache import build_operations_cache
from .nit_utils import find_operations_by_nit
from .procesador_csv import stats as source_stats
from .utils import sanitize_for_json

# ============================================================================
# CONFIGURACIÓN DE LOGGING
# ============================================================================


def setup_logging(app: Flask, log_file: str = "operaciones.log") -> None:
    """
    Configura logging con rotación: archivo detallado y consola resumida.

    Args:
        app: Instancia de Flask.
        log_file: Nombre del archivo de log.
    """
    log_dir = Path(app.config.get("LOG_FOLDER", "logs"))
    log_dir.mkdir(exist_ok=True)

    # Formato detallado para archivo
    file_formatter = logging.Formatter(
        "%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Formato simple para consola
    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    file_handler = RotatingFileHandler(
        log_dir / log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
    )
    file_handler.setFormatter(file_formatter)
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(logging.INFO)

    app.logger.handlers.clear()
    app.logger.addHandler(file_handler)
    app.logger.addHandler(console_handler)
    app.logger.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.setLevel(logging.INFO)


# ============================================================================
# DECORADORES
# ============================================================================


def handle_errors(f):
    """Decorador para manejo centralizado de errores."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ValueError as e:
            current_app.logger.warning(f"Error de validación en {f.__name__}: {str(e)}")
            response = {"error": str(e), "code": "VALIDATION_ERROR"}
            return jsonify(response), 400
        except KeyError as e:
            current_app.logger.error(f"Clave faltante en {f.__name__}: {str(e)}")
            response = {
                "error": f"Dato requerido faltante: {str(e)}",
                "code": "MISSING_KEY"
            }
            return jsonify(response), 400
        except Exception as e:
            current_app.logger.error(
                f"Error no controlado en {f.__name__}: {str(e)}", exc_info=True
            )
            response = {
                "error": "Error interno del servidor",
                "code": "INTERNAL_ERROR"
            }
            return jsonify(response), 500

    return decorated_function


def _summary(operations) -> dict:
    total = len(operations)
    by_country: dict = {}
    by_state: dict = {}
    for op in operations:
        by_country[op.pais] = by_country.get(op.pais, 0) + 1
        key = op.estados.cuota_operacional.value
        by_state[key] = by_state.get(key, 0) + 1
    return {
        "total_operaciones": total,
        "valor_total": sum(op.valor_total for op in operations),
        "progreso_promedio": round(sum(op.progreso_general for op in operations) / total, 1) if total else 0,
        "operaciones_validas": sum(1 for op in operations if op.validation.is_valid),
        "alertas": sum(len(op.alertas) for op in operations),
        "por_pais": by_country,
        "cuota_operacional": by_state,
    }


def create_app(config_name: str) -> Flask:
    """
    Crea y configura una instancia de la aplicación Flask.

    Args:
        config_name: Nombre del entorno de configuración.

    Returns:
        Instancia configurada de Flask.
    """
    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    setup_logging(app)
    app.logger.info(f"Iniciando aplicación en modo: {config_name}")

    CORS(app)

    cache = build_operations_cache(app.config)
    app.extensions["operations_cache"] = cache

    # ========================================================================
    # MIDDLEWARE Y HOOKS
    # ========================================================================

    @app.before_request
    def before_request_func():
        app.logger.debug(f"Request: {request.method} {request.path} | IP: {request.remote_addr}")

    @app.after_request
    def after_request_func(response):
        """Añade cabeceras de seguridad a la respuesta."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    # ========================================================================
    # RUTAS
    # ========================================================================

    @app.route("/api/health", methods=["GET"])
    def health_check():
        """Endpoint de verificación de estado."""
        snapshot = cache.snapshot
        return jsonify(
            {
                "status": "healthy",
                "timestamp": time.time(),
                "cache_loaded": snapshot is not None,
                "operations": len(snapshot.operations) if snapshot else 0,
                "cache_ttl": cache.ttl_seconds,
            }
        )

    @app.route("/api/operaciones", methods=["GET"])
    @handle_errors
    def list_operations():
        snapshot = cache.get()
        operations = list(snapshot.operations)

        nit = request.args.get("nit", "").strip()
        if nit:
            operations = find_operations_by_nit(operations, nit)
        pais = request.args.get("pais", "").strip().upper()
        if pais:
            operations = [op for op in operations if op.pais == pais]

        return jsonify(
            {
                "success": snapshot.has_data or not snapshot.errors,
                "data": sanitize_for_json(operations),
                "total": len(operations),
                "errors": list(snapshot.errors),
            }
        )

    @app.route("/api/operaciones/<operation_id>", methods=["GET"])
    @handle_errors
    def get_operation(operation_id: str):
        operation = cache.get().find(operation_id)
        if operation is None:
            return jsonify({"error": f"Operación {escape(operation_id)} no encontrada", "code": "NOT_FOUND"}), 404
        return jsonify({"success": True, "data": sanitize_for_json(operation)})

    @app.route("/api/admin/csv-raw", methods=["GET"])
    @handle_errors
    def csv_raw():
        """Filas crudas y cabeceras por país, para inspección administrativa."""
        snapshot = cache.get()
        pais = request.args.get("pais", "").strip().upper()
        countries = [pais] if pais else list(snapshot.rows.keys())
        if pais and pais not in snapshot.rows:
            raise ValueError(f"País sin datos cargados: {pais}")

        folder = Path(app.config["DATA_FOLDER"])
        files = app.config["CSV_FILES"]
        return jsonify(
            {
                "success": True,
                "data": {
                    code: {
                        "fields": list(snapshot.fields.get(code, ())),
                        "rows": [dict(r) for r in snapshot.rows.get(code, ())],
                        "stats": source_stats(folder / files[code]),
                    }
                    for code in countries
                },
            }
        )

    @app.route("/api/estadisticas", methods=["GET"])
    @handle_errors
    def statistics():
        snapshot = cache.get()
        return jsonify({"success": True, "data": _summary(snapshot.operations)})

    @app.route("/api/refresh", methods=["POST"])
    @handle_errors
    def refresh():
        snapshot = cache.refresh()
        return jsonify(
            {
                "success": not snapshot.errors,
                "operations": len(snapshot.operations),
                "errors": list(snapshot.errors),
            }
        )

    # ========================================================================
    # MANEJADORES DE ERRORES
    # ========================================================================

    @app.errorhandler(404)
    def not_found(error):
        """Maneja errores 404."""
        return jsonify(
            {
                "error": "Recurso no encontrado",
                "code": "NOT_FOUND",
                "path": escape(request.path),
            }
        ), 404

    @app.errorhandler(500)
    def internal_error(error):
        """Maneja errores internos del servidor."""
        app.logger.error(f"Error 500: {str(error)}", exc_info=True)
        return jsonify(
            {
                "error": "Error interno del servidor",
                "code": "INTERNAL_ERROR",
                "message": "Por favor, contacte al administrador si el problema persiste",
            }
        ), 500

    return app


# ============================================================================
# PUNTO DE ENTRADA PARA DESARROLLO
# ============================================================================

if __name__ == "__main__":
    app = create_app("development")
    app.run(debug=True, host="0.0.0.0", port=5000)
