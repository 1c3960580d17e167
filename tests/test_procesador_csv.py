"""
Suite de pruebas para el procesador de operaciones.

Incluye:
- Pruebas unitarias de las funciones de ensamblaje
- Derivación de operaciones a partir de filas sueltas
- Pruebas de integración end-to-end sobre los exports por país
- Manejo de casos edge (fuente ausente, filas sin cliente)
"""

import os
import random
import sys
import tempfile
import unittest

import pandas as pd

# Add project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.constants import COLOMBIA, MEXICO, ColumnNames, EstadoProceso
from app.nit_utils import SIN_NIT
from app.procesador_csv import (
    INCOTERMS_FALLBACK,
    RUTA_NO_ESPECIFICADA,
    SIN_ASIGNAR,
    SIN_OBSERVACIONES,
    OperationProcessor,
    build_trade_route,
    calculate_extracostos,
    collect_observaciones,
    format_incoterms,
    generate_operation_id,
    infer_company_type,
    operations_to_dataframe,
    parse,
    resolve_persona_asignada,
    rows_to_dataframe,
    stats,
)

# Importar datos de prueba centralizados
from tests.test_data import (
    CO_CSV_DATA,
    FIXED_NOW,
    IDENTITY_WITH_VALUE,
    MINIMAL_INFO,
    MX_CSV_DATA,
    TEST_CONFIG,
    TEST_SEED,
)

# ==================== FIXTURES Y HELPERS ====================


def make_row(info: str, docu: str = "- CLIENTE: DELTA COMERCIAL\n- NIT: 900111222", **extra) -> dict:
    """Fila cruda mínima con la columna de información general."""
    row = {
        ColumnNames.ITEM_ID: "<#T1|>",
        ColumnNames.DOCU_CLIENTE: docu,
        ColumnNames.INFO_GENERAL: info,
    }
    row.update(extra)
    return row


def release_info(capital: str, fecha: str = "2025-08-20") -> str:
    return (
        "CLIENTE: DELTA COMERCIAL\n"
        "PAÍS IMPORTADOR: COLOMBIA\n"
        "PAÍS EXPORTADOR: CHINA\n"
        "VALOR TOTAL DE COMPRA: 100000\n"
        "\n"
        "Liberación 1\n"
        f"Capital: {capital} USD\n"
        f"Fecha: {fecha}\n"
    )


class TempFileManager:
    """Gestor de archivos temporales para pruebas."""

    def __init__(self):
        self.temp_files = []
        self.temp_dir = tempfile.mkdtemp()

    def create_temp_file(self, content: str = "", suffix: str = ".csv", encoding: str = "utf-8") -> str:
        """Crea un archivo temporal con contenido y registra su ruta."""
        fd, path = tempfile.mkstemp(suffix=suffix, dir=self.temp_dir)
        os.close(fd)
        with open(path, "w", encoding=encoding) as f:
            f.write(content)
        self.temp_files.append(path)
        return path

    def cleanup(self):
        """Limpia todos los archivos temporales."""
        for path in self.temp_files:
            if os.path.exists(path):
                os.remove(path)

        if os.path.exists(self.temp_dir):
            os.rmdir(self.temp_dir)


# ==================== PRUEBAS UNITARIAS ====================


class TestAssemblyHelpers(unittest.TestCase):
    """Pruebas para las funciones de ensamblaje."""

    def test_generate_operation_id_is_deterministic(self):
        first = generate_operation_id("ACME", "<#C1001|>", 0)
        self.assertEqual(first, generate_operation_id(" acme ", "<#C1001|>", 0))
        self.assertNotEqual(first, generate_operation_id("ACME", "<#C1001|>", 1))
        self.assertTrue(first.startswith("op-"))
        self.assertEqual(len(first), 19)

    def test_infer_company_type(self):
        self.assertEqual(infer_company_type("ACME IMPORTACIONES SAS"), "IMPORTADORA")
        self.assertEqual(infer_company_type("Andes Exportadora"), "EXPORTADORA")
        self.assertEqual(infer_company_type("Comercializadora del Norte"), "COMERCIALIZADORA")
        self.assertEqual(infer_company_type("Beta Distribuciones"), "DISTRIBUIDORA")
        self.assertEqual(infer_company_type("Gamma LTDA"), "EMPRESA")
        self.assertEqual(infer_company_type("MALE"), "COMERCIAL")

    def test_build_trade_route(self):
        self.assertEqual(build_trade_route("CHINA", "COLOMBIA"), "CHINA → COLOMBIA")
        self.assertEqual(build_trade_route("", "COLOMBIA"), RUTA_NO_ESPECIFICADA)

    def test_format_incoterms(self):
        self.assertEqual(format_incoterms("FOB", "DAP"), "FOB / DAP")
        self.assertEqual(format_incoterms("EXW", ""), "EXW")
        self.assertEqual(format_incoterms("", ""), INCOTERMS_FALLBACK)

    def test_calculate_extracostos(self):
        extracostos = calculate_extracostos(100000)
        self.assertEqual(extracostos.comision_bancaria, 2000)
        self.assertEqual(extracostos.gastos_logisticos, 3000)
        self.assertEqual(extracostos.seguro_carga, 1000)
        self.assertEqual(extracostos.total_extracostos, 6000)

    def test_extracostos_round_down(self):
        self.assertEqual(calculate_extracostos(999).comision_bancaria, 19)

    def test_collect_observaciones(self):
        row = {"Notas internas": "Revisar BL", "Observaciones": "  Urgente  ", "Nombre": "x"}
        self.assertEqual(collect_observaciones(row), "Revisar BL; Urgente")
        self.assertEqual(collect_observaciones({}), SIN_OBSERVACIONES)
        self.assertEqual(
            collect_observaciones({}, "OBSERVACIONES: Carga frágil"), "Carga frágil"
        )

    def test_resolve_persona_asignada(self):
        self.assertEqual(
            resolve_persona_asignada({
                ColumnNames.EQUIPO_COMERCIAL: "Equipo Andino",
                ColumnNames.PERSONA_ASIGNADA: "Laura Gómez",
            }),
            "Equipo Andino",
        )
        self.assertEqual(
            resolve_persona_asignada({ColumnNames.EQUIPO_COMERCIAL: " ", ColumnNames.PERSONA_ASIGNADA: "Laura"}),
            "Laura",
        )
        self.assertEqual(resolve_persona_asignada({}), SIN_ASIGNAR)


class TestOperationProcessorConfig(unittest.TestCase):
    """Pruebas de construcción del procesador."""

    def test_from_config(self):
        processor = OperationProcessor.from_config(TEST_CONFIG, now=FIXED_NOW)
        self.assertEqual(processor.seed, TEST_SEED)
        self.assertEqual(processor.alert_window_days, 7)
        self.assertEqual(processor.min_field_ratio, 0.5)
        self.assertEqual(processor.now, FIXED_NOW)

    def test_new_synthesizer_uses_fixed_now(self):
        synthesizer = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).new_synthesizer()
        self.assertEqual(synthesizer.now, FIXED_NOW)


# ==================== DERIVACIÓN POR FILA ====================


class TestDeriveOperation(unittest.TestCase):
    """Pruebas de derivación de una operación desde una fila cruda."""

    def setUp(self):
        self.processor = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED)

    def test_row_without_client_is_skipped(self):
        self.assertIsNone(self.processor.derive_operation({ColumnNames.ITEM_ID: "<#X|>"}, COLOMBIA))

    def test_client_falls_back_to_name_column(self):
        row = {ColumnNames.NOMBRE: "Solo Nombre", ColumnNames.INFO_GENERAL: ""}
        operation = self.processor.derive_operation(row, COLOMBIA)
        self.assertEqual(operation.cliente_completo, "Solo Nombre")
        self.assertEqual(operation.cliente_nit, SIN_NIT)

    def test_no_giros_nor_releases_are_pending(self):
        operation = self.processor.derive_operation(make_row(MINIMAL_INFO), COLOMBIA)
        phase3 = operation.progreso.phase_details[2]
        phase5 = operation.progreso.phase_details[4]

        self.assertEqual((phase3.progress, phase3.status), (0, EstadoProceso.PENDIENTE))
        self.assertEqual((phase5.progress, phase5.status), (0, EstadoProceso.PENDIENTE))
        self.assertEqual(operation.montos_liberados, 0.0)
        self.assertEqual(operation.montos_pendientes, 10000.0)

    def test_total_falls_back_to_operation_value(self):
        info = "CLIENTE: Kappa\nPAÍS EXPORTADOR: CHINA\n"
        warnings = []
        operation = self.processor.derive_operation(make_row(info, IDENTITY_WITH_VALUE), COLOMBIA, 0, warnings=warnings)

        self.assertEqual(operation.valor_total, 80000.0)
        self.assertEqual(operation.valor_operacion, 80000.0)
        self.assertTrue(any(w.startswith("Fila 1:") and "Valor total inferido" in w for w in warnings))

    def test_default_importer_follows_profile(self):
        info = "CLIENTE: DELTA\nPAÍS EXPORTADOR: PERÚ\nVALOR TOTAL DE COMPRA: 10000\n"
        self.assertEqual(self.processor.derive_operation(make_row(info), MEXICO).pais_importador, "México")
        self.assertEqual(self.processor.derive_operation(make_row(info), COLOMBIA).pais_importador, "Colombia")

    def test_reconciliation_warning(self):
        operation = self.processor.derive_operation(make_row(release_info("50000")), COLOMBIA)
        alertas = [a for a in operation.alertas if "Diferencia de conciliación" in a.mensaje]

        self.assertEqual(len(alertas), 1)
        self.assertEqual(alertas[0].tipo, "warning")
        self.assertIn("$50,000", alertas[0].mensaje)

    def test_over_release_is_error(self):
        operation = self.processor.derive_operation(make_row(release_info("150000")), COLOMBIA)
        alertas = [a for a in operation.alertas if "Diferencia de conciliación" in a.mensaje]

        self.assertEqual(len(alertas), 1)
        self.assertEqual(alertas[0].tipo, "error")

    def test_release_within_tolerance_has_no_reconciliation_alert(self):
        operation = self.processor.derive_operation(make_row(release_info("99500")), COLOMBIA)
        self.assertFalse(any("conciliación" in a.mensaje for a in operation.alertas))

    def test_initial_stage_and_pending_fee_alerts(self):
        operation = self.processor.derive_operation(make_row(MINIMAL_INFO), COLOMBIA)
        mensajes = [a.mensaje for a in operation.alertas]

        self.assertIn("Operación en etapa inicial", mensajes)
        self.assertIn("Cuota operacional pendiente de pago", mensajes)

    def test_missing_vencimientos_are_filled(self):
        info = MINIMAL_INFO + "\nVALOR SOLICITADO: 4000\nNÚMERO DE GIRO: 1er Giro\n"
        operation = self.processor.derive_operation(make_row(info), COLOMBIA)

        self.assertEqual(len(operation.giros), 1)
        self.assertIsNotNone(operation.giros[0].fecha_vencimiento)

    def test_timeline_matches_phases(self):
        operation = self.processor.derive_operation(make_row(MINIMAL_INFO), COLOMBIA)

        self.assertEqual([event.id for event in operation.timeline], [f"phase-{i}" for i in range(1, 6)])
        self.assertEqual(len(operation.date_ranges), 5)
        for event in operation.timeline:
            self.assertIsNotNone(event.fecha)


# ==================== PRUEBAS DE INTEGRACIÓN ====================


class TestProcessContentColombia(unittest.TestCase):
    """Export de Colombia completo, con columna de documento legal."""

    @classmethod
    def setUpClass(cls):
        cls.result = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).process_content(CO_CSV_DATA)

    def test_result_summary(self):
        self.assertTrue(self.result.success)
        self.assertEqual(self.result.country, "CO")
        self.assertEqual(self.result.total_processed, 2)
        self.assertEqual(len(self.result.data), 2)
        self.assertEqual(self.result.errors, [])
        self.assertIn(ColumnNames.DOC_LEGAL_X_COMP, self.result.fields)

    def test_completed_operation(self):
        op = self.result.data[0]

        self.assertEqual(op.cliente_completo, "ACME IMPORTACIONES SAS")
        self.assertEqual(op.cliente_nit, "900123456-7")
        self.assertEqual(op.tipo_empresa, "IMPORTADORA")
        self.assertEqual(op.persona_asignada, "Equipo Andino")
        self.assertEqual(op.ruta_comercial, "CHINA → COLOMBIA")
        self.assertEqual(op.incoterms, "FOB / DAP")
        self.assertEqual(op.valor_total, 100000.0)
        self.assertEqual(op.moneda, "USD")
        self.assertEqual(op.proveedor_beneficiario, "SHENZHEN TOOLS LTD")
        self.assertEqual(op.numero_operacion, "OP-2025-0001")
        self.assertEqual(op.progreso_general, 100)
        self.assertEqual(op.montos_liberados, 100000.0)
        self.assertEqual(op.montos_pendientes, 0.0)
        self.assertEqual(op.observaciones, 'Carga "frágil", manejar con cuidado')
        self.assertTrue(op.validation.is_valid)

    def test_completed_operation_states(self):
        estados = self.result.data[0].estados.to_dict()
        self.assertTrue(all(value == "completado" for value in estados.values()))

    def test_overdue_release_alert(self):
        alertas = self.result.data[0].alertas
        vencidas = [a for a in alertas if a.mensaje.startswith("Liberación 1 vencida")]

        self.assertEqual(len(vencidas), 1)
        self.assertEqual(vencidas[0].tipo, "error")
        self.assertIn("2025-08-15", vencidas[0].mensaje)
        self.assertFalse(any("conciliación" in a.mensaje for a in alertas))

    def test_operation_in_progress(self):
        op = self.result.data[1]

        self.assertEqual(op.cliente_completo, "Beta Distribuciones")
        self.assertEqual(op.tipo_empresa, "DISTRIBUIDORA")
        self.assertEqual(op.pais_importador, "Colombia")
        self.assertEqual(op.persona_asignada, "Carlos Ruiz")
        self.assertEqual(op.moneda, "EUR")
        self.assertEqual(op.incoterms, "EXW")
        self.assertEqual(op.numero_operacion, "OP-2025-0002")
        self.assertEqual([p.progress for p in op.progreso.phase_details], [65, 60, 36, 0, 0])
        self.assertEqual(op.progreso_general, 31)
        self.assertEqual(op.progreso.current_phase, 1)
        self.assertEqual(op.progreso.next_phase, 4)

    def test_operation_in_progress_states(self):
        self.assertEqual(
            self.result.data[1].estados.to_dict(),
            {
                "cotizacion": "en_proceso",
                "documentos_legales": "pendiente",
                "cuota_operacional": "en_proceso",
                "compra_internacional": "pendiente",
                "giro_proveedor": "en_proceso",
                "factura_final": "pendiente",
            },
        )

    def test_ids_are_unique(self):
        ids = [op.id for op in self.result.data]
        self.assertEqual(len(ids), len(set(ids)))

    def test_reports(self):
        self.assertIn("REPORTE CONSOLIDADO DE VALIDACIÓN", self.result.validation_report)
        self.assertIn("REPORTE CONSOLIDADO DE FECHAS", self.result.date_report)
        self.assertIn("Vencimientos vencidos: 1", self.result.date_report)

    def test_to_dict(self):
        payload = self.result.to_dict()
        self.assertNotIn("raw_data", payload)
        self.assertEqual(len(self.result.to_dict(include_raw=True)["raw_data"]), 2)
        self.assertEqual(payload["data"][0]["extracostos"]["comision_bancaria"], 2000)


class TestProcessContentMexico(unittest.TestCase):
    """Export de México: sin columna de documento legal."""

    @classmethod
    def setUpClass(cls):
        cls.result = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).process_content(MX_CSV_DATA)

    def test_country_detected_from_header(self):
        self.assertEqual(self.result.country, "MX")
        self.assertEqual(self.result.total_processed, 2)

    def test_row_without_client_is_reported(self):
        self.assertEqual(len(self.result.data), 1)
        self.assertEqual(self.result.errors, ["Fila 2: sin cliente identificable"])

    def test_operation(self):
        op = self.result.data[0]

        self.assertEqual(op.pais, "MX")
        self.assertEqual(op.cliente_nit, "MAL850101AB1")
        self.assertEqual(op.tipo_empresa, "COMERCIAL")
        self.assertEqual(op.persona_asignada, "Equipo Norte")

        phase3 = op.progreso.phase_details[2]
        self.assertEqual((phase3.progress, phase3.status), (95, EstadoProceso.EN_PROCESO))
        self.assertEqual(op.progreso_general, 99)

    def test_states(self):
        estados = self.result.data[0].estados
        self.assertIs(estados.documentos_legales, EstadoProceso.COMPLETADO)
        self.assertIs(estados.giro_proveedor, EstadoProceso.EN_PROCESO)
        self.assertIs(estados.compra_internacional, EstadoProceso.EN_PROCESO)

    def test_explicit_profile_overrides_detection(self):
        result = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).process_content(MX_CSV_DATA, COLOMBIA)
        self.assertEqual(result.country, "CO")
        self.assertIs(result.data[0].estados.documentos_legales, EstadoProceso.EN_PROCESO)


class TestDeterminism(unittest.TestCase):
    """Misma entrada, mismo reloj y misma semilla producen la misma salida."""

    def test_same_seed_same_output(self):
        first = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).process_content(CO_CSV_DATA)
        second = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).process_content(CO_CSV_DATA)

        self.assertEqual([op.id for op in first.data], [op.id for op in second.data])
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_injected_rng_repeats_across_passes(self):
        processor = OperationProcessor(now=FIXED_NOW, rng=random.Random(TEST_SEED))
        first = processor.process_content(CO_CSV_DATA)
        second = processor.process_content(CO_CSV_DATA)

        self.assertEqual(
            [op.date_ranges for op in first.data], [op.date_ranges for op in second.data]
        )
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_actual_dates_not_in_future(self):
        result = OperationProcessor(now=FIXED_NOW, seed=7).process_content(CO_CSV_DATA)
        for op in result.data:
            for date_range in op.date_ranges:
                if date_range.actual is not None:
                    self.assertLessEqual(date_range.actual, FIXED_NOW)


# ==================== ARCHIVOS Y EXPORTACIÓN ====================


class TestProcessFile(unittest.TestCase):
    def setUp(self):
        self.temp_manager = TempFileManager()
        self.processor = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED)

    def tearDown(self):
        self.temp_manager.cleanup()

    def test_missing_file(self):
        result = self.processor.process_file("/path/to/nonexistent/export.csv", COLOMBIA)

        self.assertFalse(result.success)
        self.assertEqual(result.country, "CO")
        self.assertIn("no encontrado", result.errors[0].lower())

    def test_latin1_file(self):
        path = self.temp_manager.create_temp_file(MX_CSV_DATA, encoding="latin1")
        result = self.processor.process_file(path)

        self.assertTrue(result.success)
        self.assertEqual(result.data[0].cliente_completo, "MALE")

    def test_empty_file(self):
        path = self.temp_manager.create_temp_file("")
        result = self.processor.process_file(path)
        self.assertFalse(result.success)

    def test_stats(self):
        path = self.temp_manager.create_temp_file(CO_CSV_DATA)
        info = stats(path)

        self.assertTrue(info["exists"])
        self.assertGreater(info["size"], 0)
        self.assertEqual(info["row_count_estimate"], 2)
        self.assertIsNotNone(info["last_modified"])

    def test_stats_missing_file(self):
        self.assertEqual(
            stats("/path/to/nonexistent/export.csv"),
            {"exists": False, "size": 0, "row_count_estimate": 0, "last_modified": None},
        )


class TestDataFrames(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.result = OperationProcessor(now=FIXED_NOW, seed=TEST_SEED).process_content(CO_CSV_DATA)

    def test_operations_to_dataframe(self):
        df = operations_to_dataframe(self.result.data)

        self.assertIsInstance(df, pd.DataFrame)
        self.assertEqual(len(df), 2)
        self.assertEqual(df.loc[0, "cliente"], "ACME IMPORTACIONES SAS")
        self.assertEqual(df["valor_total"].sum(), 150000.0)
        self.assertEqual(df.loc[1, "estado_giro_proveedor"], "en_proceso")
        self.assertEqual(str(df["fase_actual"].dtype), "Int64")
        self.assertTrue(pd.isna(df.loc[0, "fase_actual"]))

    def test_empty_operations(self):
        self.assertTrue(operations_to_dataframe([]).empty)

    def test_rows_to_dataframe(self):
        df = rows_to_dataframe(self.result.raw_data, self.result.fields)
        self.assertEqual(list(df.columns), self.result.fields)
        self.assertEqual(df.loc[1, ColumnNames.DOC_LEGAL_X_COMP], "")

    def test_module_parse(self):
        parsed = parse(MX_CSV_DATA)
        self.assertEqual(len(parsed["rows"]), 2)
        self.assertNotIn(ColumnNames.DOC_LEGAL_X_COMP, parsed["fields"])


if __name__ == "__main__":
    unittest.main()
