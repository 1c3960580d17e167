"""
Pruebas para date_utils.py

Aritmética de días hábiles, vencimientos y síntesis de fechas por fase con
reloj y fuente aleatoria fijos.
"""

import random
from datetime import date, datetime, timedelta

import pytest

from app.constants import PHASE_NAMES, EstadoProceso
from app.date_utils import (
    DateSynthesizer,
    add_business_days,
    adjust_to_business_day,
    adjust_to_working_day,
    business_days_between,
    generate_date_report,
    is_vencimiento_proximo,
    is_vencimiento_vencido,
    parse_iso_date,
    payment_term_days,
    subtract_business_days,
)
from app.schemas import Giro, Liberacion, PhaseProgress
from tests.test_data import FIXED_NOW, FIXED_TODAY, TEST_SEED

# 2025-09-01 es lunes
MONDAY = date(2025, 9, 1)
FRIDAY = date(2025, 9, 5)
SATURDAY = date(2025, 9, 6)


def make_phases(statuses_progress):
    return [
        PhaseProgress(phase=i + 1, name=PHASE_NAMES[i], progress=progress, status=status, reason="")
        for i, (status, progress) in enumerate(statuses_progress)
    ]


ALL_COMPLETED = [(EstadoProceso.COMPLETADO, 100)] * 5
MIXED = [
    (EstadoProceso.COMPLETADO, 100),
    (EstadoProceso.COMPLETADO, 100),
    (EstadoProceso.EN_PROCESO, 80),
    (EstadoProceso.PENDIENTE, 0),
    (EstadoProceso.PENDIENTE, 0),
]


@pytest.fixture
def synthesizer():
    return DateSynthesizer(now=FIXED_NOW, rng=random.Random(TEST_SEED))


# ============================================================================
# DÍAS HÁBILES
# ============================================================================


class TestBusinessDays:
    def test_add_skips_weekend(self):
        assert add_business_days(FRIDAY, 1) == date(2025, 9, 8)

    def test_add_negative(self):
        assert add_business_days(date(2025, 9, 8), -1) == FRIDAY
        assert subtract_business_days(date(2025, 9, 8), 1) == FRIDAY

    def test_add_calendar_days(self):
        assert add_business_days(FRIDAY, 1, business_days_only=False) == SATURDAY

    def test_add_zero(self):
        assert add_business_days(SATURDAY, 0) == SATURDAY

    def test_works_with_datetime(self):
        assert add_business_days(datetime(2025, 9, 5, 9, 30), 1) == datetime(2025, 9, 8, 9, 30)

    def test_between_is_closed_interval(self):
        assert business_days_between(MONDAY, date(2025, 9, 7)) == 5
        assert business_days_between(MONDAY, MONDAY) == 1
        assert business_days_between(date(2025, 9, 8), MONDAY) == 0

    def test_adjust_to_business_day(self):
        assert adjust_to_business_day(SATURDAY) == date(2025, 9, 8)
        assert adjust_to_business_day(SATURDAY, forward=False) == FRIDAY
        assert adjust_to_business_day(MONDAY) == MONDAY

    def test_adjust_to_working_day_skips_holidays(self):
        # 2025-12-25 es jueves festivo
        assert adjust_to_working_day(date(2025, 12, 25)) == date(2025, 12, 26)


class TestHelpers:
    @pytest.mark.parametrize(
        "terminos,expected",
        [("45 días fecha factura", 45), ("pago a 60", 60), ("90", 90), ("", 30), (None, 30)],
    )
    def test_payment_term_days(self, terminos, expected):
        assert payment_term_days(terminos) == expected

    def test_parse_iso_date(self):
        assert parse_iso_date("2025-07-25") == date(2025, 7, 25)
        assert parse_iso_date("2025-07-25T10:00:00") == date(2025, 7, 25)
        assert parse_iso_date("25/07/2025") is None
        assert parse_iso_date(None) is None


class TestVencimientos:
    def test_proximo_window(self):
        assert is_vencimiento_proximo(FIXED_TODAY, FIXED_TODAY)
        assert is_vencimiento_proximo(FIXED_TODAY + timedelta(days=7), FIXED_TODAY)
        assert not is_vencimiento_proximo(FIXED_TODAY + timedelta(days=8), FIXED_TODAY)
        assert not is_vencimiento_proximo(FIXED_TODAY - timedelta(days=1), FIXED_TODAY)
        assert not is_vencimiento_proximo(None, FIXED_TODAY)

    def test_custom_window(self):
        assert is_vencimiento_proximo(FIXED_TODAY + timedelta(days=10), FIXED_TODAY, dias_alerta=15)

    def test_vencido(self):
        assert is_vencimiento_vencido(FIXED_TODAY - timedelta(days=1), FIXED_TODAY)
        assert not is_vencimiento_vencido(FIXED_TODAY, FIXED_TODAY)
        assert not is_vencimiento_vencido(None, FIXED_TODAY)

    def test_mixed_date_and_datetime(self):
        assert is_vencimiento_vencido(date(2025, 8, 31), FIXED_NOW)


# ============================================================================
# SINTETIZADOR
# ============================================================================


class TestDateSynthesizer:
    def test_one_range_per_phase(self, synthesizer):
        ranges = synthesizer.generate_realistic_dates(make_phases(MIXED))
        assert [r.phase for r in ranges] == [1, 2, 3, 4, 5]

    def test_deterministic_with_seed(self):
        phases = make_phases(MIXED)
        first = DateSynthesizer(now=FIXED_NOW, seed=TEST_SEED).generate_realistic_dates(phases)
        second = DateSynthesizer(now=FIXED_NOW, seed=TEST_SEED).generate_realistic_dates(phases)
        assert first == second

    @pytest.mark.parametrize("statuses", [ALL_COMPLETED, MIXED, [(EstadoProceso.EN_PROCESO, 95)] * 5])
    def test_actual_never_after_now(self, synthesizer, statuses):
        ranges = synthesizer.generate_realistic_dates(make_phases(statuses))
        assert all(r.actual is None or r.actual <= FIXED_NOW for r in ranges)

    def test_completed_phases_have_actual(self, synthesizer):
        ranges = synthesizer.generate_realistic_dates(make_phases(ALL_COMPLETED))
        assert all(r.actual is not None for r in ranges)

    def test_pending_phases_have_no_actual(self, synthesizer):
        ranges = synthesizer.generate_realistic_dates(make_phases(MIXED))
        assert ranges[3].actual is None
        assert ranges[4].actual is None

    def test_start_not_before_dependency(self, synthesizer):
        ranges = synthesizer.generate_realistic_dates(make_phases(MIXED))
        for previous, current in zip(ranges, ranges[1:]):
            assert current.start >= (previous.actual or previous.estimated)

    def test_end_after_estimated(self, synthesizer):
        ranges = synthesizer.generate_realistic_dates(make_phases(MIXED))
        assert all(r.end > r.estimated for r in ranges)

    def test_phase_duration(self, synthesizer):
        completed = make_phases(ALL_COMPLETED)[1]
        duration = synthesizer.calculate_phase_duration(completed)
        assert duration["estimated_days"] == 4
        assert 3 <= duration["actual_days"] <= 5

        pending = make_phases(MIXED)[3]
        assert synthesizer.calculate_phase_duration(pending) == {"estimated_days": 8, "actual_days": None}

    def test_report(self, synthesizer):
        phases = make_phases(MIXED)
        report = generate_date_report(phases, synthesizer.generate_realistic_dates(phases))
        assert "REPORTE DE FECHAS DEL TIMELINE" in report
        assert "FASE 5: Operación Completada" in report
        assert "Actual:" in report


class TestVencimientoSynthesis:
    def test_giro_vencimiento_from_payment_terms(self, synthesizer):
        giro = Giro(valor_solicitado=1000, numero_giro="1er Giro")
        assert synthesizer.giro_vencimiento(giro, "", base=MONDAY) == date(2025, 10, 13)
        assert synthesizer.giro_vencimiento(giro, "5 días", base=MONDAY) == date(2025, 9, 8)

    def test_existing_giro_vencimiento_is_kept(self, synthesizer):
        giro = Giro(valor_solicitado=1000, numero_giro="1er Giro", fecha_vencimiento=date(2025, 1, 1))
        assert synthesizer.giro_vencimiento(giro) == date(2025, 1, 1)

    def test_liberacion_vencimiento(self, synthesizer):
        liberacion = Liberacion(numero=1, capital=1000, fecha="2025-07-25")
        assert synthesizer.liberacion_vencimiento(liberacion) == date(2025, 8, 15)

    def test_liberacion_with_invalid_date(self, synthesizer):
        assert synthesizer.liberacion_vencimiento(Liberacion(numero=1, capital=1, fecha="sin fecha")) is None

    def test_fill_missing_is_idempotent(self, synthesizer):
        giros = (
            Giro(valor_solicitado=1000, numero_giro="1er Giro"),
            Giro(valor_solicitado=2000, numero_giro="2do Giro", fecha_vencimiento=date(2025, 9, 3)),
        )
        liberaciones = (Liberacion(numero=1, capital=3000, fecha="2025-07-25"),)

        once = synthesizer.fill_missing_vencimientos(giros, liberaciones, "45 días")
        twice = synthesizer.fill_missing_vencimientos(*once, "45 días")

        assert once == twice
        assert once[0][1].fecha_vencimiento == date(2025, 9, 3)
        assert all(g.fecha_vencimiento is not None for g in once[0])
        assert giros[0].fecha_vencimiento is None
