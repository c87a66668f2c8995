#!/usr/bin/env python3
"""
Unit tests for dose calculation
"""

import pytest
import sys
import os
from types import SimpleNamespace

from pydantic import ValidationError

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dosing_engine.calculator import DoseCalculator, round_half_up
from dosing_engine.config import CalvertSettings, EngineConfig, load_engine_config
from dosing_engine.error_codes import ErrorCode, MissingBiometricError
from dosing_engine.schema import DosingMode, Drug, PatientBiometrics, Regimen


def make_patient(**overrides):
    values = dict(weight_kg=70, height_cm=170, age_years=60, sex="F", bsa_m2=1.8, creatinine_clearance=80)
    values.update(overrides)
    return PatientBiometrics(**values)


def carboplatin(auc):
    return Drug(name="Carboplatin", dosage=f"AUC {auc}", unit="AUC", route="IV")


class TestCalvertDosing:

    def setup_method(self):
        self.calculator = DoseCalculator()

    @pytest.mark.parametrize("auc,clearance,expected", [
        (5, 80, 525),
        (6, 60, 510),
        (2, 80, 210),
        (5, 200, 750),
        (5, 125, 750),
        (5, 0, 125),
    ])
    def test_calvert_formula(self, auc, clearance, expected):
        result = self.calculator.calculate(carboplatin(auc), make_patient(creatinine_clearance=clearance))
        assert result.final_dose == expected
        assert result.calculated_dose == expected
        assert result.unit == "mg"
        assert result.dosing_mode == DosingMode.RENAL_CALVERT

    def test_clearance_above_cap_does_not_raise_dose(self):
        capped = self.calculator.calculate(carboplatin(5), make_patient(creatinine_clearance=125))
        higher = self.calculator.calculate(carboplatin(5), make_patient(creatinine_clearance=400))
        assert higher.final_dose == capped.final_dose

    def test_notes_record_cap(self):
        result = self.calculator.calculate(carboplatin(5), make_patient(creatinine_clearance=200))
        assert result.adjustment_notes == "Calvert: AUC 5 x (GFR 125 + 25); clearance capped at 125 mL/min"

        result = self.calculator.calculate(carboplatin(5), make_patient(creatinine_clearance=80))
        assert result.adjustment_notes == "Calvert: AUC 5 x (GFR 80 + 25)"

    @pytest.mark.parametrize("auc", [0.01, 0.1, 1, 5])
    @pytest.mark.parametrize("clearance", [0, 10, 125, 500])
    def test_positive_target_always_gives_positive_dose(self, auc, clearance):
        result = self.calculator.calculate(carboplatin(auc), make_patient(creatinine_clearance=clearance))
        assert result.final_dose > 0

    def test_tiny_target_is_raised_to_one_unit(self):
        result = self.calculator.calculate(carboplatin(0.01), make_patient(creatinine_clearance=0))
        assert result.final_dose == 1
        assert result.calculated_dose == result.final_dose

    def test_configured_cap(self):
        calculator = DoseCalculator(EngineConfig(calvert=CalvertSettings(gfr_cap=100)))
        result = calculator.calculate(carboplatin(5), make_patient(creatinine_clearance=200))
        assert result.final_dose == 625


class TestScaledDosing:

    def setup_method(self):
        self.calculator = DoseCalculator()

    def test_bsa_scaled(self):
        drug = Drug(name="Paclitaxel", dosage="175", unit="mg/m²", route="IV")
        result = self.calculator.calculate(drug, make_patient(bsa_m2=1.8))
        assert result.final_dose == 315
        assert result.dosing_mode == DosingMode.BSA_SCALED

    def test_weight_scaled(self):
        drug = Drug(name="Bevacizumab", dosage="15", unit="mg/kg", route="IV")
        result = self.calculator.calculate(drug, make_patient(weight_kg=70))
        assert result.final_dose == 1050
        assert result.dosing_mode == DosingMode.WEIGHT_SCALED

    def test_fixed_is_unchanged(self):
        drug = Drug(name="Pembrolizumab", dosage="200", unit="mg", route="IV")
        result = self.calculator.calculate(drug, make_patient())
        assert result.final_dose == 200
        assert result.dosing_mode == DosingMode.FIXED

    def test_half_up_rounding(self):
        bsa = Drug(name="Test", dosage="1.5", unit="mg/m²", route="IV")
        assert self.calculator.calculate(bsa, make_patient(bsa_m2=1.5)).final_dose == 2.3

        calvert = self.calculator.calculate(carboplatin(0.5), make_patient(creatinine_clearance=0))
        assert calvert.final_dose == 13

    @pytest.mark.parametrize("value,decimals,expected", [
        (2.25, 1, 2.3),
        (2.35, 1, 2.4),
        (12.5, 0, 13.0),
        (314.99, 1, 315.0),
        (315.00000000000006, 1, 315.0),
    ])
    def test_round_half_up(self, value, decimals, expected):
        assert round_half_up(value, decimals) == expected

    @pytest.mark.parametrize("dosage,unit", [
        ("AUC 5", "AUC"), ("175", "mg/m²"), ("15", "mg/kg"), ("200", "mg"), ("1.2", "g/m²"), ("30", "units"),
    ])
    def test_calculated_equals_final_in_every_mode(self, dosage, unit):
        drug = Drug(name="Drug", dosage=dosage, unit=unit, route="IV")
        result = self.calculator.calculate(drug, make_patient(bsa_m2=1.73, weight_kg=68.4))
        assert result.calculated_dose == result.final_dose

    def test_every_mode_has_a_formula(self):
        assert set(self.calculator._formulas) == set(DosingMode)


class TestMissingBiometrics:

    def setup_method(self):
        self.calculator = DoseCalculator()

    def test_missing_bsa_raises(self):
        drug = Drug(name="Paclitaxel", dosage="175", unit="mg/m²", route="IV")
        with pytest.raises(MissingBiometricError) as exc_info:
            self.calculator.calculate(drug, SimpleNamespace(weight_kg=70))
        assert exc_info.value.details["attribute"] == "bsa_m2"

    def test_non_finite_value_raises(self):
        with pytest.raises(MissingBiometricError):
            self.calculator.calculate(carboplatin(5), SimpleNamespace(creatinine_clearance=float("nan")))

    def test_fixed_dose_needs_no_biometrics(self):
        drug = Drug(name="Pembrolizumab", dosage="200", unit="mg", route="IV")
        assert self.calculator.calculate(drug, SimpleNamespace()).final_dose == 200


class TestRegimenCalculation:

    def setup_method(self):
        self.calculator = DoseCalculator(load_engine_config())

    def test_one_bad_drug_does_not_stop_the_others(self):
        regimen = Regimen(id="test", name="Test", drugs=[
            Drug(name="Mystery", dosage="10", unit="mg/kg/dose", route="IV"),
            Drug(name="Carboplatin", dosage="AUC5-6", unit="AUC", route="IV"),
            Drug(name="Paclitaxel", dosage="175", unit="mg/m²", route="IV"),
            Drug(name="Empty", dosage="abc", unit="mg", route="IV"),
        ])
        report = self.calculator.calculate_regimen(regimen, make_patient())

        assert [d.name for d in report.calculated_drugs] == ["Paclitaxel"]
        fields = {issue.field: issue.code for issue in report.result.errors}
        assert fields["regimen.drugs[0].unit"] == ErrorCode.DOSE_UNKNOWN_UNIT.value
        assert fields["regimen.drugs[1].dosage"] == ErrorCode.DOSE_INVALID_AUC.value
        assert fields["regimen.drugs[3].dosage"] == ErrorCode.DOSE_NON_NUMERIC_DOSAGE.value

    def test_missing_biometric_is_reported_on_patient_field(self):
        regimen = Regimen(id="test", name="Test", drugs=[
            carboplatin(5),
            Drug(name="Paclitaxel", dosage="175", unit="mg/m²", route="IV"),
        ])
        report = self.calculator.calculate_regimen(regimen, SimpleNamespace(bsa_m2=1.8))

        assert [d.name for d in report.calculated_drugs] == ["Paclitaxel"]
        assert report.result.errors[0].field == "patient.creatinine_clearance"
        assert report.result.errors[0].code == ErrorCode.DOSE_MISSING_BIOMETRIC.value

    def test_accepts_plain_drug_list(self):
        report = self.calculator.calculate_regimen([carboplatin(5)], make_patient())
        assert report.calculated_drugs[0].final_dose == 525
        assert report.result.is_valid

    def test_overflowing_dosage_is_reported_per_drug(self):
        regimen = Regimen(id="test", name="Test", drugs=[
            Drug(name="Fluorouracil", dosage="9" * 400, unit="mg/m²", route="IV"),
            Drug(name="Carboplatin", dosage="AUC" + "9" * 400, unit="AUC", route="IV"),
            Drug(name="Pembrolizumab", dosage="200000", unit="mg", route="IV"),
            Drug(name="Paclitaxel", dosage="175", unit="mg/m²", route="IV"),
        ])
        report = self.calculator.calculate_regimen(regimen, make_patient())

        assert [d.name for d in report.calculated_drugs] == ["Paclitaxel"]
        assert report.calculated_drugs[0].final_dose == 315
        fields = {issue.field: issue.code for issue in report.result.errors}
        assert fields == {
            "regimen.drugs[0].dosage": ErrorCode.DOSE_NON_NUMERIC_DOSAGE.value,
            "regimen.drugs[1].dosage": ErrorCode.DOSE_NON_NUMERIC_DOSAGE.value,
            "regimen.drugs[2].dosage": ErrorCode.DOSE_NON_NUMERIC_DOSAGE.value,
        }

    def test_unroundable_dose_is_reported_per_drug(self):
        drugs = [
            Drug(name="Trastuzumab", dosage="10", unit="mg/kg", route="IV"),
            Drug(name="Paclitaxel", dosage="175", unit="mg/m²", route="IV"),
        ]
        report = self.calculator.calculate_regimen(drugs, SimpleNamespace(weight_kg=1e28, bsa_m2=1.8))

        assert [d.name for d in report.calculated_drugs] == ["Paclitaxel"]
        assert report.result.errors[0].field == "regimen.drugs[0].dosage"
        assert report.result.errors[0].code == ErrorCode.DOSE_NOT_COMPUTABLE.value

    @pytest.mark.parametrize("overrides", [
        {"weight_kg": 1e28},
        {"height_cm": 1000},
        {"bsa_m2": 50},
    ])
    def test_implausible_biometrics_are_rejected(self, overrides):
        with pytest.raises(ValidationError):
            make_patient(**overrides)

    def test_dosage_ceiling_is_configurable(self):
        calculator = DoseCalculator(EngineConfig(dosage_limits={"max_value": 100}))
        report = calculator.calculate_regimen([Drug(name="X", dosage="150", unit="mg", route="IV")], make_patient())
        assert report.calculated_drugs == []
        assert "accepted maximum of 100" in report.result.errors[0].message

    @pytest.mark.parametrize("dosage,used", [
        ("8 mg/kg loading, then 6 mg/kg", 8),
        ("4-6", 4),
    ])
    def test_compound_dosage_uses_leading_number_with_warning(self, dosage, used):
        drugs = [Drug(name="Trastuzumab", dosage=dosage, unit="mg/kg", route="IV")]
        report = self.calculator.calculate_regimen(drugs, make_patient())

        assert report.calculated_drugs[0].final_dose == used * 70
        assert report.result.is_valid
        assert [w.code for w in report.result.warnings] == [ErrorCode.VAL_ADVISORY.value]
        assert f"only {used} mg/kg is used" in report.result.warnings[0].message

    def test_dose_limit_warning_by_schedule(self):
        drugs = [Drug(name="Paclitaxel", dosage="90", unit="mg/m²", route="IV")]

        weekly = self.calculator.calculate_regimen(Regimen(id="w", name="W", schedule="Weekly", drugs=drugs), make_patient())
        assert len(weekly.result.warnings) == 1
        assert "limit of 80 mg/m²" in weekly.result.warnings[0].message
        assert weekly.result.warnings[0].code == ErrorCode.DOSE_LIMIT_EXCEEDED.value

        q3w = self.calculator.calculate_regimen(Regimen(id="q", name="Q", schedule="q3w", drugs=drugs), make_patient())
        assert q3w.result.warnings == []

    def test_auc_limit_warning(self):
        report = self.calculator.calculate_regimen([carboplatin(8)], make_patient())
        assert report.calculated_drugs[0].final_dose == 840
        assert "Carboplatin dosage (8 AUC) exceeds the recommended limit of 7 AUC" in report.result.warnings[0].message

    def test_renal_advisory_does_not_change_dose(self):
        drugs = [Drug(name="Cisplatin", dosage="75", unit="mg/m²", route="IV")]
        report = self.calculator.calculate_regimen(drugs, make_patient(creatinine_clearance=50))
        assert report.calculated_drugs[0].final_dose == 135
        assert "Reduce dose by 50%" in report.result.warnings[0].message
        assert report.result.is_valid


class TestAdvisories:

    def setup_method(self):
        self.calculator = DoseCalculator(load_engine_config())

    def test_max_per_cycle(self):
        assert self.calculator.max_per_cycle("Paclitaxel", "Weekly x3") == 80
        assert self.calculator.max_per_cycle("Paclitaxel", "") == 175
        assert self.calculator.max_per_cycle("Doxorubicin") == 75
        assert self.calculator.max_per_cycle("Unknown") is None

    def test_limit_in_other_unit_is_not_compared(self):
        formula = self.calculator.resolver.resolve(Drug(name="Bevacizumab", dosage="1000", unit="mg", route="IV"))
        assert self.calculator.dose_limit_advisory("Bevacizumab", formula) is None

    def test_concentration(self):
        high = self.calculator.concentration_advisory("Paclitaxel", 315, 250)
        assert "exceeds the limit of 1.2 mg/mL" in high
        assert self.calculator.concentration_advisory("Paclitaxel", 315, 500) is None
        low = self.calculator.concentration_advisory("Paclitaxel", 315, 2000)
        assert "below the minimum of 0.3 mg/mL" in low
        assert self.calculator.concentration_advisory("Paclitaxel", 315, None) is None

    def test_minimum_volume(self):
        message = self.calculator.concentration_advisory("Oxaliplatin", 153, 100)
        assert message == "Minimum infusion volume for Oxaliplatin is 250 mL"

    def test_cumulative_dose(self):
        exceeded = self.calculator.cumulative_dose("Doxorubicin", 75, 8)
        assert exceeded.cumulative_dose == 600
        assert exceeded.is_limit_exceeded
        assert "lifetime limit of 550" in exceeded.warning

        within = self.calculator.cumulative_dose("Doxorubicin", 60, 5)
        assert not within.is_limit_exceeded
        assert within.warning is None

        unlimited = self.calculator.cumulative_dose("Gemcitabine", 1000, 10)
        assert unlimited.cumulative_dose == 10000
        assert not unlimited.is_limit_exceeded
