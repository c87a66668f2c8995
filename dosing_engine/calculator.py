"""
Dose calculation for regimen drugs

Formulas:
    BSA-scaled       dose = intensity x BSA          (0.1 precision)
    weight-scaled    dose = intensity x weight       (0.1 precision)
    fixed            dose = intensity
    Calvert          dose = AUC x (min(CrCl, 125) + 25)   (whole units)

Rounding is round-half-up. The calculated dose is the rounded value, so
calculated_dose == final_dose in every mode.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from .config import DrugLimit, EngineConfig
from .error_codes import ClassificationError, ErrorCode, MissingBiometricError
from .expressions import has_trailing_values, validate_auc_format
from .formulas import DoseFormula, DoseFormulaResolver
from .schema import CalculatedDrug, DoseUnit, DosingMode, Drug, Regimen, ValidationResult

logger = logging.getLogger(__name__)

# Decimal places kept per mode; None keeps the declared amount untouched
ROUNDING_DECIMALS: Dict[DosingMode, Optional[int]] = {
    DosingMode.BSA_SCALED: 1,
    DosingMode.WEIGHT_SCALED: 1,
    DosingMode.RENAL_CALVERT: 0,
    DosingMode.FIXED: None,
}

DEFAULT_SCHEDULE_KEY = "q3w"


def round_half_up(value: float, decimals: int) -> float:
    """Round with .5 going away from zero, on the decimal representation"""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CumulativeDoseResult:
    cumulative_dose: float
    is_limit_exceeded: bool
    warning: Optional[str] = None


class DoseCalculationReport(BaseModel):
    """Calculated drugs plus every problem met while computing them"""
    calculated_drugs: List[CalculatedDrug] = Field(default_factory=list)
    result: ValidationResult = Field(default_factory=ValidationResult)


class DoseCalculator:
    """Applies the resolved dosing formula to patient biometrics"""

    def __init__(self, config: Optional[EngineConfig] = None, resolver: Optional[DoseFormulaResolver] = None):
        self.config = config or EngineConfig()
        self.resolver = resolver or DoseFormulaResolver(self.config)
        self._formulas: Dict[DosingMode, Callable[[DoseFormula, Any], float]] = {
            DosingMode.BSA_SCALED: self._bsa_dose,
            DosingMode.WEIGHT_SCALED: self._weight_dose,
            DosingMode.FIXED: self._fixed_dose,
            DosingMode.RENAL_CALVERT: self._calvert_dose,
        }
        missing = (set(DosingMode) - set(self._formulas)) | (set(DosingMode) - set(ROUNDING_DECIMALS))
        if missing:
            raise RuntimeError(f"No dose formula registered for {sorted(m.value for m in missing)}")

    # ------------------------------------------------------------------
    # Single drug
    # ------------------------------------------------------------------

    def calculate(self, drug: Drug, patient: Any, formula: Optional[DoseFormula] = None) -> CalculatedDrug:
        """
        Calculate the dose of one drug.

        Args:
            drug: Regimen drug entry
            patient: Object exposing the biometrics the mode needs
                (bsa_m2, weight_kg or creatinine_clearance)
            formula: Pre-resolved formula, resolved from the drug when omitted

        Raises:
            ClassificationError: the drug unit is outside the enumeration
            MissingBiometricError: the patient lacks a required value
        """
        formula = formula or self.resolver.resolve(drug)
        raw_dose = self._formulas[formula.mode](formula, patient)

        decimals = ROUNDING_DECIMALS[formula.mode]
        final_dose = raw_dose if decimals is None else round_half_up(raw_dose, decimals)

        notes = None
        if formula.mode == DosingMode.RENAL_CALVERT:
            final_dose, notes = self._finish_calvert(drug, formula, patient, raw_dose, final_dose)

        logger.info(f"Calculated {drug.name}: {final_dose} {formula.output_unit} ({formula.mode.value})")

        return CalculatedDrug(
            name=drug.name,
            calculated_dose=final_dose,
            final_dose=final_dose,
            unit=formula.output_unit,
            dosing_mode=formula.mode,
            route=drug.route,
            solvent=drug.solvent,
            administration_duration=drug.administration_duration,
            adjustment_notes=notes,
        )

    def _require(self, patient: Any, attribute: str) -> float:
        value = getattr(patient, attribute, None)
        if value is None or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise MissingBiometricError(
                error_code=ErrorCode.DOSE_MISSING_BIOMETRIC,
                message=f"Patient {attribute} is required for this dosing formula",
                details={"attribute": attribute, "value": repr(value)}
            )
        return float(value)

    def _bsa_dose(self, formula: DoseFormula, patient: Any) -> float:
        return formula.intensity * self._require(patient, "bsa_m2")

    def _weight_dose(self, formula: DoseFormula, patient: Any) -> float:
        return formula.intensity * self._require(patient, "weight_kg")

    def _fixed_dose(self, formula: DoseFormula, patient: Any) -> float:
        return formula.intensity

    def effective_gfr(self, creatinine_clearance: float) -> float:
        """Clearance clamped to [0, gfr_cap]"""
        cap = self.config.calvert.gfr_cap
        return min(max(creatinine_clearance, 0.0), cap)

    def _calvert_dose(self, formula: DoseFormula, patient: Any) -> float:
        clearance = self._require(patient, "creatinine_clearance")
        gfr = self.effective_gfr(clearance)
        if clearance > gfr:
            logger.warning(
                f"Creatinine clearance {clearance} mL/min capped at {gfr} mL/min for Calvert dosing"
            )
        return formula.intensity * (gfr + self.config.calvert.gfr_offset)

    def _finish_calvert(self, drug: Drug, formula: DoseFormula, patient: Any, raw_dose: float, final_dose: float):
        clearance = self._require(patient, "creatinine_clearance")
        gfr = self.effective_gfr(clearance)

        if formula.intensity <= 0:
            logger.warning(f"No AUC target could be read from '{drug.dosage}' for {drug.name}")
        elif final_dose <= 0:
            # whole-unit rounding must not turn a positive target into no dose
            logger.error(
                f"Calvert dose for {drug.name} rounded to {final_dose} from {raw_dose}; raising to one unit"
            )
            final_dose = float(max(1, math.ceil(raw_dose)))

        logger.info(
            f"Calvert calculation for {drug.name}: AUC={formula.intensity}, CrCl={clearance}, "
            f"GFR used={gfr}, dose={final_dose} mg"
        )

        notes = f"Calvert: AUC {formula.intensity:g} x (GFR {gfr:g} + {self.config.calvert.gfr_offset:g})"
        if clearance > gfr:
            notes += f"; clearance capped at {gfr:g} mL/min"
        return final_dose, notes

    # ------------------------------------------------------------------
    # Dosage text
    # ------------------------------------------------------------------

    def dosage_error(self, drug: Drug, formula: DoseFormula) -> Optional[Tuple[str, ErrorCode]]:
        """Blocking problem with the dosage expression, None when the intensity is usable"""
        if formula.mode == DosingMode.RENAL_CALVERT:
            verdict = validate_auc_format(drug.dosage)
            if not verdict.is_valid:
                return f"{drug.name}: {verdict.error}", ErrorCode.DOSE_INVALID_AUC
        elif formula.intensity <= 0:
            return f"{drug.name}: dosage '{drug.dosage}' is not a positive number", ErrorCode.DOSE_NON_NUMERIC_DOSAGE

        maximum = self.config.dosage_limits.max_value
        if not math.isfinite(formula.intensity) or formula.intensity > maximum:
            return (
                f"{drug.name}: dosage exceeds the accepted maximum of {maximum:g}",
                ErrorCode.DOSE_NON_NUMERIC_DOSAGE
            )
        return None

    def dosage_advisory(self, drug: Drug, formula: DoseFormula) -> Optional[str]:
        """Ranges and compound dosages are dosed on their leading number only"""
        if formula.mode == DosingMode.RENAL_CALVERT or not has_trailing_values(drug.dosage):
            return None
        return (
            f"{drug.name}: dosage '{drug.dosage}' contains more than one value; "
            f"only {formula.intensity:g} {formula.declared_unit.value} is used"
        )

    # ------------------------------------------------------------------
    # Whole regimen
    # ------------------------------------------------------------------

    def calculate_regimen(self, regimen: Union[Regimen, List[Drug]], patient: Any) -> DoseCalculationReport:
        """
        Calculate every drug of a regimen.

        A drug that cannot be classified or computed is reported on its own
        field and skipped, the remaining drugs are still calculated.
        """
        drugs = regimen.drugs if isinstance(regimen, Regimen) else list(regimen)
        schedule = regimen.schedule if isinstance(regimen, Regimen) else ""
        report = DoseCalculationReport()

        for index, drug in enumerate(drugs):
            field = f"regimen.drugs[{index}]"
            try:
                formula = self.resolver.resolve(drug)
            except ClassificationError as e:
                report.result.add_error(f"{field}.unit", f"{drug.name}: {e.message}", e.error_code.value)
                continue

            problem = self.dosage_error(drug, formula)
            if problem:
                message, code = problem
                report.result.add_error(f"{field}.dosage", message, code.value)
                continue

            try:
                calculated = self.calculate(drug, patient, formula)
            except MissingBiometricError as e:
                report.result.add_error(
                    f"patient.{e.details['attribute']}", f"{drug.name}: {e.message}", e.error_code.value
                )
                continue
            except InvalidOperation:
                logger.error(f"Dose for {drug.name} could not be rounded ({drug.unit})")
                report.result.add_error(
                    f"{field}.dosage",
                    f"{drug.name}: dose is too large to calculate",
                    ErrorCode.DOSE_NOT_COMPUTABLE.value
                )
                continue

            report.calculated_drugs.append(calculated)

            dosage_warning = self.dosage_advisory(drug, formula)
            if dosage_warning:
                report.result.add_warning(f"{field}.dosage", dosage_warning, ErrorCode.VAL_ADVISORY.value)

            limit_warning = self.dose_limit_advisory(drug.name, formula, schedule)
            if limit_warning:
                report.result.add_warning(f"{field}.dosage", limit_warning, ErrorCode.DOSE_LIMIT_EXCEEDED.value)

            clearance = getattr(patient, "creatinine_clearance", None)
            if clearance is not None:
                renal_warning = self.renal_advisory(drug.name, clearance)
                if renal_warning:
                    report.result.add_warning(
                        "patient.creatinine_clearance", renal_warning, ErrorCode.VAL_ADVISORY.value
                    )

        return report

    # ------------------------------------------------------------------
    # Advisories (never change a dose)
    # ------------------------------------------------------------------

    def _limit_for(self, drug_name: str) -> Optional[DrugLimit]:
        return self.config.drug_limits.get(drug_name)

    def max_per_cycle(self, drug_name: str, schedule: Optional[str] = None) -> Optional[float]:
        """Per-cycle maximum for the drug, picked by schedule when the limit depends on it"""
        limit = self._limit_for(drug_name)
        if limit is None:
            return None
        if limit.max_per_cycle is not None:
            return limit.max_per_cycle
        if not limit.max_per_cycle_by_schedule:
            return None

        text = (schedule or "").lower()
        key = DEFAULT_SCHEDULE_KEY
        for candidate in ("weekly", "q3w", "q14d"):
            if candidate in text:
                key = candidate
                break
        by_schedule = limit.max_per_cycle_by_schedule
        return by_schedule.get(key, next(iter(by_schedule.values())))

    def dose_limit_advisory(self, drug_name: str, formula: DoseFormula, schedule: Optional[str] = None) -> Optional[str]:
        """Warning text when the declared intensity exceeds the per-cycle limit"""
        limit = self._limit_for(drug_name)
        maximum = self.max_per_cycle(drug_name, schedule)
        if limit is None or maximum is None:
            return None

        declared = DoseUnit.AUC.value if formula.mode == DosingMode.RENAL_CALVERT else formula.declared_unit.value
        if limit.unit != declared:
            logger.debug(f"Limit for {drug_name} is in {limit.unit}, dosage declared in {declared}")
            return None

        if formula.intensity > maximum:
            message = (
                f"{drug_name} dosage ({formula.intensity:g} {limit.unit}) exceeds the recommended "
                f"limit of {maximum:g} {limit.unit}"
            )
            if limit.warnings:
                message += f". {limit.warnings}"
            return message
        return None

    def renal_advisory(self, drug_name: str, creatinine_clearance: float) -> Optional[str]:
        limit = self._limit_for(drug_name)
        if limit is None or limit.renal_adjustment is None:
            return None
        rule = limit.renal_adjustment
        if creatinine_clearance < rule.crcl_threshold:
            return (
                f"{drug_name}: creatinine clearance {creatinine_clearance:g} mL/min is below "
                f"{rule.crcl_threshold:g} mL/min. {rule.adjustment}"
            )
        return None

    def concentration_advisory(self, drug_name: str, dose: float, volume_ml: Optional[float],
                               dose_unit: str = "mg") -> Optional[str]:
        """Check the infusion concentration and minimum volume for a prepared dose"""
        limit = self._limit_for(drug_name)
        if limit is None or not volume_ml or volume_ml <= 0:
            return None

        if limit.min_volume_ml is not None and volume_ml < limit.min_volume_ml:
            return f"Minimum infusion volume for {drug_name} is {limit.min_volume_ml:g} mL"

        if dose_unit != "mg":
            return None

        concentration = dose / volume_ml
        if limit.max_concentration is not None and concentration > limit.max_concentration:
            return (
                f"{drug_name} concentration ({concentration:.2f} mg/mL) exceeds "
                f"the limit of {limit.max_concentration:g} mg/mL"
            )
        if limit.min_concentration is not None and concentration < limit.min_concentration:
            return (
                f"{drug_name} concentration ({concentration:.2f} mg/mL) is below "
                f"the minimum of {limit.min_concentration:g} mg/mL"
            )
        return None

    def cumulative_dose(self, drug_name: str, dose_per_cycle: float, cycles_completed: int) -> CumulativeDoseResult:
        """Lifetime exposure after the given number of cycles"""
        cumulative = dose_per_cycle * cycles_completed
        limit = self._limit_for(drug_name)

        if limit is None or limit.max_cumulative is None:
            return CumulativeDoseResult(cumulative_dose=cumulative, is_limit_exceeded=False)

        exceeded = cumulative > limit.max_cumulative
        warning = None
        if exceeded:
            warning = (
                f"Cumulative {drug_name} dose ({cumulative:.1f} {limit.unit}) exceeds "
                f"the lifetime limit of {limit.max_cumulative:g} {limit.unit}"
            )
        return CumulativeDoseResult(cumulative_dose=cumulative, is_limit_exceeded=exceeded, warning=warning)
