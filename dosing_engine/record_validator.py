"""
Whole-record validation of an assembled treatment record

Every clinician-input problem is accumulated into a ValidationResult so the
caller can show all of them at once. Only a missing record raises.
"""

import logging
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import ValidationError

from .calculator import DoseCalculator
from .compatibility import SolventCompatibilityValidator
from .config import EngineConfig
from .error_codes import ClassificationError, ErrorCode, PreconditionViolation
from .formulas import DoseFormulaResolver
from .grouping import validate_grouping
from .privacy import validate_national_id
from .schema import (
    CalculatedDrug, Drug, GroupingState, PatientInfo,
    PremedicationAgent, Regimen, TreatmentRecord, ValidationResult,
)

logger = logging.getLogger(__name__)

# pydantic error type -> issue code
PYDANTIC_ERROR_CODES = {
    "missing": ErrorCode.VAL_REQUIRED,
    "greater_than": ErrorCode.VAL_OUT_OF_RANGE,
    "greater_than_equal": ErrorCode.VAL_OUT_OF_RANGE,
    "less_than": ErrorCode.VAL_OUT_OF_RANGE,
    "less_than_equal": ErrorCode.VAL_OUT_OF_RANGE,
    "finite_number": ErrorCode.VAL_OUT_OF_RANGE,
    "enum": ErrorCode.VAL_INVALID_CHOICE,
    "literal_error": ErrorCode.VAL_INVALID_CHOICE,
}


def field_path(loc: Tuple[Any, ...]) -> str:
    """('regimen', 'drugs', 0, 'unit') -> 'regimen.drugs[0].unit'"""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def structural_issues(error: ValidationError, prefix: str = "") -> ValidationResult:
    """Translate a pydantic ValidationError into validation issues"""
    result = ValidationResult()
    for item in error.errors():
        path = field_path(item["loc"])
        if prefix:
            path = f"{prefix}.{path}" if path else prefix
        code = PYDANTIC_ERROR_CODES.get(item["type"], ErrorCode.VAL_INVALID_FORMAT)
        result.add_error(path, f"{path}: {item['msg']}", code.value)
    return result


class TreatmentRecordValidator:
    """Combines structural, range, closed-set, compatibility and grouping checks"""

    def __init__(self, config: Optional[EngineConfig] = None,
                 resolver: Optional[DoseFormulaResolver] = None,
                 compatibility: Optional[SolventCompatibilityValidator] = None,
                 calculator: Optional[DoseCalculator] = None):
        self.config = config or EngineConfig()
        self.resolver = resolver or DoseFormulaResolver(self.config)
        self.compatibility = compatibility or SolventCompatibilityValidator(self.config)
        self.calculator = calculator or DoseCalculator(self.config, self.resolver)

    def validate(self, record: Union[TreatmentRecord, Dict[str, Any], None]) -> ValidationResult:
        """
        Validate a full treatment record.

        Args:
            record: Assembled record, or its JSON form

        Returns:
            ValidationResult with blocking errors and advisory warnings

        Raises:
            PreconditionViolation: no record was assembled
        """
        if record is None:
            raise PreconditionViolation(
                error_code=ErrorCode.VAL_NO_RECORD,
                message="No treatment record to validate",
                details={"suggested_action": "Assemble the record before validating it"}
            )

        if isinstance(record, dict):
            try:
                record = TreatmentRecord.model_validate(record)
            except ValidationError as e:
                result = structural_issues(e)
                logger.info(f"Treatment record failed structural validation with {len(result.errors)} errors")
                return result

        result = ValidationResult()
        result.extend(self.validate_patient(record.patient))
        result.extend(self.validate_regimen(record.regimen, record.patient))
        result.extend(self.validate_calculated_drugs(record.calculated_drugs, record.regimen))
        result.extend(self.validate_premedications(record.premedications))

        logger.info(
            f"Treatment record validation for regimen {record.regimen.id}: "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    # ------------------------------------------------------------------
    # Patient
    # ------------------------------------------------------------------

    def validate_patient(self, patient: Union[PatientInfo, Dict[str, Any]]) -> ValidationResult:
        """Hard range errors plus soft plausibility warnings"""
        if isinstance(patient, dict):
            try:
                patient = PatientInfo.model_validate(patient)
            except ValidationError as e:
                return structural_issues(e, prefix="patient")

        result = ValidationResult()
        limits = self.config.patient_thresholds
        advisory = ErrorCode.VAL_ADVISORY.value

        id_error = validate_national_id(getattr(patient, "national_id", None))
        if id_error:
            result.add_error("patient.national_id", id_error, ErrorCode.VAL_INVALID_FORMAT.value)

        if patient.weight_kg < limits.low_weight_kg:
            result.add_warning("patient.weight_kg", "Pediatric weight detected - verify dosing protocols", advisory)
        elif patient.weight_kg > limits.high_weight_kg:
            result.add_warning("patient.weight_kg", "High weight - consider dose capping for BSA > 2.2 m²", advisory)

        if patient.age_years < limits.pediatric_age:
            result.add_warning(
                "patient.age_years",
                "Pediatric patient - verify dosing protocols and consider pediatric-specific regimens",
                advisory
            )
        elif patient.age_years > limits.elderly_age:
            result.add_warning(
                "patient.age_years", "Elderly patient - consider dose reduction and enhanced monitoring", advisory
            )

        if patient.bsa_m2 < limits.bsa_min:
            result.add_warning(
                "patient.bsa_m2", "Low BSA detected - verify calculations and consider pediatric protocols", advisory
            )
        elif patient.bsa_m2 > limits.bsa_max:
            result.add_warning(
                "patient.bsa_m2", "High BSA detected - consider dose capping at 2.2 m² for some agents", advisory
            )

        if patient.creatinine_clearance < limits.severe_renal_crcl:
            result.add_warning(
                "patient.creatinine_clearance",
                "Moderate-severe renal impairment - dose adjustment may be required",
                advisory
            )
        elif patient.creatinine_clearance < limits.moderate_renal_crcl:
            result.add_warning(
                "patient.creatinine_clearance", "Mild-moderate renal impairment - monitor for nephrotoxicity", advisory
            )

        return result

    # ------------------------------------------------------------------
    # Regimen
    # ------------------------------------------------------------------

    def validate_regimen(self, regimen: Regimen, patient: Optional[PatientInfo] = None) -> ValidationResult:
        result = ValidationResult()

        if not regimen.id.strip():
            result.add_error("regimen.id", "Regimen identifier is required", ErrorCode.VAL_REQUIRED.value)
        if not regimen.name.strip():
            result.add_error("regimen.name", "Regimen name is required", ErrorCode.VAL_REQUIRED.value)
        if not regimen.drugs:
            result.add_error("regimen.drugs", "Regimen must contain at least one drug", ErrorCode.VAL_REQUIRED.value)

        for index, drug in enumerate(regimen.drugs):
            self._validate_drug(drug, f"regimen.drugs[{index}]", regimen.schedule, patient, result)
        return result

    def _validate_drug(self, drug: Drug, field: str, schedule: str,
                       patient: Optional[PatientInfo], result: ValidationResult):
        if not drug.name.strip():
            result.add_error(f"{field}.name", "Drug name is required", ErrorCode.VAL_REQUIRED.value)

        if drug.route not in self.config.drug_routes:
            result.add_error(
                f"{field}.route",
                f"{drug.name}: route '{drug.route}' must be one of {', '.join(self.config.drug_routes)}",
                ErrorCode.VAL_INVALID_CHOICE.value
            )

        if drug.solvent:
            self._check_solvent(drug, drug.solvent, f"{field}.solvent", result)

        try:
            formula = self.resolver.resolve(drug)
        except ClassificationError as e:
            result.add_error(f"{field}.unit", f"{drug.name}: {e.message}", e.error_code.value)
            return

        problem = self.calculator.dosage_error(drug, formula)
        if problem:
            message, code = problem
            result.add_error(f"{field}.dosage", message, code.value)
            return

        dosage_warning = self.calculator.dosage_advisory(drug, formula)
        if dosage_warning:
            result.add_warning(f"{field}.dosage", dosage_warning, ErrorCode.VAL_ADVISORY.value)

        limit_warning = self.calculator.dose_limit_advisory(drug.name, formula, schedule)
        if limit_warning:
            result.add_warning(f"{field}.dosage", limit_warning, ErrorCode.DOSE_LIMIT_EXCEEDED.value)

        if patient is not None:
            renal_warning = self.calculator.renal_advisory(drug.name, patient.creatinine_clearance)
            if renal_warning:
                result.add_warning(f"{field}.name", renal_warning, ErrorCode.VAL_ADVISORY.value)

    def _check_solvent(self, drug: Drug, solvent: str, field: str, result: ValidationResult):
        if not self.compatibility.is_known_solvent(solvent):
            result.add_error(
                field,
                f"{drug.name}: unknown solvent '{solvent}'",
                ErrorCode.VAL_UNKNOWN_SOLVENT.value
            )
            return
        message = self.compatibility.check_drug(drug, solvent)
        if message:
            result.add_error(field, message, ErrorCode.VAL_INCOMPATIBLE_SOLVENT.value)

    # ------------------------------------------------------------------
    # Calculated drugs
    # ------------------------------------------------------------------

    def validate_calculated_drugs(self, calculated_drugs: Optional[list], regimen: Regimen) -> ValidationResult:
        """None means doses were not computed yet; an empty list after computing is an error"""
        result = ValidationResult()
        if calculated_drugs is None:
            return result

        if not calculated_drugs:
            result.add_error(
                "calculated_drugs", "At least one calculated drug is required", ErrorCode.VAL_REQUIRED.value
            )
            return result

        by_name = {drug.name.casefold(): drug for drug in regimen.drugs}
        for index, calculated in enumerate(calculated_drugs):
            field = f"calculated_drugs[{index}]"
            regimen_drug = by_name.get(calculated.name.casefold())
            self._validate_calculated(calculated, regimen_drug, field, result)
        return result

    def _validate_calculated(self, calculated: CalculatedDrug, regimen_drug: Optional[Drug],
                             field: str, result: ValidationResult):
        if calculated.final_dose <= 0:
            result.add_error(
                f"{field}.final_dose",
                f"{calculated.name}: final dose must be greater than zero",
                ErrorCode.DOSE_NON_POSITIVE.value
            )
        if calculated.final_dose != calculated.calculated_dose:
            result.add_error(
                f"{field}.final_dose",
                f"{calculated.name}: final dose {calculated.final_dose:g} differs from "
                f"calculated dose {calculated.calculated_dose:g}",
                ErrorCode.DOSE_ROUNDING_MISMATCH.value
            )

        if regimen_drug is None:
            result.add_warning(
                f"{field}.name",
                f"{calculated.name} is not part of the selected regimen",
                ErrorCode.VAL_ADVISORY.value
            )
            regimen_drug = Drug(name=calculated.name, dosage="", unit="mg", route=calculated.route or "")

        if calculated.solvent:
            self._check_solvent(regimen_drug, calculated.solvent, f"{field}.solvent", result)

        if calculated.volume_ml is not None:
            volumes = regimen_drug.available_volumes
            if volumes and calculated.volume_ml not in volumes:
                result.add_error(
                    f"{field}.volume_ml",
                    f"{calculated.name}: volume {calculated.volume_ml:g} mL is not one of "
                    f"{', '.join(f'{v:g}' for v in volumes)} mL",
                    ErrorCode.VAL_INVALID_CHOICE.value
                )
            advisory = self.calculator.concentration_advisory(
                calculated.name, calculated.final_dose, calculated.volume_ml, calculated.unit
            )
            if advisory:
                result.add_warning(f"{field}.volume_ml", advisory, ErrorCode.VAL_ADVISORY.value)

    # ------------------------------------------------------------------
    # Premedications
    # ------------------------------------------------------------------

    def validate_premedications(self, state: GroupingState) -> ValidationResult:
        result = ValidationResult()

        for g_index, group in enumerate(state.groups):
            group_field = f"premedications.groups[{g_index}]"
            if group.solvent and not self.compatibility.is_known_solvent(group.solvent):
                result.add_error(
                    f"{group_field}.solvent",
                    f"PEV {g_index + 1}: unknown solvent '{group.solvent}'",
                    ErrorCode.VAL_UNKNOWN_SOLVENT.value
                )
            for a_index, agent in enumerate(group.medications):
                agent_field = f"{group_field}.medications[{a_index}]"
                self._validate_agent(agent, agent_field, result)
                if group.solvent and self.compatibility.is_known_solvent(group.solvent):
                    message = self.compatibility.check(agent.name, group.solvent)
                    if message:
                        result.add_error(agent_field, message, ErrorCode.VAL_INCOMPATIBLE_SOLVENT.value)

        for a_index, agent in enumerate(state.individual):
            self._validate_agent(agent, f"premedications.individual[{a_index}]", result)

        result.extend(validate_grouping(state))
        return result

    def _validate_agent(self, agent: PremedicationAgent, field: str, result: ValidationResult):
        if agent.category not in self.config.premedication_categories:
            result.add_error(
                f"{field}.category",
                f"{agent.name}: category '{agent.category}' must be one of "
                f"{', '.join(self.config.premedication_categories)}",
                ErrorCode.VAL_INVALID_CHOICE.value
            )
        if agent.route not in self.config.premedication_routes:
            result.add_error(
                f"{field}.route",
                f"{agent.name}: route '{agent.route}' must be one of {', '.join(self.config.premedication_routes)}",
                ErrorCode.VAL_INVALID_CHOICE.value
            )
