#!/usr/bin/env python3
"""
Treatment Sheet Service
Wires the dosing engine components from one configuration and offers the
operations the treatment-sheet export layer consumes
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from dosing_engine import grouping
from dosing_engine.calculator import DoseCalculationReport, DoseCalculator
from dosing_engine.compatibility import SolventCheck, SolventCompatibilityValidator
from dosing_engine.config import EngineConfig, load_engine_config
from dosing_engine.error_codes import ErrorCode, PreconditionViolation
from dosing_engine.formulas import DoseFormulaResolver
from dosing_engine.privacy import persistable_snapshot, reload_record, rederive_for_regimen, sanitize_patient
from dosing_engine.record_validator import TreatmentRecordValidator, structural_issues
from dosing_engine.schema import (
    GroupingState, PatientBiometrics, PatientInfo, PremedicationAgent,
    Regimen, TreatmentRecord, ValidationResult,
)

logger = logging.getLogger(__name__)

# grouping actions accepted by apply_grouping_action
GROUPING_ACTIONS = {
    "create_group": grouping.create_group,
    "delete_group": grouping.delete_group,
    "assign_agent": grouping.assign_agent,
    "unassign_agent": grouping.unassign_agent,
    "move_agent": grouping.move_agent,
    "set_group_solvent": grouping.set_group_solvent,
    "set_group_volume": grouping.set_group_volume,
}


class TreatmentSheetService:
    """Facade over calculation, compatibility, grouping and record validation"""

    def __init__(self, config: Optional[EngineConfig] = None, config_dir: Optional[Path] = None):
        self.config = config or load_engine_config(config_dir)
        self.resolver = DoseFormulaResolver(self.config)
        self.calculator = DoseCalculator(self.config, self.resolver)
        self.compatibility = SolventCompatibilityValidator(self.config)
        self.validator = TreatmentRecordValidator(
            self.config, self.resolver, self.compatibility, self.calculator
        )

    def calculate_doses(self, regimen: Union[Regimen, Dict[str, Any]],
                        patient: Union[PatientBiometrics, Dict[str, Any]]) -> DoseCalculationReport:
        """Calculate every drug of the regimen; malformed input is reported, not raised"""
        report = DoseCalculationReport()
        try:
            if isinstance(regimen, dict):
                regimen = Regimen.model_validate(regimen)
        except ValidationError as e:
            report.result.extend(structural_issues(e, prefix="regimen"))
        try:
            if isinstance(patient, dict):
                patient = PatientInfo.model_validate(patient)
        except ValidationError as e:
            report.result.extend(structural_issues(e, prefix="patient"))

        if not report.result.is_valid:
            return report

        report = self.calculator.calculate_regimen(regimen, patient)
        logger.info(
            f"Dose calculation for {regimen.id}: {len(report.calculated_drugs)} of "
            f"{len(regimen.drugs)} drugs calculated"
        )
        return report

    def assemble_record(self, patient: PatientInfo, regimen: Regimen,
                        premedications: Optional[GroupingState] = None,
                        clinical_notes: str = "", orientation: str = "portrait",
                        calculate: bool = True) -> TreatmentRecord:
        """Build the record handed to validation and export"""
        patient = sanitize_patient(patient)
        calculated = None
        if calculate:
            calculated = self.calculator.calculate_regimen(regimen, patient).calculated_drugs

        return TreatmentRecord(
            patient=patient,
            regimen=regimen,
            calculated_drugs=calculated,
            premedications=premedications or GroupingState(),
            clinical_notes=clinical_notes,
            orientation=orientation,
        )

    def validate_record(self, record: Union[TreatmentRecord, Dict[str, Any], None]) -> ValidationResult:
        return self.validator.validate(record)

    def check_compatibility(self, drug_name: str, solvent: Optional[str]) -> SolventCheck:
        return self.compatibility.validate(drug_name, solvent)

    def selectable_solvents(self, drug_name: str) -> List[str]:
        return self.compatibility.selectable_solvents(drug_name)

    # Grouping

    def start_grouping(self, agents: Iterable[PremedicationAgent]) -> GroupingState:
        return grouping.initial_state(agents)

    def sync_grouping(self, state: GroupingState, agents: Iterable[PremedicationAgent]) -> GroupingState:
        return grouping.sync_selection(state, agents)

    def apply_grouping_action(self, state: GroupingState, action: str, **params) -> GroupingState:
        """
        Apply one named grouping operation.

        Raises:
            PreconditionViolation: unknown action, agent or group
        """
        operation = GROUPING_ACTIONS.get(action)
        if operation is None:
            raise PreconditionViolation(
                error_code=ErrorCode.VAL_INVALID_CHOICE,
                message=f"Unknown grouping action '{action}'",
                details={"action": action, "supported_actions": sorted(GROUPING_ACTIONS)}
            )
        return operation(state, **params)

    def validate_grouping(self, state: GroupingState) -> ValidationResult:
        return self.validator.validate_premedications(state)

    # Export boundary

    def export_payload(self, record: TreatmentRecord) -> Dict[str, Any]:
        """Record snapshot, grouped premedications and the validation verdict"""
        result = self.validate_record(record)
        return {
            "record": persistable_snapshot(record),
            "premedications": grouping.grouping_summary(record.premedications),
            "validation": result.model_dump(),
        }

    def snapshot(self, record: TreatmentRecord) -> Dict[str, Any]:
        return persistable_snapshot(record)

    def reload(self, snapshot: Dict[str, Any]) -> TreatmentRecord:
        return reload_record(snapshot)

    def change_regimen(self, record: TreatmentRecord, regimen: Regimen, recalculate: bool = False) -> TreatmentRecord:
        """Switch regimen; the identifier and old doses never carry over"""
        record = rederive_for_regimen(record, regimen)
        if recalculate:
            report = self.calculator.calculate_regimen(regimen, record.patient)
            record = record.model_copy(update={"calculated_drugs": report.calculated_drugs})
        return record


def create_treatment_service(config_dir: Path = None) -> TreatmentSheetService:
    """Factory function to create the treatment sheet service"""
    return TreatmentSheetService(config_dir=config_dir)
