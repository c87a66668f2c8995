"""
Oncology Dosing Engine
Chemotherapy dose computation, solvent compatibility, premedication grouping
and treatment record validation
"""

from .schema import (
    Drug, Regimen, PatientBiometrics, PatientInfo, CalculatedDrug,
    PremedicationAgent, SolventGroup, GroupingState, ValidationIssue,
    ValidationResult, TreatmentRecord, DoseUnit, DosingMode,
)
from .config import EngineConfig, load_engine_config
from .formulas import DoseFormula, DoseFormulaResolver
from .calculator import DoseCalculator
from .compatibility import SolventCompatibilityValidator
from .record_validator import TreatmentRecordValidator
from .error_codes import (
    ErrorCode, DosingEngineError, ClassificationError, MissingBiometricError,
    PreconditionViolation, ConfigurationError,
)
from . import grouping

__all__ = [
    'Drug', 'Regimen', 'PatientBiometrics', 'PatientInfo', 'CalculatedDrug',
    'PremedicationAgent', 'SolventGroup', 'GroupingState', 'ValidationIssue',
    'ValidationResult', 'TreatmentRecord', 'DoseUnit', 'DosingMode',
    'EngineConfig', 'load_engine_config', 'DoseFormula', 'DoseFormulaResolver',
    'DoseCalculator', 'SolventCompatibilityValidator', 'TreatmentRecordValidator',
    'ErrorCode', 'DosingEngineError', 'ClassificationError', 'MissingBiometricError',
    'PreconditionViolation', 'ConfigurationError', 'grouping'
]
