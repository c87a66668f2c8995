"""
Error code system for the dosing engine
Provides specific, auditable error codes for the calculation, grouping and validation components.
"""

from enum import Enum
from typing import Dict, Any, Optional
import logging
import uuid
from datetime import datetime, timezone
import json


class ErrorCode(Enum):
    """Specific error codes for dosing engine components"""

    # Dose calculation errors (DOSE_xxx)
    DOSE_UNKNOWN_UNIT = "DOSE_001"
    DOSE_MISSING_BIOMETRIC = "DOSE_002"
    DOSE_NON_NUMERIC_DOSAGE = "DOSE_003"
    DOSE_INVALID_AUC = "DOSE_004"
    DOSE_NON_POSITIVE = "DOSE_005"
    DOSE_LIMIT_EXCEEDED = "DOSE_006"
    DOSE_ROUNDING_MISMATCH = "DOSE_007"
    DOSE_NOT_COMPUTABLE = "DOSE_008"

    # Grouping errors (GRP_xxx)
    GRP_UNKNOWN_AGENT = "GRP_001"
    GRP_UNKNOWN_GROUP = "GRP_002"
    GRP_NO_SOLVENT = "GRP_003"
    GRP_EMPTY = "GRP_004"
    GRP_DUPLICATE_AGENT = "GRP_005"
    GRP_DUPLICATE_GROUP = "GRP_006"

    # Validation errors (VAL_xxx)
    VAL_REQUIRED = "VAL_001"
    VAL_OUT_OF_RANGE = "VAL_002"
    VAL_INVALID_CHOICE = "VAL_003"
    VAL_INCOMPATIBLE_SOLVENT = "VAL_004"
    VAL_UNKNOWN_SOLVENT = "VAL_005"
    VAL_INVALID_FORMAT = "VAL_006"
    VAL_ADVISORY = "VAL_007"
    VAL_NO_RECORD = "VAL_008"

    # Configuration errors (CFG_xxx)
    CFG_INVALID_CONFIG = "CFG_001"
    CFG_FILE_NOT_FOUND = "CFG_002"


class DosingEngineError(Exception):
    """Base exception class for the dosing engine with specific error codes"""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.trace_id = str(uuid.uuid4())[:8]

        super().__init__(f"[{error_code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/API responses"""
        return {
            "error_code": self.error_code.value,
            "description": get_error_description(self.error_code),
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
            "trace_id": self.trace_id,
            "original_error": str(self.original_exception) if self.original_exception else None
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class ClassificationError(DosingEngineError):
    """A drug entry could not be mapped to a dosing mode"""


class MissingBiometricError(DosingEngineError):
    """The dosing mode needs a patient value that is absent or not finite"""


class PreconditionViolation(DosingEngineError):
    """The caller passed state that violates the operation's contract"""


class ConfigurationError(DosingEngineError):
    """A static configuration table could not be loaded"""


class ErrorLogger:
    """Centralized error logging with structured output"""

    def __init__(self, logger_name: str = "dosing_engine"):
        self.logger = logging.getLogger(logger_name)

    def log_error(self, error: DosingEngineError, level: int = logging.ERROR):
        """Log error with structured format"""
        self.logger.log(
            level,
            f"DOSING_ERROR: {error.error_code.value} - {error.message}",
            extra={
                "error_code": error.error_code.value,
                "trace_id": error.trace_id,
                "details": error.details,
                "timestamp": error.timestamp
            }
        )

        if error.original_exception:
            self.logger.debug(
                f"Original exception for {error.trace_id}:",
                exc_info=error.original_exception
            )


def unknown_agent_error(agent_name: str) -> PreconditionViolation:
    return PreconditionViolation(
        error_code=ErrorCode.GRP_UNKNOWN_AGENT,
        message=f"Agent '{agent_name}' is not part of the grouping state",
        details={
            "agent": agent_name,
            "suggested_action": "Synchronize the selection before moving agents"
        }
    )


def unknown_group_error(group_id: str) -> PreconditionViolation:
    return PreconditionViolation(
        error_code=ErrorCode.GRP_UNKNOWN_GROUP,
        message=f"Group '{group_id}' does not exist",
        details={"group_id": group_id}
    )


def duplicate_group_error(group_id: str) -> PreconditionViolation:
    return PreconditionViolation(
        error_code=ErrorCode.GRP_DUPLICATE_GROUP,
        message=f"Group '{group_id}' already exists",
        details={"group_id": group_id}
    )


ERROR_CODE_DESCRIPTIONS = {
    ErrorCode.DOSE_UNKNOWN_UNIT: "Drug unit outside the supported enumeration",
    ErrorCode.DOSE_MISSING_BIOMETRIC: "Patient value required by the dosing formula is missing",
    ErrorCode.DOSE_NON_NUMERIC_DOSAGE: "Dosage is not a usable positive number",
    ErrorCode.DOSE_INVALID_AUC: "AUC dosage does not follow the 'AUC <number>' format",
    ErrorCode.DOSE_NON_POSITIVE: "Computed dose is not greater than zero",
    ErrorCode.DOSE_LIMIT_EXCEEDED: "Declared dosage exceeds the recommended per-cycle limit",
    ErrorCode.DOSE_ROUNDING_MISMATCH: "Final dose differs from the calculated dose",
    ErrorCode.DOSE_NOT_COMPUTABLE: "Dose could not be represented at the required precision",
    ErrorCode.GRP_UNKNOWN_AGENT: "Grouping operation referenced an agent that is not selected",
    ErrorCode.GRP_UNKNOWN_GROUP: "Grouping operation referenced a group that does not exist",
    ErrorCode.GRP_NO_SOLVENT: "Premedication group has no solvent",
    ErrorCode.GRP_EMPTY: "Premedication group has no medications",
    ErrorCode.GRP_DUPLICATE_AGENT: "Agent is placed more than once",
    ErrorCode.GRP_DUPLICATE_GROUP: "Grouping operation created a group id that already exists",
    ErrorCode.VAL_REQUIRED: "Required value is missing",
    ErrorCode.VAL_OUT_OF_RANGE: "Value is outside the allowed range",
    ErrorCode.VAL_INVALID_CHOICE: "Value is not one of the allowed choices",
    ErrorCode.VAL_INCOMPATIBLE_SOLVENT: "Drug and solvent are not compatible",
    ErrorCode.VAL_UNKNOWN_SOLVENT: "Solvent is not in the known solvent list",
    ErrorCode.VAL_INVALID_FORMAT: "Value does not have the expected format",
    ErrorCode.VAL_ADVISORY: "Clinical advisory that does not block the record",
    ErrorCode.VAL_NO_RECORD: "No treatment record was supplied",
    ErrorCode.CFG_INVALID_CONFIG: "Configuration file could not be parsed",
    ErrorCode.CFG_FILE_NOT_FOUND: "Configuration file was not found",
}


def get_error_description(error_code: ErrorCode) -> str:
    """Get human-readable description for error code"""
    return ERROR_CODE_DESCRIPTIONS.get(error_code, "Unknown error")
