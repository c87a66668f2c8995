"""
National identifier handling and record non-retention

The identifier is a display-only field of the in-memory record. It is
excluded from every model dump, dropped when a snapshot is reloaded and
cleared whenever a record is re-derived.
"""

import logging
import re
from typing import Any, Dict, Optional

from .schema import PatientInfo, Regimen, TreatmentRecord

logger = logging.getLogger(__name__)

NATIONAL_ID_LENGTH = 13
_NON_DIGIT = re.compile(r'\D')

# keys that may carry the identifier in snapshots coming from older clients
IDENTIFIER_KEYS = ("national_id", "cnp", "nationalId")


def sanitize_national_id(value: Optional[str]) -> str:
    """Keep digits only, truncated to the identifier length"""
    if not value:
        return ""
    return _NON_DIGIT.sub('', str(value))[:NATIONAL_ID_LENGTH]


def sanitize_patient(patient: PatientInfo) -> PatientInfo:
    """Copy of the patient with the identifier reduced to its digits"""
    if not patient.national_id:
        return patient
    return patient.model_copy(update={"national_id": sanitize_national_id(patient.national_id) or None})


def validate_national_id(value: Optional[str]) -> Optional[str]:
    """Error message for a malformed identifier, None when it is well formed"""
    if value is None or value == "":
        return None
    if not re.fullmatch(r'\d{%d}' % NATIONAL_ID_LENGTH, str(value)):
        return f"National identifier must contain exactly {NATIONAL_ID_LENGTH} digits"
    return None


def _strip_identifiers(patient: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in patient.items() if key not in IDENTIFIER_KEYS}


def persistable_snapshot(record: TreatmentRecord) -> Dict[str, Any]:
    """JSON-ready copy of the record suitable for storage"""
    snapshot = record.model_dump(mode="json", by_alias=True)
    snapshot["patient"] = _strip_identifiers(snapshot.get("patient", {}))
    return snapshot


def reload_record(snapshot: Dict[str, Any]) -> TreatmentRecord:
    """Rebuild a record from a stored snapshot; the identifier always comes back empty"""
    data = dict(snapshot)
    patient = data.get("patient") or {}
    if any(key in patient for key in IDENTIFIER_KEYS):
        logger.warning("Discarded national identifier found in a stored snapshot")
    data["patient"] = _strip_identifiers(patient)
    return TreatmentRecord.model_validate(data)


def reset_patient(patient: PatientInfo) -> PatientInfo:
    """Copy of the patient with the identifier cleared"""
    return patient.model_copy(update={"national_id": None})


def rederive_for_regimen(record: TreatmentRecord, regimen: Regimen) -> TreatmentRecord:
    """
    Record for a different regimen selection.

    Biometrics and premedications carry over; the identifier is cleared and
    the calculated drugs are dropped since they belong to the old regimen.
    """
    return record.model_copy(update={
        "patient": reset_patient(record.patient),
        "regimen": regimen,
        "calculated_drugs": None,
    })