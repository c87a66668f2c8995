"""
Pydantic schemas for dosing engine components
"""

from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import List, Optional, Literal
from datetime import date
from enum import Enum


class DoseUnit(str, Enum):
    MG_PER_M2 = "mg/m²"
    MG_PER_KG = "mg/kg"
    MG = "mg"
    AUC = "AUC"
    UNITS = "units"
    G_PER_M2 = "g/m²"


class DosingMode(str, Enum):
    RENAL_CALVERT = "renal_calvert"
    BSA_SCALED = "bsa_scaled"
    WEIGHT_SCALED = "weight_scaled"
    FIXED = "fixed"


class DrugRoute(str, Enum):
    IV = "IV"
    PO = "PO"
    SC = "SC"
    IM = "IM"
    INTRAVESICAL = "Intravesical"
    IT = "IT"
    INHALATION = "Inhalation"


class Sex(str, Enum):
    MALE = "M"
    FEMALE = "F"


class PremedicationCategory(str, Enum):
    ANTIEMETIC = "antiemetic"
    CORTICOSTEROID = "corticosteroid"
    ANTIHISTAMINE = "antihistamine"
    H2_BLOCKER = "h2_blocker"
    PPI = "ppi"
    BRONCHODILATOR = "bronchodilator"
    OTHER = "other"


class Drug(BaseModel):
    """Drug entry of a regimen definition"""
    model_config = ConfigDict(frozen=True)

    name: str
    dosage: str                     # e.g. "175", "AUC 5"
    unit: str                       # checked against DoseUnit by the resolver
    route: str
    day: Optional[str] = None
    notes: Optional[str] = None
    administration_duration: Optional[str] = None
    available_solvents: Optional[List[str]] = None
    available_volumes: Optional[List[float]] = None
    solvent: Optional[str] = None


class Regimen(BaseModel):
    """Named, ordered set of drug entries"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: Optional[str] = None
    schedule: str = ""
    cycles: Optional[int] = None
    drugs: List[Drug] = Field(default_factory=list)


class PatientBiometrics(BaseModel):
    """Patient values supplied already computed by the intake layer"""
    model_config = ConfigDict(allow_inf_nan=False)

    weight_kg: float = Field(gt=0, le=500)
    height_cm: float = Field(gt=0, le=300)
    age_years: float = Field(ge=0, le=150)
    sex: Sex
    bsa_m2: float = Field(gt=0, le=5)
    creatinine_clearance: float = Field(ge=0)   # mL/min


class PatientInfo(PatientBiometrics):
    """Biometrics plus the display-only identity fields of a treatment sheet"""

    # Display only. Excluded from every dump so it cannot reach a stored snapshot.
    national_id: Optional[str] = Field(default=None, exclude=True, repr=False)
    full_name: Optional[str] = None
    cycle_number: int = Field(default=1, ge=1)
    treatment_date: Optional[date] = None
    next_cycle_date: Optional[date] = None


class CalculatedDrug(BaseModel):
    """Computed dose for one regimen drug"""
    name: str
    calculated_dose: float
    final_dose: float
    unit: str
    dosing_mode: Optional[DosingMode] = None
    route: Optional[str] = None
    solvent: Optional[str] = None
    volume_ml: Optional[float] = None
    administration_duration: Optional[str] = None
    adjustment_notes: Optional[str] = None


class PremedicationAgent(BaseModel):
    """Supportive-care agent given alongside the regimen"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    category: str
    agent_class: str = Field(default="", alias="class")
    dosage: str
    unit: str
    route: str
    timing: str = ""
    indication: str = ""
    is_required: bool = False
    is_standard: bool = False
    administration_duration: Optional[str] = None
    notes: Optional[str] = None
    solvent: Optional[str] = None    # None means standalone administration


class SolventGroup(BaseModel):
    """PEV group: premedications sharing one infusion"""
    model_config = ConfigDict(frozen=True)

    id: str
    solvent: Optional[str] = None
    volume_ml: Optional[float] = None
    medications: List[PremedicationAgent] = Field(default_factory=list)


class GroupingState(BaseModel):
    """Partition of the selected agents into PEV groups and the individual pool"""
    model_config = ConfigDict(frozen=True)

    groups: List[SolventGroup] = Field(default_factory=list)
    individual: List[PremedicationAgent] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    field: str
    message: str
    code: str
    severity: Literal["error", "warning"] = "error"


class ValidationResult(BaseModel):
    """Accumulated errors (blocking) and warnings (non-blocking)"""
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, field: str, message: str, code: str):
        self.errors.append(ValidationIssue(field=field, message=message, code=code))

    def add_warning(self, field: str, message: str, code: str):
        self.warnings.append(
            ValidationIssue(field=field, message=message, code=code, severity="warning")
        )

    def extend(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def messages(self) -> List[str]:
        return [issue.message for issue in self.errors]


class TreatmentRecord(BaseModel):
    """Assembled unit handed to validation and export"""
    patient: PatientInfo
    regimen: Regimen
    # None until doses have been computed
    calculated_drugs: Optional[List[CalculatedDrug]] = None
    premedications: GroupingState = Field(default_factory=GroupingState)
    clinical_notes: str = ""
    orientation: Literal["portrait", "landscape"] = "portrait"
