"""
Static configuration tables for the dosing engine

All tables are loaded once from YAML into an immutable EngineConfig that is
injected into each component. Tests build EngineConfig objects directly.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .error_codes import ConfigurationError, ErrorCode
from .schema import DrugRoute, PremedicationCategory

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent / "config"

CONFIG_FILES = {
    "solvents": "solvents.yaml",
    "drug_limits": "drug_limits.yaml",
    "premedication": "premedication.yaml",
    "validation_rules": "validation_rules.yaml",
}


class RenalAdjustment(BaseModel):
    crcl_threshold: float
    adjustment: str


class DrugLimit(BaseModel):
    """Per-cycle and lifetime limits for one drug"""
    unit: str
    max_per_cycle: Optional[float] = None
    max_per_cycle_by_schedule: Optional[Dict[str, float]] = None
    max_cumulative: Optional[float] = None
    gfr_cap: Optional[float] = None
    max_concentration: Optional[float] = None   # mg/mL
    min_concentration: Optional[float] = None   # mg/mL
    min_volume_ml: Optional[float] = None
    warnings: str = ""
    renal_adjustment: Optional[RenalAdjustment] = None


class CalvertSettings(BaseModel):
    gfr_cap: float = 125.0
    gfr_offset: float = 25.0


class DosageLimits(BaseModel):
    """Largest intensity accepted from a dosage expression, in its declared unit"""
    max_value: float = 100000.0


class PatientThresholds(BaseModel):
    """Soft plausibility thresholds; crossing them only warns"""
    pediatric_age: float = 18
    elderly_age: float = 75
    low_weight_kg: float = 10
    high_weight_kg: float = 150
    bsa_min: float = 0.5
    bsa_max: float = 3.5
    severe_renal_crcl: float = 30
    moderate_renal_crcl: float = 60


class EngineConfig(BaseModel):
    """Configuration for the dosing, compatibility and validation components"""
    model_config = ConfigDict(frozen=True)

    known_solvents: List[str] = [
        "Normal Saline 0.9%",
        "Dextrose 5%",
        "Ringer Solution",
        "Water for Injection",
    ]
    solvent_aliases: Dict[str, str] = {
        "NS": "Normal Saline 0.9%",
        "NaCl 0.9%": "Normal Saline 0.9%",
        "D5W": "Dextrose 5%",
        "Glucose 5%": "Dextrose 5%",
    }
    # drug name -> allowed solvents; drugs without an entry accept any solvent
    solvent_compatibility: Dict[str, List[str]] = Field(default_factory=dict)
    drug_limits: Dict[str, DrugLimit] = Field(default_factory=dict)

    unit_aliases: Dict[str, str] = {
        "mg/m2": "mg/m²",
        "mg/m^2": "mg/m²",
        "g/m2": "g/m²",
        "g/m^2": "g/m²",
        "auc": "AUC",
        "unit": "units",
        "u": "units",
        "iu": "units",
    }
    drug_routes: List[str] = [route.value for route in DrugRoute]
    premedication_routes: List[str] = ["IV", "PO", "SC", "IM"]
    premedication_categories: List[str] = [category.value for category in PremedicationCategory]

    calvert: CalvertSettings = Field(default_factory=CalvertSettings)
    dosage_limits: DosageLimits = Field(default_factory=DosageLimits)
    patient_thresholds: PatientThresholds = Field(default_factory=PatientThresholds)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning(f"Config file {path} not found, using defaults")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message=f"Cannot parse configuration file {path.name}",
            details={"path": str(path)},
            original_exception=e
        )

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message=f"Configuration file {path.name} must contain a mapping",
            details={"path": str(path)}
        )
    return data


def load_engine_config(config_dir: Optional[Path] = None) -> EngineConfig:
    """Load all configuration files into one EngineConfig"""
    config_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR

    solvents = _read_yaml(config_dir / CONFIG_FILES["solvents"])
    limits = _read_yaml(config_dir / CONFIG_FILES["drug_limits"])
    premeds = _read_yaml(config_dir / CONFIG_FILES["premedication"])
    rules = _read_yaml(config_dir / CONFIG_FILES["validation_rules"])

    values: Dict[str, Any] = {}
    if "known_solvents" in solvents:
        values["known_solvents"] = solvents["known_solvents"]
    if "aliases" in solvents:
        values["solvent_aliases"] = solvents["aliases"]
    if "compatibility" in solvents:
        values["solvent_compatibility"] = solvents["compatibility"]
    if "drug_limits" in limits:
        values["drug_limits"] = limits["drug_limits"]
    if "categories" in premeds:
        values["premedication_categories"] = premeds["categories"]
    if "routes" in premeds:
        values["premedication_routes"] = premeds["routes"]
    for key in ("unit_aliases", "drug_routes", "calvert", "dosage_limits", "patient_thresholds"):
        if key in rules:
            values[key] = rules[key]

    try:
        config = EngineConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message="Configuration tables failed schema validation",
            details={"config_dir": str(config_dir), "errors": str(e)},
            original_exception=e
        )

    logger.info(
        f"Dosing engine configuration loaded: {len(config.solvent_compatibility)} compatibility rules, "
        f"{len(config.drug_limits)} drug limits"
    )
    return config
