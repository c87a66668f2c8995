"""
Dose formula resolution - maps a drug entry to exactly one dosing mode
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .config import EngineConfig
from .error_codes import ClassificationError, ErrorCode
from .expressions import mentions_auc, parse_auc_value, parse_dose_number
from .schema import DoseUnit, DosingMode, Drug

logger = logging.getLogger(__name__)

# Unit of the computed dose for each declared unit
OUTPUT_UNITS: Dict[DoseUnit, str] = {
    DoseUnit.MG_PER_M2: "mg",
    DoseUnit.G_PER_M2: "g",
    DoseUnit.MG_PER_KG: "mg",
    DoseUnit.MG: "mg",
    DoseUnit.UNITS: "units",
    DoseUnit.AUC: "mg",
}


@dataclass(frozen=True)
class DoseFormula:
    """Resolved dosing mode with the intensity it scales"""
    mode: DosingMode
    declared_unit: DoseUnit
    intensity: float        # AUC target, mg/m², mg/kg, or the fixed amount
    output_unit: str


class DoseFormulaResolver:
    """Classifies drug entries by their declared unit and dosage text"""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._aliases = {key.lower(): value for key, value in self.config.unit_aliases.items()}

    def normalize_unit(self, unit: Optional[str]) -> DoseUnit:
        """Map a declared unit (or a known alias) onto the closed unit enumeration"""
        raw = (unit or "").strip()
        candidate = self._aliases.get(raw.lower(), raw)
        try:
            return DoseUnit(candidate)
        except ValueError:
            raise ClassificationError(
                error_code=ErrorCode.DOSE_UNKNOWN_UNIT,
                message=f"Unsupported dosing unit '{raw}'",
                details={
                    "unit": raw,
                    "supported_units": [u.value for u in DoseUnit]
                }
            )

    def resolve(self, drug: Drug) -> DoseFormula:
        """
        Resolve the dosing formula for a drug.

        Priority: AUC target (unit or dosage text), then area scaling, then
        weight scaling, then fixed amount. Raises ClassificationError for a
        unit outside the enumeration.
        """
        unit = self.normalize_unit(drug.unit)

        if unit == DoseUnit.AUC or mentions_auc(drug.dosage):
            mode = DosingMode.RENAL_CALVERT
            intensity = parse_auc_value(drug.dosage)
            output_unit = OUTPUT_UNITS[DoseUnit.AUC]
        elif unit in (DoseUnit.MG_PER_M2, DoseUnit.G_PER_M2):
            mode = DosingMode.BSA_SCALED
            intensity = parse_dose_number(drug.dosage)
            output_unit = OUTPUT_UNITS[unit]
        elif unit == DoseUnit.MG_PER_KG:
            mode = DosingMode.WEIGHT_SCALED
            intensity = parse_dose_number(drug.dosage)
            output_unit = OUTPUT_UNITS[unit]
        else:
            mode = DosingMode.FIXED
            intensity = parse_dose_number(drug.dosage)
            output_unit = OUTPUT_UNITS[unit]

        logger.debug(f"Resolved {drug.name} ({drug.dosage} {drug.unit}) to {mode.value}")
        return DoseFormula(mode=mode, declared_unit=unit, intensity=intensity, output_unit=output_unit)

    def classify(self, drug: Drug) -> DosingMode:
        return self.resolve(drug).mode
