"""
Drug/solvent compatibility checks against the static compatibility table
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .config import EngineConfig
from .schema import Drug

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r'[^a-z0-9]')


def normalize_solvent_name(name: Optional[str]) -> str:
    """Case-insensitive, punctuation and whitespace free comparison key"""
    if not name:
        return ""
    return _NON_ALNUM.sub('', name.lower())


@dataclass(frozen=True)
class SolventCheck:
    is_valid: bool
    error: Optional[str] = None
    alternatives: List[str] = field(default_factory=list)


class SolventCompatibilityValidator:
    """Pairwise drug/solvent check; drugs missing from the table accept any solvent"""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._known = {normalize_solvent_name(s): s for s in self.config.known_solvents}
        self._aliases = {normalize_solvent_name(k): v for k, v in self.config.solvent_aliases.items()}
        self._table = {
            drug.strip().casefold(): [self.canonical_solvent(s) or s for s in solvents]
            for drug, solvents in self.config.solvent_compatibility.items()
        }

    def canonical_solvent(self, solvent: Optional[str]) -> Optional[str]:
        """Canonical name of a known solvent or alias, None when unknown"""
        key = normalize_solvent_name(solvent)
        if not key:
            return None
        if key in self._aliases:
            return self._aliases[key]
        return self._known.get(key)

    def is_known_solvent(self, solvent: Optional[str]) -> bool:
        return self.canonical_solvent(solvent) is not None

    def _same_solvent(self, candidate: str, allowed: List[str]) -> bool:
        target = normalize_solvent_name(self.canonical_solvent(candidate) or candidate)
        return any(
            normalize_solvent_name(self.canonical_solvent(s) or s) == target
            for s in allowed
        )

    def allowed_solvents(self, drug_name: str) -> Optional[List[str]]:
        """Allowed solvents for a drug, None when the table has no rule for it"""
        allowed = self._table.get((drug_name or "").strip().casefold())
        return list(allowed) if allowed is not None else None

    def check(self, drug_name: str, solvent: Optional[str]) -> Optional[str]:
        """
        Check one drug/solvent pairing.

        Returns:
            An incompatibility message naming drug and solvent, or None.
        """
        if not solvent:
            return None

        allowed = self.allowed_solvents(drug_name)
        if allowed is None:
            return None

        if self._same_solvent(solvent, allowed):
            return None

        logger.warning(f"Solvent compatibility check failed: {drug_name} in {solvent}")
        return f"{drug_name} is not compatible with {solvent}. Compatible solvents: {', '.join(allowed)}"

    def check_drug(self, drug: Drug, solvent: Optional[str]) -> Optional[str]:
        """Table check followed by the drug's own solvent whitelist"""
        message = self.check(drug.name, solvent)
        if message or not solvent or not drug.available_solvents:
            return message

        if not self._same_solvent(solvent, drug.available_solvents):
            return (
                f"{drug.name} is not compatible with {solvent}. "
                f"Solvents listed for this regimen: {', '.join(drug.available_solvents)}"
            )
        return None

    def validate(self, drug_name: str, solvent: Optional[str]) -> SolventCheck:
        """Check with the compatible alternatives attached"""
        error = self.check(drug_name, solvent)
        if error:
            return SolventCheck(is_valid=False, error=error, alternatives=self.allowed_solvents(drug_name) or [])
        return SolventCheck(is_valid=True)

    def selectable_solvents(self, drug_name: str) -> List[str]:
        """Solvents a picker should offer for the drug"""
        allowed = self.allowed_solvents(drug_name)
        if allowed is None:
            return list(self.config.known_solvents)
        return allowed
