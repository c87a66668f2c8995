"""
Dosage expression parsing

parse_auc_value is lenient and never raises: anything it cannot read is 0.
validate_auc_format is the strict gate used when a dosage is accepted.
"""

import re
from dataclasses import dataclass
from typing import Optional

# "AUC5", "AUC 6", "auc4.5", or a bare number
AUC_EXPRESSION = re.compile(r'^\s*(?:AUC\s*)?(\d+(?:\.\d+)?|\.\d+)\s*$', re.IGNORECASE)
AUC_STRICT = re.compile(r'^\s*AUC\s?(\d+(?:\.\d+)?)\s*$', re.IGNORECASE)
AUC_RANGE = re.compile(r'^\s*AUC\s*\d+(?:\.\d+)?\s*-\s*\d', re.IGNORECASE)
AUC_PREFIX = re.compile(r'^\s*AUC', re.IGNORECASE)
LEADING_NUMBER = re.compile(r'^\s*(\d+(?:\.\d+)?|\.\d+)')
# leading number followed by another number not glued to a unit ("m2"): "400-1000", "8 then 6 mg/kg"
TRAILING_VALUE = re.compile(r'^\s*(?:\d+(?:\.\d+)?|\.\d+)(?![\d.])\D*(?<![A-Za-z])\d')


@dataclass(frozen=True)
class AUCFormatVerdict:
    is_valid: bool
    error: Optional[str] = None


def parse_auc_value(dosage: Optional[str]) -> float:
    """
    Extract the AUC target from a dosage expression.

    Returns:
        The numeric target, or 0.0 when the text is empty, lacks a number
        or carries anything after it.
    """
    if not dosage or not isinstance(dosage, str):
        return 0.0

    match = AUC_EXPRESSION.match(dosage)
    if not match:
        return 0.0
    return float(match.group(1))


def mentions_auc(dosage: Optional[str]) -> bool:
    """True when the dosage text is written as an AUC target"""
    return bool(dosage) and isinstance(dosage, str) and AUC_PREFIX.match(dosage) is not None


def validate_auc_format(dosage: Optional[str]) -> AUCFormatVerdict:
    """Strict check: 'AUC', at most one space, one number. Ranges are rejected."""
    if not dosage or not isinstance(dosage, str):
        return AUCFormatVerdict(False, "AUC dosage is empty")

    if AUC_RANGE.match(dosage):
        return AUCFormatVerdict(False, f"Multiple AUC values not allowed: {dosage}")

    match = AUC_STRICT.match(dosage)
    if not match:
        return AUCFormatVerdict(False, f"Invalid AUC format: {dosage}")

    if float(match.group(1)) <= 0:
        return AUCFormatVerdict(False, f"AUC target must be greater than zero: {dosage}")

    return AUCFormatVerdict(True)


def parse_dose_number(dosage: Optional[str]) -> float:
    """Leading numeric value of a plain dosage such as '175' or '2.5 mg'; 0.0 if none"""
    if dosage is None:
        return 0.0
    if isinstance(dosage, (int, float)):
        return float(dosage)

    match = LEADING_NUMBER.match(dosage)
    if not match:
        return 0.0
    return float(match.group(1))


def has_trailing_values(dosage: Optional[str]) -> bool:
    """True for ranges and compound dosages, where only the leading number is used"""
    if not dosage or not isinstance(dosage, str):
        return False
    return TRAILING_VALUE.match(dosage) is not None
