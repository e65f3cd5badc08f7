# validator.py
"""Structural DOT checks on a finished classification."""

from __future__ import annotations

import re

from models import HAZARD_CLASSES, PACKING_GROUPS, Classification, ValidationReport


_UN_FORMAT = re.compile(r"^UN\d{4}$")

LOW_CONFIDENCE_WARNING = 0.5


def validate_classification(result: Classification) -> ValidationReport:
    """Return errors (blocking) and warnings (informational) for ``result``.

    Verified non-regulated items carry ``exemption_reason`` and skip every check.
    A result with neither a UN number nor an exemption is treated as unresolved
    and fails with "UN number is required".
    """

    errors = []
    warnings = []

    if result.exemption_reason:
        return ValidationReport(is_valid=True)

    if not result.un_number:
        errors.append("UN number is required for hazmat shipments")
    elif not _UN_FORMAT.match(result.un_number):
        errors.append(f"Invalid UN number format: {result.un_number}")

    if not result.hazard_class:
        errors.append("Hazard class is required for hazmat shipments")
    elif result.hazard_class not in HAZARD_CLASSES:
        warnings.append(f"Unusual hazard class: {result.hazard_class}")

    if not result.proper_shipping_name:
        errors.append("Proper shipping name is required for hazmat shipments")

    if result.packing_group and result.packing_group not in PACKING_GROUPS:
        errors.append(f"Invalid packing group: {result.packing_group}")

    if result.confidence < LOW_CONFIDENCE_WARNING:
        warnings.append(f"Low confidence classification ({round(result.confidence * 100)}%)")

    return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)


__all__ = ["validate_classification"]
