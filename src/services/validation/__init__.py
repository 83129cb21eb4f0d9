"""
Validation Services for Eligibility Checks.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Provides:
- Patient query validation before a 270 is built
- Reconciliation of stored patient records with payer-verified 271 data
"""

from src.services.validation.patient_query_validator import (
    ValidationResult,
    validate_patient_query,
    ensure_valid_patient_query,
)
from src.services.validation.patient_reconciliation import (
    PatientReconciler,
    ReconciliationResult,
    ExternalPatientRecord,
    Discrepancy,
    DiscrepancyType,
    Recommendation,
    similarity,
)

__all__ = [
    # Query validation
    "ValidationResult",
    "validate_patient_query",
    "ensure_valid_patient_query",
    # Reconciliation
    "PatientReconciler",
    "ReconciliationResult",
    "ExternalPatientRecord",
    "Discrepancy",
    "DiscrepancyType",
    "Recommendation",
    "similarity",
]
