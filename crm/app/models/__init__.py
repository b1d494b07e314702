"""
Deal Pipeline CRM Core Models
"""

from .deals import (
    Deal,
    DealStage,
    CustomerAgreement,
    BudgetConfirmation,
    SupplierPortalAccess,
    NegotiationStatus,
    LossReason,
)

__all__ = [
    "Deal",
    "DealStage",
    "CustomerAgreement",
    "BudgetConfirmation",
    "SupplierPortalAccess",
    "NegotiationStatus",
    "LossReason",
]
