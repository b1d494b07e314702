"""
Deal Pipeline CRM Deal Models
"""

from sqlalchemy import Column, String, Numeric, DateTime, Text, Integer, Date, Boolean, Uuid, CheckConstraint
from sqlalchemy.sql import func
import uuid
from enum import Enum

from ..core.database import Base


class DealStage(str, Enum):
    """Deal stage enumeration, in pipeline order"""
    DISCUSSIONS = "Discussions"
    QUALIFIED = "Qualified"
    RFQ = "RFQ"
    OFFERED = "Offered"
    WON = "Won"
    LOST = "Lost"
    DROPPED = "Dropped"


class CustomerAgreement(str, Enum):
    """Whether the customer agreed on the identified need"""
    YES = "Yes"
    NO = "No"
    PARTIAL = "Partial"


class BudgetConfirmation(str, Enum):
    YES = "Yes"
    NO = "No"
    ESTIMATE_ONLY = "Estimate Only"


class SupplierPortalAccess(str, Enum):
    INVITED = "Invited"
    APPROVED = "Approved"
    NOT_INVITED = "Not Invited"


class NegotiationStatus(str, Enum):
    """Offer negotiation status"""
    ONGOING = "Ongoing"
    FINALIZED = "Finalized"
    REJECTED = "Rejected"
    ACCEPTED = "Accepted"
    DROPPED = "Dropped"
    NO_RESPONSE = "No Response"


class LossReason(str, Enum):
    BUDGET = "Budget"
    COMPETITOR = "Competitor"
    TIMELINE = "Timeline"
    OTHER = "Other"


class Deal(Base):
    """Deal model mirroring the hosted deals table"""
    __tablename__ = "deals"
    __table_args__ = (
        CheckConstraint("probability >= 0 AND probability <= 100", name="deals_probability_range"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    deal_name = Column(String(255), nullable=False)
    stage = Column(String(50), nullable=False, default=DealStage.DISCUSSIONS.value, index=True)

    # Cross-cutting
    amount = Column(Numeric(14, 2))
    currency = Column(String(3), default="USD")
    probability = Column(Integer)
    closing_date = Column(Date)
    description = Column(Text)
    internal_notes = Column(Text)
    related_lead_id = Column(Uuid, index=True)
    related_meeting_id = Column(Uuid, index=True)

    # Discussions
    customer_need_identified = Column(Boolean)
    need_summary = Column(Text)
    decision_maker_present = Column(Boolean)
    customer_agreed_on_need = Column(String(20))
    discussion_notes = Column(Text)

    # Qualified
    nda_signed = Column(Boolean)
    budget_confirmed = Column(String(20))
    supplier_portal_access = Column(String(20))
    expected_deal_timeline_start = Column(Date)
    expected_deal_timeline_end = Column(Date)
    budget_holder = Column(String(255))
    decision_makers = Column(Text)
    timeline = Column(Text)
    supplier_portal_required = Column(Boolean)

    # RFQ
    rfq_value = Column(Numeric(14, 2))
    rfq_document_url = Column(Text)
    rfq_document_link = Column(Text)
    product_service_scope = Column(Text)
    rfq_confirmation_note = Column(Text)

    # Offered
    proposal_sent_date = Column(Date)
    negotiation_status = Column(String(20))
    decision_expected_date = Column(Date)
    offer_sent_date = Column(Date)
    revised_offer_notes = Column(Text)
    negotiation_notes = Column(Text)

    # Won
    win_reason = Column(Text)
    execution_started = Column(Boolean)
    begin_execution_date = Column(Date)
    confirmation_note = Column(Text)

    # Lost
    loss_reason = Column(String(20))
    lost_to = Column(String(255))
    learning_summary = Column(Text)

    # Dropped
    drop_reason = Column(Text)
    drop_summary = Column(Text)

    # Audit
    created_by = Column(Uuid)
    modified_by = Column(Uuid)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    modified_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_won(self) -> bool:
        return self.stage == DealStage.WON.value

    @property
    def is_lost(self) -> bool:
        return self.stage == DealStage.LOST.value

    @property
    def is_dropped(self) -> bool:
        return self.stage == DealStage.DROPPED.value

    @property
    def is_closed(self) -> bool:
        """Check if deal sits in a terminal stage"""
        return self.is_won or self.is_lost or self.is_dropped

    @property
    def weighted_value(self) -> float:
        """Amount weighted by probability"""
        if self.amount and self.probability:
            return float(self.amount) * (self.probability / 100)
        return 0.0

    def __repr__(self):
        return f"<Deal(deal_name='{self.deal_name}', stage='{self.stage}', amount={self.amount})>"
