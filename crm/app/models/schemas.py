"""
Deal Pipeline CRM Request/Response Models
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field, field_validator

from .deals import (
    DealStage,
    CustomerAgreement,
    BudgetConfirmation,
    SupplierPortalAccess,
    NegotiationStatus,
    LossReason,
)


class DealFields(BaseModel):
    """Editable deal attributes shared by the create and stage forms"""
    amount: Optional[Decimal] = Field(None, ge=0, description="Deal amount")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO currency code")
    probability: Optional[int] = Field(None, ge=0, le=100, description="Win probability in percent")
    closing_date: Optional[date] = None
    description: Optional[str] = None
    internal_notes: Optional[str] = None
    related_lead_id: Optional[UUID] = Field(None, description="Originating lead")
    related_meeting_id: Optional[UUID] = Field(None, description="Originating meeting")

    # Discussions
    customer_need_identified: Optional[bool] = None
    need_summary: Optional[str] = None
    decision_maker_present: Optional[bool] = None
    customer_agreed_on_need: Optional[CustomerAgreement] = None
    discussion_notes: Optional[str] = None

    # Qualified
    nda_signed: Optional[bool] = None
    budget_confirmed: Optional[BudgetConfirmation] = None
    supplier_portal_access: Optional[SupplierPortalAccess] = None
    expected_deal_timeline_start: Optional[date] = None
    expected_deal_timeline_end: Optional[date] = None
    budget_holder: Optional[str] = Field(None, max_length=255)
    decision_makers: Optional[str] = None
    timeline: Optional[str] = None
    supplier_portal_required: Optional[bool] = None

    # RFQ
    rfq_value: Optional[Decimal] = Field(None, ge=0)
    rfq_document_url: Optional[str] = None
    rfq_document_link: Optional[str] = None
    product_service_scope: Optional[str] = None
    rfq_confirmation_note: Optional[str] = None

    # Offered
    proposal_sent_date: Optional[date] = None
    negotiation_status: Optional[NegotiationStatus] = None
    decision_expected_date: Optional[date] = None
    offer_sent_date: Optional[date] = None
    revised_offer_notes: Optional[str] = None
    negotiation_notes: Optional[str] = None

    # Won
    win_reason: Optional[str] = None
    execution_started: Optional[bool] = None
    begin_execution_date: Optional[date] = None
    confirmation_note: Optional[str] = None

    # Lost
    loss_reason: Optional[LossReason] = None
    lost_to: Optional[str] = Field(None, max_length=255)
    learning_summary: Optional[str] = None

    # Dropped
    drop_reason: Optional[str] = None
    drop_summary: Optional[str] = None

    class Config:
        use_enum_values = True


class DealCreateRequest(DealFields):
    """Request model for adding a deal manually or from a meeting/lead"""
    deal_name: str = Field(..., min_length=1, max_length=255)
    stage: DealStage = DealStage.DISCUSSIONS

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "deal_name": "Acme line retrofit",
                "amount": 125000,
                "currency": "EUR",
                "probability": 20,
                "related_meeting_id": "0b6f4b43-6a2e-4e4b-9d8e-3f4a2b1c0d9e"
            }
        }


class DealUpdateRequest(DealFields):
    """Stage form submit; stage changes go through move/advance"""
    deal_name: Optional[str] = Field(None, min_length=1, max_length=255)

    @field_validator("deal_name")
    @classmethod
    def deal_name_not_null(cls, value: Optional[str]) -> str:
        # Omit the key to keep the name; null would clear a NOT NULL column
        if value is None or not value.strip():
            raise ValueError("Deal name cannot be empty")
        return value

    class Config:
        use_enum_values = True
        extra = "forbid"


class MoveDealRequest(BaseModel):
    """Request model for moving a deal to another stage"""
    target_stage: DealStage
    fields: Optional[DealUpdateRequest] = Field(
        None, description="Stage form values submitted together with the move"
    )


class AdvanceDealRequest(BaseModel):
    """Request model for the move-to-next-stage action"""
    fields: Optional[DealUpdateRequest] = None


class BulkDeleteRequest(BaseModel):
    deal_ids: List[UUID] = Field(..., min_length=1, max_length=500)


class DealSnapshot(BaseModel):
    """In-memory view of a deal row that the pipeline rules evaluate"""
    id: Optional[UUID] = None
    deal_name: Optional[str] = None
    stage: str = DealStage.DISCUSSIONS.value

    amount: Optional[float] = None
    currency: Optional[str] = None
    probability: Optional[int] = None
    closing_date: Optional[date] = None
    description: Optional[str] = None
    internal_notes: Optional[str] = None
    related_lead_id: Optional[UUID] = None
    related_meeting_id: Optional[UUID] = None

    customer_need_identified: Optional[bool] = None
    need_summary: Optional[str] = None
    decision_maker_present: Optional[bool] = None
    customer_agreed_on_need: Optional[str] = None
    discussion_notes: Optional[str] = None

    nda_signed: Optional[bool] = None
    budget_confirmed: Optional[str] = None
    supplier_portal_access: Optional[str] = None
    expected_deal_timeline_start: Optional[date] = None
    expected_deal_timeline_end: Optional[date] = None
    budget_holder: Optional[str] = None
    decision_makers: Optional[str] = None
    timeline: Optional[str] = None
    supplier_portal_required: Optional[bool] = None

    rfq_value: Optional[float] = None
    rfq_document_url: Optional[str] = None
    rfq_document_link: Optional[str] = None
    product_service_scope: Optional[str] = None
    rfq_confirmation_note: Optional[str] = None

    proposal_sent_date: Optional[date] = None
    negotiation_status: Optional[str] = None
    decision_expected_date: Optional[date] = None
    offer_sent_date: Optional[date] = None
    revised_offer_notes: Optional[str] = None
    negotiation_notes: Optional[str] = None

    win_reason: Optional[str] = None
    execution_started: Optional[bool] = None
    begin_execution_date: Optional[date] = None
    confirmation_note: Optional[str] = None

    loss_reason: Optional[str] = None
    lost_to: Optional[str] = None
    learning_summary: Optional[str] = None

    drop_reason: Optional[str] = None
    drop_summary: Optional[str] = None

    created_by: Optional[UUID] = None
    modified_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DealResponse(DealSnapshot):
    """Response model for deal data"""
    completion_status: str
    is_closed: bool
    weighted_value: float


class RequirementResponse(BaseModel):
    field: str
    description: str


class DealDetailResponse(DealResponse):
    """Deal plus the stage checklist used by the edit dialog"""
    stage_requirements: List[str]
    missing_requirements: List[RequirementResponse]
    next_stage: Optional[str]
    highest_stage_reached: Optional[str]
    visible_fields: List[str]
    read_only_fields: List[str]


class TransitionResponse(BaseModel):
    """Response model for a transition gate probe"""
    deal_id: str
    current_stage: str
    target_stage: str
    allowed: bool
    reason: str
    missing_requirements: List[RequirementResponse]
    commit_requirements: List[RequirementResponse]


class DealCardResponse(BaseModel):
    id: str
    deal_name: str
    stage: str
    amount: Optional[float]
    currency: Optional[str]
    probability: Optional[int]
    closing_date: Optional[str]
    completion_status: str


class BoardColumnResponse(BaseModel):
    """One Kanban column"""
    stage: str
    is_terminal: bool
    deal_count: int
    total_value: float
    readiness_percent: int
    deals: List[DealCardResponse]


class BoardResponse(BaseModel):
    columns: List[BoardColumnResponse]
    total_deals: int


class StageStatsResponse(BaseModel):
    count: int
    value: float


class DealStatsResponse(BaseModel):
    """Pipeline header figures"""
    total_deals: int
    total_value: float
    won_deals: int
    won_value: float
    average_deal_size: float
    win_rate: float
    weighted_value: float
    by_stage: dict[str, StageStatsResponse]
