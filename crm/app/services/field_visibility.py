"""
Stage-based field visibility for the deal edit form
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..models.deals import DealStage
from .stage_rules import STAGE_ORDER, STAGE_REQUIREMENTS, TERMINAL_STAGES, index_of, parse_stage

STAGE_FIELD_GROUPS: Dict[DealStage, Tuple[str, ...]] = {
    DealStage.DISCUSSIONS: (
        "customer_need_identified",
        "need_summary",
        "decision_maker_present",
        "customer_agreed_on_need",
        "discussion_notes",
    ),
    DealStage.QUALIFIED: (
        "nda_signed",
        "budget_confirmed",
        "supplier_portal_access",
        "expected_deal_timeline_start",
        "expected_deal_timeline_end",
        "budget_holder",
        "decision_makers",
        "timeline",
        "supplier_portal_required",
    ),
    DealStage.RFQ: (
        "rfq_value",
        "rfq_document_url",
        "rfq_document_link",
        "product_service_scope",
        "rfq_confirmation_note",
    ),
    DealStage.OFFERED: (
        "proposal_sent_date",
        "negotiation_status",
        "decision_expected_date",
        "offer_sent_date",
        "revised_offer_notes",
        "negotiation_notes",
    ),
    DealStage.WON: ("win_reason", "execution_started", "begin_execution_date", "confirmation_note"),
    DealStage.LOST: ("loss_reason", "lost_to", "learning_summary"),
    DealStage.DROPPED: ("drop_reason", "drop_summary"),
}

BASIC_FIELDS: Tuple[str, ...] = (
    "deal_name",
    "stage",
    "amount",
    "probability",
    "closing_date",
    "currency",
    "description",
    "internal_notes",
    "related_lead_id",
    "related_meeting_id",
    "created_at",
    "modified_at",
)


def _entered(value: Any) -> bool:
    if value is None or value == "":
        return False
    # A zero amount is the unset default; False is still an answer
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return value != 0
    return True


def _has_progress(deal: Any, stage: DealStage) -> bool:
    return any(_entered(getattr(deal, req.field, None)) for req in STAGE_REQUIREMENTS[stage])


def highest_stage_reached(deal: Any) -> Optional[DealStage]:
    """Furthest stage a deal has visibly worked through.

    A deal moved back to an earlier stage keeps the fields it filled in later
    stages, so those later groups stay on screen.
    """
    current = parse_stage(getattr(deal, "stage", None))
    if current is None:
        return None

    highest = index_of(current)
    for stage in STAGE_ORDER:
        if stage in TERMINAL_STAGES:
            continue
        if _has_progress(deal, stage):
            highest = max(highest, index_of(stage))

    return STAGE_ORDER[highest]


def _reached_groups(deal: Any) -> List[DealStage]:
    current = parse_stage(getattr(deal, "stage", None))
    highest = highest_stage_reached(deal)
    if current is None or highest is None:
        return []

    stages = [
        stage for stage in STAGE_ORDER
        if stage not in TERMINAL_STAGES and index_of(stage) <= index_of(highest)
    ]
    # Only the deal's own outcome group applies among the terminal stages
    if current in TERMINAL_STAGES:
        stages.append(current)
    return stages


def visible_fields(deal: Any) -> List[str]:
    """Basic fields plus the groups of every stage the deal has reached"""
    fields = list(BASIC_FIELDS)
    for stage in _reached_groups(deal):
        fields.extend(STAGE_FIELD_GROUPS[stage])
    return fields


def read_only_fields(deal: Any) -> List[str]:
    """Fields owned by stages the deal has already left"""
    current_index = index_of(getattr(deal, "stage", None))
    if current_index < 0:
        return []

    fields: List[str] = []
    for stage in _reached_groups(deal):
        if stage not in TERMINAL_STAGES and index_of(stage) < current_index:
            fields.extend(STAGE_FIELD_GROUPS[stage])
    return fields
