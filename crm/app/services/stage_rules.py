"""
Deal Pipeline Stage Rules
Stage catalog, per-stage requirement table, completion classifier and the
transition gate. Everything here is pure: callers pass an in-memory deal
(ORM row or DealSnapshot) and issue any writes themselves.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import structlog

from ..models.deals import (
    DealStage,
    CustomerAgreement,
    BudgetConfirmation,
    SupplierPortalAccess,
    NegotiationStatus,
    LossReason,
)

logger = structlog.get_logger()


# Catalog

STAGE_ORDER: Tuple[DealStage, ...] = tuple(DealStage)

TERMINAL_STAGES = frozenset({DealStage.WON, DealStage.LOST, DealStage.DROPPED})


def parse_stage(value: Any) -> Optional[DealStage]:
    """Map a stored stage string onto the catalog, None when unknown"""
    if isinstance(value, DealStage):
        return value
    try:
        return DealStage(value)
    except ValueError:
        return None


def index_of(stage: Any) -> int:
    parsed = parse_stage(stage)
    return STAGE_ORDER.index(parsed) if parsed is not None else -1


def is_terminal(stage: Any) -> bool:
    return parse_stage(stage) in TERMINAL_STAGES


def next_after(stage: Any) -> Optional[DealStage]:
    """Following catalog entry; the same stage when last or terminal"""
    parsed = parse_stage(stage)
    if parsed is None:
        return None
    if parsed in TERMINAL_STAGES:
        return parsed

    position = STAGE_ORDER.index(parsed)
    if position + 1 >= len(STAGE_ORDER):
        return parsed
    return STAGE_ORDER[position + 1]


# Requirement predicates

def _filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _is_true(value: Any) -> bool:
    return value is True


def _is_set(value: Any) -> bool:
    return value is not None


def _positive(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def _one_of(*options: Enum) -> Callable[[Any], bool]:
    allowed = frozenset(option.value for option in options)

    def check(value: Any) -> bool:
        if isinstance(value, Enum):
            value = value.value
        return value in allowed

    return check


@dataclass(frozen=True)
class Requirement:
    """One field a stage needs before a deal may leave (or enter) it"""
    field: str
    description: str
    check: Callable[[Any], bool]

    def is_met(self, deal: Any) -> bool:
        return self.check(getattr(deal, self.field, None))

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "description": self.description}


STAGE_REQUIREMENTS: Dict[DealStage, Tuple[Requirement, ...]] = {
    DealStage.DISCUSSIONS: (
        Requirement("customer_need_identified", "Customer need identified", _is_true),
        Requirement("need_summary", "Need summary documented", _filled),
        Requirement("decision_maker_present", "Decision maker present confirmed", _is_true),
        Requirement(
            "customer_agreed_on_need",
            "Customer agreement on need status",
            _one_of(*CustomerAgreement),
        ),
    ),
    DealStage.QUALIFIED: (
        Requirement("nda_signed", "NDA signed status", _is_set),
        Requirement("budget_confirmed", "Budget confirmation", _one_of(*BudgetConfirmation)),
        Requirement(
            "supplier_portal_access",
            "Supplier portal access status",
            _one_of(*SupplierPortalAccess),
        ),
        Requirement("expected_deal_timeline_start", "Deal timeline start date", _filled),
        Requirement("expected_deal_timeline_end", "Deal timeline end date", _filled),
    ),
    DealStage.RFQ: (
        Requirement("rfq_value", "RFQ value specified", _positive),
        Requirement("rfq_document_url", "RFQ document URL provided", _filled),
        Requirement("product_service_scope", "Product/service scope defined", _filled),
    ),
    DealStage.OFFERED: (
        Requirement("proposal_sent_date", "Proposal sent date", _filled),
        Requirement(
            "negotiation_status",
            "Negotiation status",
            _one_of(NegotiationStatus.ONGOING, NegotiationStatus.FINALIZED, NegotiationStatus.REJECTED),
        ),
        Requirement("decision_expected_date", "Decision expected date", _filled),
    ),
    DealStage.WON: (),
    DealStage.LOST: (),
    DealStage.DROPPED: (),
}

# Checked when a deal is committed into a terminal stage
TERMINAL_ENTRY_REQUIREMENTS: Dict[DealStage, Tuple[Requirement, ...]] = {
    DealStage.WON: (),
    DealStage.LOST: (
        Requirement("loss_reason", "Loss reason specified", _one_of(*LossReason)),
    ),
    DealStage.DROPPED: (
        Requirement("drop_reason", "Drop reason documented", _filled),
    ),
}


def _current_stage(deal: Any) -> Optional[DealStage]:
    raw = getattr(deal, "stage", None)
    stage = parse_stage(raw)
    if stage is None:
        logger.warning(
            "Deal has a stage outside the catalog",
            deal_id=str(getattr(deal, "id", None)),
            stage=raw,
        )
    return stage


def get_stage_requirements(stage: Any) -> List[str]:
    """Checklist descriptions for a stage"""
    parsed = parse_stage(stage)
    if parsed is None:
        return []
    if parsed in TERMINAL_STAGES:
        return [req.description for req in TERMINAL_ENTRY_REQUIREMENTS[parsed]]
    return [req.description for req in STAGE_REQUIREMENTS[parsed]]


def missing_requirements(deal: Any) -> List[Requirement]:
    """Requirements of the deal's current stage that are not yet satisfied"""
    stage = _current_stage(deal)
    if stage is None:
        return []
    return [req for req in STAGE_REQUIREMENTS[stage] if not req.is_met(deal)]


def is_stage_complete(deal: Any) -> bool:
    """True when every requirement of the current stage holds"""
    return not missing_requirements(deal)


# Classifier

class CompletionStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    INCOMPLETE = "incomplete"


def classify(deal: Any) -> CompletionStatus:
    """Card status for the current stage; any satisfied field counts as partial"""
    stage = _current_stage(deal)
    if stage is None:
        return CompletionStatus.COMPLETE

    requirements = STAGE_REQUIREMENTS[stage]
    met = sum(1 for req in requirements if req.is_met(deal))

    if met == len(requirements):
        return CompletionStatus.COMPLETE
    if met > 0:
        return CompletionStatus.PARTIAL
    return CompletionStatus.INCOMPLETE


# Transition gate

class TransitionReason(str, Enum):
    SAME_STAGE = "same_stage"
    UNKNOWN_TARGET = "unknown_target"
    TERMINAL_TARGET = "terminal_target"
    UNKNOWN_STAGE = "unknown_stage"
    CURRENT_STAGE_COMPLETE = "current_stage_complete"
    CURRENT_STAGE_INCOMPLETE = "current_stage_incomplete"


@dataclass
class TransitionDecision:
    allowed: bool
    reason: TransitionReason
    current_stage: Optional[str]
    target_stage: Optional[str]
    missing: List[Requirement] = field(default_factory=list)


def check_transition(deal: Any, target_stage: Any) -> TransitionDecision:
    """Decide whether a deal may move from its current stage to target_stage"""
    raw_stage = getattr(deal, "stage", None)
    target = parse_stage(target_stage)
    target_value = target.value if target is not None else target_stage

    if target is None:
        return TransitionDecision(False, TransitionReason.UNKNOWN_TARGET, raw_stage, target_value)

    if raw_stage == target.value:
        return TransitionDecision(False, TransitionReason.SAME_STAGE, raw_stage, target_value)

    # Opens the terminal form; the reason fields are checked at commit
    if target in TERMINAL_STAGES:
        return TransitionDecision(True, TransitionReason.TERMINAL_TARGET, raw_stage, target_value)

    if _current_stage(deal) is None:
        return TransitionDecision(True, TransitionReason.UNKNOWN_STAGE, raw_stage, target_value)

    missing = missing_requirements(deal)
    if missing:
        return TransitionDecision(
            False, TransitionReason.CURRENT_STAGE_INCOMPLETE, raw_stage, target_value, missing
        )
    return TransitionDecision(True, TransitionReason.CURRENT_STAGE_COMPLETE, raw_stage, target_value)


def can_move_to_stage(deal: Any, target_stage: Any) -> bool:
    return check_transition(deal, target_stage).allowed


def terminal_commit_errors(deal: Any, target_stage: Any) -> List[Requirement]:
    """Unmet reason fields for committing a deal into a terminal stage"""
    target = parse_stage(target_stage)
    if target not in TERMINAL_STAGES:
        return []
    return [req for req in TERMINAL_ENTRY_REQUIREMENTS[target] if not req.is_met(deal)]


def ready_to_advance(deal: Any) -> bool:
    """Whether the deal could move to the next catalog stage right now"""
    stage = parse_stage(getattr(deal, "stage", None))
    if stage is None or stage in TERMINAL_STAGES:
        return True
    return can_move_to_stage(deal, next_after(stage))
