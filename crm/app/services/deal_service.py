"""
Deal Pipeline CRM Deal Service
Deal CRUD and stage progression over the hosted deals table
"""

from typing import Dict, Any, List, Optional
from uuid import UUID
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
import structlog

from ..core.config import settings
from ..core.security import CurrentUser
from ..models.deals import Deal, DealStage
from ..models.schemas import DealCreateRequest, DealUpdateRequest, DealSnapshot
from ..services.nats_client import get_nats_client
from ..services.stage_rules import (
    Requirement,
    TransitionDecision,
    TransitionReason,
    check_transition,
    is_terminal,
    next_after,
    terminal_commit_errors,
)

logger = structlog.get_logger()

SORTABLE_COLUMNS = {
    "deal_name": Deal.deal_name,
    "stage": Deal.stage,
    "amount": Deal.amount,
    "currency": Deal.currency,
    "probability": Deal.probability,
    "closing_date": Deal.closing_date,
    "created_at": Deal.created_at,
    "modified_at": Deal.modified_at,
}

OUTCOME_SUBJECTS = {
    DealStage.WON.value: "deals.won",
    DealStage.LOST.value: "deals.lost",
    DealStage.DROPPED.value: "deals.dropped",
}


class DealNotFoundError(LookupError):
    """Raised when a deal id does not resolve to a row"""

    def __init__(self, deal_id: UUID):
        super().__init__(f"Deal {deal_id} not found")
        self.deal_id = deal_id


class StageTransitionError(ValueError):
    """Raised when a requested stage change is refused"""

    MISSING_TERMINAL_REASON = "missing_terminal_reason"
    NO_NEXT_STAGE = "no_next_stage"

    def __init__(
        self,
        message: str,
        reason: str,
        current_stage: Optional[str],
        target_stage: Optional[str],
        missing: Optional[List[Requirement]] = None
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.current_stage = current_stage
        self.target_stage = target_stage
        self.missing = missing or []

    @property
    def is_noop(self) -> bool:
        return self.reason == TransitionReason.SAME_STAGE.value

    def to_detail(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "reason": self.reason,
            "current_stage": self.current_stage,
            "target_stage": self.target_stage,
            "missing_requirements": [req.to_dict() for req in self.missing],
        }


def _rejection_message(decision: TransitionDecision) -> str:
    if decision.reason == TransitionReason.SAME_STAGE:
        return f"Deal is already in {decision.current_stage} stage"
    if decision.reason == TransitionReason.UNKNOWN_TARGET:
        return f"Unknown stage {decision.target_stage}"
    return "Please complete all required fields for the current stage before moving forward"


class DealService:
    """Service for deal pipeline management"""

    def __init__(self, db: AsyncSession, user: Optional[CurrentUser] = None):
        self.db = db
        self.user = user

    @property
    def _user_id(self) -> Optional[UUID]:
        return self.user.id if self.user else None

    async def create_deal(self, request: DealCreateRequest) -> Deal:
        """Add a deal; the stage defaults to the first catalog entry"""

        try:
            values = request.model_dump(exclude_unset=True)
            values["stage"] = DealStage(request.stage).value
            values.setdefault("currency", settings.default_currency)

            commit_errors = terminal_commit_errors(DealSnapshot(**values), values["stage"])
            if commit_errors:
                raise StageTransitionError(
                    f"{', '.join(req.description for req in commit_errors)} required to create a "
                    f"deal in {values['stage']}",
                    StageTransitionError.MISSING_TERMINAL_REASON,
                    None,
                    values["stage"],
                    commit_errors
                )

            deal = Deal(**values, created_by=self._user_id, modified_by=self._user_id)

            self.db.add(deal)
            await self.db.commit()
            await self.db.refresh(deal)

            await self._publish_deal_event("deals.created", deal, {
                "related_lead_id": deal.related_lead_id,
                "related_meeting_id": deal.related_meeting_id,
            })

            logger.info(
                "Deal created",
                deal_id=str(deal.id),
                stage=deal.stage,
                amount=float(deal.amount) if deal.amount else None,
                created_by=str(self._user_id)
            )

            return deal

        except StageTransitionError:
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error("Deal creation failed", deal_name=request.deal_name, error=str(e))
            raise

    async def get_deal(self, deal_id: UUID) -> Deal:
        result = await self.db.execute(select(Deal).where(Deal.id == deal_id))
        deal = result.scalar_one_or_none()

        if not deal:
            raise DealNotFoundError(deal_id)

        return deal

    async def list_deals(
        self,
        stage: Optional[DealStage] = None,
        search: Optional[str] = None,
        related_lead_id: Optional[UUID] = None,
        related_meeting_id: Optional[UUID] = None,
        created_by: Optional[UUID] = None,
        min_probability: Optional[int] = None,
        closing_from: Optional[date] = None,
        closing_to: Optional[date] = None,
        sort_by: str = "modified_at",
        sort_order: str = "desc",
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Deal]:
        """List deals with filtering, ordering and pagination"""

        if sort_by not in SORTABLE_COLUMNS:
            raise ValueError(f"Cannot sort by {sort_by}. Sortable: {sorted(SORTABLE_COLUMNS)}")

        query = select(Deal)

        if stage:
            query = query.where(Deal.stage == DealStage(stage).value)
        if search:
            query = query.where(Deal.deal_name.ilike(f"%{search.strip()}%"))
        if related_lead_id:
            query = query.where(Deal.related_lead_id == related_lead_id)
        if related_meeting_id:
            query = query.where(Deal.related_meeting_id == related_meeting_id)
        if created_by:
            query = query.where(Deal.created_by == created_by)
        if min_probability is not None:
            query = query.where(Deal.probability >= min_probability)
        if closing_from:
            query = query.where(Deal.closing_date >= closing_from)
        if closing_to:
            query = query.where(Deal.closing_date <= closing_to)

        column = SORTABLE_COLUMNS[sort_by]
        if sort_order == "asc":
            query = query.order_by(column.asc().nulls_last(), Deal.id)
        else:
            query = query.order_by(column.desc().nulls_first(), Deal.id)

        query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        try:
            result = await self.db.execute(query)
            return list(result.scalars().all())
        except Exception as e:
            logger.error("Failed to list deals", error=str(e))
            raise

    async def update_deal(self, deal_id: UUID, request: DealUpdateRequest) -> Deal:
        """Apply a stage form submit without changing the stage"""

        try:
            deal = await self.get_deal(deal_id)
            updates = request.model_dump(exclude_unset=True)

            if is_terminal(deal.stage):
                snapshot = DealSnapshot.model_validate(deal).model_copy(update=updates)
                commit_errors = terminal_commit_errors(snapshot, deal.stage)
                if commit_errors:
                    raise StageTransitionError(
                        f"{', '.join(req.description for req in commit_errors)} required for a deal in "
                        f"{deal.stage}",
                        StageTransitionError.MISSING_TERMINAL_REASON,
                        deal.stage,
                        deal.stage,
                        commit_errors
                    )

            for name, value in updates.items():
                setattr(deal, name, value)
            deal.modified_by = self._user_id

            await self.db.commit()
            await self.db.refresh(deal)

            await self._publish_deal_event("deals.updated", deal, {"fields": sorted(updates)})

            logger.info("Deal updated", deal_id=str(deal_id), fields=sorted(updates))
            return deal

        except (DealNotFoundError, StageTransitionError):
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error("Deal update failed", deal_id=str(deal_id), error=str(e))
            raise

    async def check_move(self, deal_id: UUID, target_stage: DealStage) -> Dict[str, Any]:
        """Evaluate the transition gate without writing anything"""
        deal = await self.get_deal(deal_id)
        decision = check_transition(deal, target_stage)

        return {
            "deal_id": str(deal_id),
            "current_stage": deal.stage,
            "target_stage": DealStage(target_stage).value,
            "allowed": decision.allowed,
            "reason": decision.reason.value,
            "missing_requirements": [req.to_dict() for req in decision.missing],
            "commit_requirements": [req.to_dict() for req in terminal_commit_errors(deal, target_stage)],
        }

    async def move_deal(
        self,
        deal_id: UUID,
        target_stage: DealStage,
        fields: Optional[DealUpdateRequest] = None
    ) -> Deal:
        """Move a deal to target_stage, writing any submitted form fields with it"""

        try:
            deal = await self.get_deal(deal_id)
            return await self._apply_move(deal, DealStage(target_stage), fields)

        except (DealNotFoundError, StageTransitionError):
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Deal move failed",
                deal_id=str(deal_id),
                target_stage=DealStage(target_stage).value,
                error=str(e)
            )
            raise

    async def advance_deal(self, deal_id: UUID, fields: Optional[DealUpdateRequest] = None) -> Deal:
        """Move a deal to the stage following its current one"""

        try:
            deal = await self.get_deal(deal_id)
            target = next_after(deal.stage)

            if target is None or target.value == deal.stage:
                raise StageTransitionError(
                    f"Deal in {deal.stage} stage has no next stage",
                    StageTransitionError.NO_NEXT_STAGE,
                    deal.stage,
                    None
                )

            return await self._apply_move(deal, target, fields)

        except (DealNotFoundError, StageTransitionError):
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error("Deal advance failed", deal_id=str(deal_id), error=str(e))
            raise

    async def delete_deal(self, deal_id: UUID) -> None:
        try:
            deal = await self.get_deal(deal_id)
            await self.db.delete(deal)
            await self.db.commit()

            await self._publish_deal_event("deals.deleted", deal, {})
            logger.info("Deal deleted", deal_id=str(deal_id), deleted_by=str(self._user_id))

        except DealNotFoundError:
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error("Deal deletion failed", deal_id=str(deal_id), error=str(e))
            raise

    async def bulk_delete(self, deal_ids: List[UUID]) -> Dict[str, Any]:
        """Delete several deals in one statement"""

        requested = list(dict.fromkeys(deal_ids))

        try:
            result = await self.db.execute(select(Deal.id).where(Deal.id.in_(requested)))
            existing = set(result.scalars().all())

            if existing:
                await self.db.execute(delete(Deal).where(Deal.id.in_(existing)))
                await self.db.commit()

            deleted = [deal_id for deal_id in requested if deal_id in existing]
            not_found = [deal_id for deal_id in requested if deal_id not in existing]

            for deal_id in deleted:
                await self._publish_event("deals.deleted", {"deal_id": str(deal_id)})

            logger.info("Deals bulk deleted", deleted=len(deleted), not_found=len(not_found))

            return {
                "deleted": [str(deal_id) for deal_id in deleted],
                "not_found": [str(deal_id) for deal_id in not_found],
            }

        except Exception as e:
            await self.db.rollback()
            logger.error("Bulk deal deletion failed", count=len(requested), error=str(e))
            raise

    async def _apply_move(
        self,
        deal: Deal,
        target: DealStage,
        fields: Optional[DealUpdateRequest]
    ) -> Deal:
        updates = fields.model_dump(exclude_unset=True) if fields else {}
        snapshot = DealSnapshot.model_validate(deal).model_copy(update=updates)

        decision = check_transition(snapshot, target)
        if not decision.allowed:
            logger.info(
                "Deal move refused",
                deal_id=str(deal.id),
                current_stage=deal.stage,
                target_stage=target.value,
                reason=decision.reason.value,
                missing=[req.field for req in decision.missing]
            )
            raise StageTransitionError(
                _rejection_message(decision),
                decision.reason.value,
                deal.stage,
                target.value,
                decision.missing
            )

        commit_errors = terminal_commit_errors(snapshot, target)
        if commit_errors:
            raise StageTransitionError(
                f"{', '.join(req.description for req in commit_errors)} required to move to {target.value}",
                StageTransitionError.MISSING_TERMINAL_REASON,
                deal.stage,
                target.value,
                commit_errors
            )

        old_stage = deal.stage
        for name, value in updates.items():
            setattr(deal, name, value)
        deal.stage = target.value
        deal.modified_by = self._user_id

        await self.db.commit()
        await self.db.refresh(deal)

        event_data = {"old_stage": old_stage, "new_stage": deal.stage, "gate": decision.reason.value}
        await self._publish_deal_event("deals.stage_changed", deal, event_data)
        if deal.stage in OUTCOME_SUBJECTS:
            await self._publish_deal_event(OUTCOME_SUBJECTS[deal.stage], deal, event_data)

        logger.info(
            "Deal moved",
            deal_id=str(deal.id),
            old_stage=old_stage,
            new_stage=deal.stage,
            modified_by=str(self._user_id)
        )

        return deal

    async def _publish_deal_event(self, subject: str, deal: Deal, event_data: Dict[str, Any]):
        """Publish deal event to NATS"""
        await self._publish_event(subject, {
            "deal_id": str(deal.id),
            "deal_name": deal.deal_name,
            "stage": deal.stage,
            "amount": float(deal.amount) if deal.amount else None,
            "actor_id": str(self._user_id) if self._user_id else None,
            "event_data": event_data
        })

    async def _publish_event(self, subject: str, payload: Dict[str, Any]):
        if not settings.nats_enabled:
            return

        try:
            nats_client = await get_nats_client()
            await nats_client.publish_event(subject, payload)
        except Exception as e:
            logger.warning("Failed to publish deal event", subject=subject, error=str(e))
