"""
Deal Pipeline CRM Deal API Endpoints
Board, list, stage forms and stage transitions
"""

from typing import List, Optional
from uuid import UUID
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ..core.config import settings
from ..core.database import get_db
from ..core.security import CurrentUser, get_current_user
from ..models.deals import Deal, DealStage
from ..models.schemas import (
    AdvanceDealRequest,
    BoardResponse,
    BulkDeleteRequest,
    DealCreateRequest,
    DealDetailResponse,
    DealResponse,
    DealSnapshot,
    DealStatsResponse,
    DealUpdateRequest,
    MoveDealRequest,
    TransitionResponse,
)
from ..services.board import build_board, pipeline_stats
from ..services.deal_service import DealService, DealNotFoundError, StageTransitionError
from ..services.field_visibility import highest_stage_reached, read_only_fields, visible_fields
from ..services.stage_rules import (
    STAGE_ORDER,
    classify,
    get_stage_requirements,
    is_terminal,
    missing_requirements,
    next_after,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/deals", tags=["deals"])


def _deal_response(deal: Deal) -> DealResponse:
    return DealResponse(
        **DealSnapshot.model_validate(deal).model_dump(),
        completion_status=classify(deal).value,
        is_closed=deal.is_closed,
        weighted_value=deal.weighted_value,
    )


def _deal_detail(deal: Deal) -> DealDetailResponse:
    following = next_after(deal.stage)
    highest = highest_stage_reached(deal)

    return DealDetailResponse(
        **_deal_response(deal).model_dump(),
        stage_requirements=get_stage_requirements(deal.stage),
        missing_requirements=[req.to_dict() for req in missing_requirements(deal)],
        next_stage=following.value if following is not None and following.value != deal.stage else None,
        highest_stage_reached=highest.value if highest is not None else None,
        visible_fields=visible_fields(deal),
        read_only_fields=read_only_fields(deal),
    )


def _not_found(e: DealNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _transition_refused(e: StageTransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT if e.is_noop else status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=e.to_detail()
    )


@router.get("/stages/definitions")
async def get_stage_definitions():
    """Get the stage catalog and each stage's checklist"""
    return {
        "stages": [
            {
                "name": stage.value,
                "order": position,
                "is_terminal": is_terminal(stage),
                "next_stage": None if next_after(stage) == stage else next_after(stage).value,
                "requirements": get_stage_requirements(stage),
            }
            for position, stage in enumerate(STAGE_ORDER)
        ],
        "terminal_stages": [stage.value for stage in STAGE_ORDER if is_terminal(stage)],
    }


@router.get("/board", response_model=BoardResponse)
async def get_board(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Deals grouped into Kanban columns"""
    try:
        deals = await DealService(db, user).list_deals(sort_by="modified_at", sort_order="desc")
        return build_board(deals)

    except Exception as e:
        logger.error("Failed to build deal board", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve deals"
        )


@router.get("/stats", response_model=DealStatsResponse)
async def get_deal_stats(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Pipeline value, won value, average deal size and win rate"""
    try:
        deals = await DealService(db, user).list_deals()
        return pipeline_stats(deals)

    except Exception as e:
        logger.error("Failed to compute deal stats", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute deal statistics"
        )


@router.get("/", response_model=List[DealResponse])
async def list_deals(
    stage: Optional[DealStage] = Query(None, description="Filter by deal stage"),
    search: Optional[str] = Query(None, max_length=255, description="Match deal names"),
    related_lead_id: Optional[UUID] = Query(None, description="Filter by originating lead"),
    related_meeting_id: Optional[UUID] = Query(None, description="Filter by originating meeting"),
    created_by: Optional[UUID] = Query(None, description="Filter by creator"),
    min_probability: Optional[int] = Query(None, ge=0, le=100),
    closing_from: Optional[date] = Query(None, description="Earliest closing date"),
    closing_to: Optional[date] = Query(None, description="Latest closing date"),
    sort_by: str = Query("modified_at", description="Column to order by"),
    sort_order: str = Query("desc", pattern=r"^(asc|desc)$"),
    limit: int = Query(50, ge=1, le=settings.max_page_size, description="Number of deals to return"),
    offset: int = Query(0, ge=0, description="Number of deals to skip"),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """List deals with filtering, sorting and pagination"""
    try:
        deals = await DealService(db, user).list_deals(
            stage=stage,
            search=search,
            related_lead_id=related_lead_id,
            related_meeting_id=related_meeting_id,
            created_by=created_by,
            min_probability=min_probability,
            closing_from=closing_from,
            closing_to=closing_to,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset
        )
        return [_deal_response(deal) for deal in deals]

    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error("Failed to list deals", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve deals"
        )


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_deal(
    request: DealCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Add a deal manually or from a meeting or lead"""
    try:
        deal = await DealService(db, user).create_deal(request)

        return {
            "status": "success",
            "message": "Deal created",
            "data": _deal_detail(deal)
        }

    except StageTransitionError as e:
        raise _transition_refused(e)
    except Exception as e:
        logger.error("Deal creation failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create deal"
        )


@router.post("/bulk-delete")
async def bulk_delete_deals(
    request: BulkDeleteRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Delete several deals at once"""
    try:
        result = await DealService(db, user).bulk_delete(request.deal_ids)

        return {
            "status": "success",
            "message": f"{len(result['deleted'])} deal(s) deleted",
            "data": result
        }

    except Exception as e:
        logger.error("Bulk deal deletion failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete deals"
        )


@router.get("/{deal_id}", response_model=DealDetailResponse)
async def get_deal(
    deal_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Get a specific deal with its stage checklist"""
    try:
        deal = await DealService(db, user).get_deal(deal_id)
        return _deal_detail(deal)

    except DealNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        logger.error("Failed to get deal", deal_id=str(deal_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve deal"
        )


@router.patch("/{deal_id}")
async def update_deal(
    deal_id: UUID,
    request: DealUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Save a stage form; the stage itself is changed through move or advance"""
    try:
        deal = await DealService(db, user).update_deal(deal_id, request)

        return {
            "status": "success",
            "message": "Deal updated",
            "data": _deal_detail(deal)
        }

    except DealNotFoundError as e:
        raise _not_found(e)
    except StageTransitionError as e:
        raise _transition_refused(e)
    except Exception as e:
        logger.error("Deal update failed", deal_id=str(deal_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update deal"
        )


@router.get("/{deal_id}/transitions/{target_stage}", response_model=TransitionResponse)
async def check_transition(
    deal_id: UUID,
    target_stage: DealStage,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Ask the transition gate whether a deal can reach target_stage"""
    try:
        return await DealService(db, user).check_move(deal_id, target_stage)

    except DealNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        logger.error("Transition check failed", deal_id=str(deal_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check stage transition"
        )


@router.post("/{deal_id}/move")
async def move_deal(
    deal_id: UUID,
    request: MoveDealRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Move a deal to another stage (board drop or stage dialog submit)"""
    try:
        deal = await DealService(db, user).move_deal(deal_id, request.target_stage, request.fields)

        return {
            "status": "success",
            "message": f"Deal moved to {deal.stage} stage",
            "data": _deal_detail(deal)
        }

    except DealNotFoundError as e:
        raise _not_found(e)
    except StageTransitionError as e:
        raise _transition_refused(e)
    except Exception as e:
        logger.error("Deal move failed", deal_id=str(deal_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to move deal"
        )


@router.post("/{deal_id}/advance")
async def advance_deal(
    deal_id: UUID,
    request: Optional[AdvanceDealRequest] = None,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Move a deal to the next stage in the pipeline"""
    try:
        fields = request.fields if request else None
        deal = await DealService(db, user).advance_deal(deal_id, fields)

        return {
            "status": "success",
            "message": f"Deal moved to {deal.stage} stage",
            "data": _deal_detail(deal)
        }

    except DealNotFoundError as e:
        raise _not_found(e)
    except StageTransitionError as e:
        raise _transition_refused(e)
    except Exception as e:
        logger.error("Deal advance failed", deal_id=str(deal_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to advance deal"
        )


@router.delete("/{deal_id}")
async def delete_deal(
    deal_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user)
):
    """Delete a deal record"""
    try:
        await DealService(db, user).delete_deal(deal_id)

        return {
            "status": "success",
            "message": "Deal deleted",
            "deal_id": str(deal_id)
        }

    except DealNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        logger.error("Deal deletion failed", deal_id=str(deal_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete deal"
        )
