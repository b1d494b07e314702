"""
Deal Pipeline Board
Kanban columns and header statistics computed from the fetched deal list
"""

from typing import Any, Dict, Iterable, List
import structlog

from ..models.deals import DealStage
from .stage_rules import STAGE_ORDER, classify, is_terminal, parse_stage, ready_to_advance

logger = structlog.get_logger()


def _amount(deal: Any) -> float:
    return float(deal.amount) if deal.amount else 0.0


def deal_card(deal: Any) -> Dict[str, Any]:
    """Card payload for one deal"""
    return {
        "id": str(deal.id),
        "deal_name": deal.deal_name,
        "stage": deal.stage,
        "amount": float(deal.amount) if deal.amount is not None else None,
        "currency": deal.currency,
        "probability": deal.probability,
        "closing_date": deal.closing_date.isoformat() if deal.closing_date else None,
        "completion_status": classify(deal).value,
    }


def readiness_percent(deals: List[Any]) -> int:
    """Share of deals that may advance to their next stage"""
    if not deals:
        return 0
    ready = sum(1 for deal in deals if ready_to_advance(deal))
    # Halves round up
    return int(ready * 100 / len(deals) + 0.5)


def build_board(deals: Iterable[Any]) -> Dict[str, Any]:
    """Group deals into one column per catalog stage"""
    by_stage: Dict[DealStage, List[Any]] = {stage: [] for stage in STAGE_ORDER}
    total = 0

    for deal in deals:
        total += 1
        stage = parse_stage(deal.stage)
        if stage is None:
            logger.warning("Deal left off the board", deal_id=str(deal.id), stage=deal.stage)
            continue
        by_stage[stage].append(deal)

    columns = []
    for stage in STAGE_ORDER:
        stage_deals = by_stage[stage]
        columns.append({
            "stage": stage.value,
            "is_terminal": is_terminal(stage),
            "deal_count": len(stage_deals),
            "total_value": sum(_amount(deal) for deal in stage_deals),
            "readiness_percent": readiness_percent(stage_deals),
            "deals": [deal_card(deal) for deal in stage_deals],
        })

    return {"columns": columns, "total_deals": total}


def pipeline_stats(deals: List[Any]) -> Dict[str, Any]:
    """Total value, won value, average size and win rate"""
    total_value = sum(_amount(deal) for deal in deals)
    won_deals = [deal for deal in deals if deal.stage == DealStage.WON.value]
    won_value = sum(_amount(deal) for deal in won_deals)

    weighted_value = sum(
        _amount(deal) * (deal.probability / 100)
        for deal in deals
        if deal.probability and not is_terminal(deal.stage)
    )

    by_stage = {}
    for stage in STAGE_ORDER:
        stage_deals = [deal for deal in deals if deal.stage == stage.value]
        by_stage[stage.value] = {
            "count": len(stage_deals),
            "value": sum(_amount(deal) for deal in stage_deals),
        }

    return {
        "total_deals": len(deals),
        "total_value": total_value,
        "won_deals": len(won_deals),
        "won_value": won_value,
        "average_deal_size": total_value / len(deals) if deals else 0.0,
        "win_rate": len(won_deals) / len(deals) * 100 if deals else 0.0,
        "weighted_value": weighted_value,
        "by_stage": by_stage,
    }
