from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

from salescrm.crm.enums import TERMINAL_STAGES, OpportunityStage, Role


UNKNOWN_LABEL = "Unknown"
MY_PIPELINE_LABEL = "My Pipeline"
REGION_STAGE_MODE = "RegionStage"
STAGE_SUMMARY_MODE = "StageSummary"
TOTAL_AMOUNT_COLUMN = "TotalAmount"
COUNT_COLUMN = "Count"

_ZERO = Decimal("0")


def as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InvalidWindowError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ReportWindow:
    start: datetime
    end: datetime

    @classmethod
    def from_dates(
        cls,
        date_from: date | None,
        date_to: date | None,
        *,
        now: datetime,
        default_days: int = 30,
    ) -> ReportWindow:
        if date_from is not None and date_to is not None and date_from > date_to:
            raise InvalidWindowError("dateFrom must not be after dateTo")

        now = as_utc(now)
        if date_to is not None:
            end = datetime.combine(date_to, time.max, tzinfo=timezone.utc)
        elif date_from is not None and datetime.combine(date_from, time.min, tzinfo=timezone.utc) > now:
            # a future dateFrom on its own covers that single day
            end = datetime.combine(date_from, time.max, tzinfo=timezone.utc)
        else:
            end = now

        if date_from is not None:
            start = datetime.combine(date_from, time.min, tzinfo=timezone.utc)
        elif date_to is not None:
            start = datetime.combine(date_to - timedelta(days=default_days), time.min, tzinfo=timezone.utc)
        else:
            start = now - timedelta(days=default_days)
        return cls(start=start, end=end)

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        return self.start <= as_utc(moment) <= self.end


@dataclass(frozen=True, slots=True)
class OpportunitySnapshot:
    id: int
    name: str
    stage: str
    amount: Decimal
    close_date: datetime
    created_at: datetime
    updated_at: datetime
    won_at: datetime | None = None
    lost_at: datetime | None = None
    account_name: str | None = None
    region_name: str | None = None
    owner_name: str | None = None

    @property
    def is_open(self) -> bool:
        return self.stage not in TERMINAL_STAGES


def _sum(items: Iterable[OpportunitySnapshot]) -> Decimal:
    return sum((Decimal(item.amount) for item in items), _ZERO)


def _stage_key(label: str) -> str:
    return label.lower().replace(" ", "")


def _days_since(moment: datetime, now: datetime) -> int:
    return max((now - as_utc(moment)).days, 0)


def build_pipeline_report(
    opportunities: Iterable[OpportunitySnapshot],
    *,
    role: Role,
    window: ReportWindow,
    now: datetime,
    stalled_after_days: int = 21,
    stalled_limit: int = 10,
) -> dict[str, Any]:
    """Aggregate an already scoped set of opportunities into the dashboard sections.

    Won deals are counted by close date and lost deals by ``lost_at`` inside the
    window. The open pipeline is a point-in-time snapshot and ignores the window.
    A deal is stalled once its last update is older than ``stalled_after_days``.
    """

    now = as_utc(now)
    stalled_before = now - timedelta(days=stalled_after_days)
    deals = list(opportunities)

    won = [
        deal for deal in deals if deal.stage == OpportunityStage.CLOSED_WON.value and window.contains(deal.close_date)
    ]
    lost = [deal for deal in deals if deal.stage == OpportunityStage.CLOSED_LOST.value and window.contains(deal.lost_at)]
    open_deals = [deal for deal in deals if deal.is_open]
    stalled = [deal for deal in open_deals if as_utc(deal.updated_at) < stalled_before]
    stalled_ids = {deal.id for deal in stalled}

    closed_count = len(won) + len(lost)
    win_rate = len(won) / closed_count * 100 if closed_count else 0.0
    avg_cycle = 0.0
    if won:
        cycle_seconds = sum((as_utc(deal.close_date) - as_utc(deal.created_at)).total_seconds() for deal in won)
        avg_cycle = cycle_seconds / len(won) / 86400

    kpis = {
        "revenue_won": _sum(won),
        "pipeline_open": _sum(open_deals),
        "open_deals_count": len(open_deals),
        "win_rate": win_rate,
        "avg_sales_cycle_days": avg_cycle,
        "stalled_deals_count": len(stalled),
    }

    return {
        "kpis": kpis,
        "funnel": _funnel(open_deals),
        "forecast_by_rep": _forecast_by_rep(open_deals, stalled_ids, role),
        "forecast_pivot": _forecast_pivot(open_deals, role),
        "stalled_deals": _stalled_table(stalled, now, stalled_limit),
    }


def _group(deals: Iterable[OpportunitySnapshot], key: Any) -> dict[str, list[OpportunitySnapshot]]:
    groups: dict[str, list[OpportunitySnapshot]] = {}
    for deal in deals:
        groups.setdefault(key(deal), []).append(deal)
    return groups


def _funnel(open_deals: list[OpportunitySnapshot]) -> list[dict[str, Any]]:
    rows = [
        {
            "stage_key": _stage_key(stage),
            "stage_label": stage,
            "count": len(members),
            "amount": _sum(members),
        }
        for stage, members in _group(open_deals, lambda deal: deal.stage).items()
    ]
    # ascending by amount, kept for compatibility with the existing dashboard
    rows.sort(key=lambda row: row["amount"])
    return rows


def _split(members: list[OpportunitySnapshot], stalled_ids: set[int], label: str) -> dict[str, Any]:
    return {
        "label": label,
        "in_progress_value": _sum(deal for deal in members if deal.id not in stalled_ids),
        "stalled_value": _sum(deal for deal in members if deal.id in stalled_ids),
    }


def _forecast_by_rep(
    open_deals: list[OpportunitySnapshot],
    stalled_ids: set[int],
    role: Role,
) -> list[dict[str, Any]]:
    if role == Role.SALES_REP:
        return [_split(open_deals, stalled_ids, MY_PIPELINE_LABEL)]
    groups = _group(open_deals, lambda deal: deal.owner_name or UNKNOWN_LABEL)
    return [_split(members, stalled_ids, label) for label, members in groups.items()]


def _forecast_pivot(open_deals: list[OpportunitySnapshot], role: Role) -> dict[str, Any]:
    if role == Role.SUPER_ADMIN:
        stages = list(_group(open_deals, lambda deal: deal.stage))
        rows = []
        for region, members in _group(open_deals, lambda deal: deal.region_name or UNKNOWN_LABEL).items():
            by_stage = _group(members, lambda deal: deal.stage)
            rows.append(
                {
                    "row_label": region,
                    "columns": {stage: _sum(by_stage.get(stage, [])) for stage in stages},
                }
            )
        return {"mode": REGION_STAGE_MODE, "rows": rows}

    rows = [
        {
            "row_label": stage,
            "columns": {TOTAL_AMOUNT_COLUMN: _sum(members), COUNT_COLUMN: len(members)},
        }
        for stage, members in _group(open_deals, lambda deal: deal.stage).items()
    ]
    return {"mode": STAGE_SUMMARY_MODE, "rows": rows}


def _stalled_table(stalled: list[OpportunitySnapshot], now: datetime, limit: int) -> list[dict[str, Any]]:
    ordered = sorted(stalled, key=lambda deal: now - as_utc(deal.updated_at), reverse=True)
    return [
        {
            "id": deal.id,
            "opportunity_name": deal.name,
            "account_name": deal.account_name or UNKNOWN_LABEL,
            "stage_label": deal.stage,
            "value": Decimal(deal.amount),
            "days_in_stage": _days_since(deal.updated_at, now),
            "owner_name": deal.owner_name or UNKNOWN_LABEL,
        }
        for deal in ordered[:limit]
    ]
