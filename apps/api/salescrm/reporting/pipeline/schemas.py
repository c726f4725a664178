from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, StrictInt
from pydantic.alias_generators import to_camel


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class DashboardModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DashboardScopeRead(DashboardModel):
    role: str
    user_id: int
    user_name: str | None = None
    region_id: int | None = None
    region_name: str | None = None


class DashboardKpisRead(DashboardModel):
    revenue_won: Money
    pipeline_open: Money
    open_deals_count: int
    win_rate: float
    avg_sales_cycle_days: float
    stalled_deals_count: int


class FunnelStageRead(DashboardModel):
    stage_key: str
    stage_label: str
    count: int
    amount: Money


class ForecastRepRead(DashboardModel):
    label: str
    in_progress_value: Money
    stalled_value: Money


# counts stay integers; amounts go through Money
PivotCell = Annotated[Union[StrictInt, Money], Field(union_mode="left_to_right")]


class ForecastPivotRowRead(DashboardModel):
    row_label: str
    columns: dict[str, PivotCell]


class ForecastPivotRead(DashboardModel):
    mode: Literal["RegionStage", "StageSummary"]
    rows: list[ForecastPivotRowRead]


class StalledDealRead(DashboardModel):
    id: int
    opportunity_name: str
    account_name: str
    stage_label: str
    value: Money
    days_in_stage: int
    owner_name: str


class PipelineReportRead(DashboardModel):
    kpis: DashboardKpisRead
    funnel: list[FunnelStageRead]
    forecast_by_rep: list[ForecastRepRead]
    forecast_pivot: ForecastPivotRead
    stalled_deals: list[StalledDealRead]


class DashboardRead(PipelineReportRead):
    scope: DashboardScopeRead
