"""
Failure prediction schemas — scoring output, summaries, and query input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EntityType(str, Enum):
    MERCHANT = "merchant"
    PROVIDER = "provider"
    METHOD = "method"
    COUNTRY = "country"
    ROUTE = "route"


SINGLE_DIMENSION_TYPES = (EntityType.MERCHANT, EntityType.PROVIDER, EntityType.METHOD, EntityType.COUNTRY)


# ─── Scoring output ─────────────────────────────────────────────────────────


class Signal(BaseModel):
    name: str
    value: float
    normalized_value: float
    weight: float
    contribution: float


class BaselineComparison(BaseModel):
    current_error_rate: float
    baseline_error_rate: float
    deviation_percentage: float


class Trend(BaseModel):
    direction: str  # improving | stable | degrading
    rate_of_change: float  # per hour


class FailureProbability(BaseModel):
    entity_type: EntityType
    entity_id: str
    entity_name: str
    probability: float
    risk_level: RiskLevel
    signals: list[Signal]
    confidence: float
    sample_size: int
    baseline_comparison: BaselineComparison
    trend: Trend
    recommended_actions: list[str]
    timestamp: datetime


class RiskSnapshot(BaseModel):
    """Scoring context persisted with a risk notification."""

    signals: list[Signal] = Field(default_factory=list)
    baseline_comparison: BaselineComparison | None = None
    trend: Trend | None = None
    recommended_actions: list[str] = Field(default_factory=list)

    @classmethod
    def from_prediction(cls, prediction: FailureProbability) -> "RiskSnapshot":
        return cls(
            signals=prediction.signals,
            baseline_comparison=prediction.baseline_comparison,
            trend=prediction.trend,
            recommended_actions=prediction.recommended_actions,
        )


class PredictionSummary(BaseModel):
    total_entities_analyzed: int
    high_risk_count: int
    medium_risk_count: int
    low_risk_count: int
    predictions: list[FailureProbability]
    global_health_score: int
    timestamp: datetime


class TopRiskyEntity(BaseModel):
    rank: int
    entity_type: EntityType
    entity_id: str
    entity_name: str
    probability: float
    risk_level: RiskLevel
    error_rate: float
    approval_rate: float
    latency: float
    trend: str
    sample_size: int
    timestamp: datetime


class Top3Summary(BaseModel):
    top_merchants: list[TopRiskyEntity]
    top_providers: list[TopRiskyEntity]
    top_methods: list[TopRiskyEntity]
    overall_top_3: list[TopRiskyEntity]
    timestamp: datetime


class DashboardResponse(BaseModel):
    merchants: PredictionSummary
    providers: PredictionSummary
    methods: PredictionSummary
    global_health: int


# ─── Input ──────────────────────────────────────────────────────────────────


class PredictionQuery(BaseModel):
    merchant_id: UUID | None = None
    provider_id: UUID | None = None
    method_id: UUID | None = None
    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    time_window_minutes: int = Field(default=60, gt=0, le=60 * 24 * 30)
    baseline_window_hours: int = Field(default=168, gt=0, le=24 * 365)
    min_sample_size: int = Field(default=1, ge=0)
    include_low_risk: bool = False
    entity_type: EntityType | None = None

    @field_validator("country_code")
    @classmethod
    def _upper_country(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class WeightsOverride(BaseModel):
    error_rate: float | None = Field(default=None, ge=0)
    latency: float | None = Field(default=None, ge=0)
    approval_rate: float | None = Field(default=None, ge=0)
    trend: float | None = Field(default=None, ge=0)


class ThresholdsOverride(BaseModel):
    critical: float | None = Field(default=None, ge=0, le=1)
    high: float | None = Field(default=None, ge=0, le=1)
    medium: float | None = Field(default=None, ge=0, le=1)


class NormalizationOverride(BaseModel):
    max_error_rate: float | None = Field(default=None, gt=0)
    max_latency: float | None = Field(default=None, gt=0)
    min_approval_rate: float | None = Field(default=None, ge=0, lt=1)


class PredictionConfigOverride(BaseModel):
    weights: WeightsOverride | None = None
    thresholds: ThresholdsOverride | None = None
    normalization: NormalizationOverride | None = None


class PredictionRequest(BaseModel):
    query: PredictionQuery = Field(default_factory=PredictionQuery)
    config: PredictionConfigOverride | None = None


# ─── Route health graph ─────────────────────────────────────────────────────


class HealthStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class NodeMetrics(BaseModel):
    approval_rate: float
    error_rate: float
    p95_latency: float
    sample_size: int
    approval_loss_rate: float = 0.0
    baseline_approval_rate: float = 0.0


class EdgeMetrics(BaseModel):
    approval_rate: float
    error_rate: float
    p95_latency: float
    approval_loss_rate: float = 0.0


class GraphNode(BaseModel):
    id: str
    label: str
    type: EntityType
    status: HealthStatus
    metrics: NodeMetrics


class GraphEdge(BaseModel):
    source: str = Field(serialization_alias="from")
    target: str = Field(serialization_alias="to")
    status: HealthStatus
    label: str
    metrics: EdgeMetrics


class PaymentRoute(BaseModel):
    merchant: GraphNode
    provider: GraphNode
    method: GraphNode
    country: GraphNode
    overall_status: HealthStatus
    metrics: NodeMetrics
    edges: list[GraphEdge]


class HealthGraphSummary(BaseModel):
    total_routes: int
    critical_routes: int
    warning_routes: int
    ok_routes: int


class HealthGraphResponse(BaseModel):
    routes: list[PaymentRoute]
    summary: HealthGraphSummary
    timestamp: datetime


class HealthGraphQuery(BaseModel):
    merchant_id: UUID | None = None
    provider_id: UUID | None = None
    method_id: UUID | None = None
    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    time_window_minutes: int = Field(default=60, gt=0, le=60 * 24 * 30)
    only_issues: bool = False
    critical_error_rate: float = Field(default=0.3, ge=0, le=1)
    warning_error_rate: float = Field(default=0.15, ge=0, le=1)
    critical_approval_rate: float = Field(default=0.5, ge=0, le=1)
    warning_approval_rate: float = Field(default=0.7, ge=0, le=1)
    critical_approval_loss_rate: float = Field(default=0.2, ge=0, le=1)
    warning_approval_loss_rate: float = Field(default=0.1, ge=0, le=1)

    @field_validator("country_code")
    @classmethod
    def _upper_country(cls, value: str | None) -> str | None:
        return value.upper() if value else value
