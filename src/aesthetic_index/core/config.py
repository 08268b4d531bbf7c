"""Configuration schemas and loading for the aesthetic scoring pipeline."""

from __future__ import annotations

from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from aesthetic_index.core.errors import ConfigFileNotFoundError, InvalidConfigError

WEIGHT_SUM_TOLERANCE = 1e-3


def _check_weight_sum(name: str, *weights: float) -> None:
    total = sum(weights)
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        msg = f"{name} must sum to 1.0 (got {total:.4f})"
        raise ValueError(msg)


class RatingConfig(BaseModel):
    """Elo-style rating and uncertainty parameters.

    Attributes:
        default_mean: Starting rating for a never-compared item.
        default_uncertainty: Starting uncertainty (sigma).
        k_factor: K-factor for a normal vote.
        super_k_factor: K-factor for a super vote.
        normal_vote_weight: Vote weight of a normal comparison.
        super_vote_weight: Vote weight at or above which a vote counts as super.
        uncertainty_floor: Lower bound for sigma.
        uncertainty_ceiling: Upper bound for sigma.
        uncertainty_decay: Staleness term added in quadrature on every update.
        uncertainty_shrink: Multiplicative shrink applied after the decay term.
    """

    default_mean: float = 1200.0
    default_uncertainty: float = 350.0
    k_factor: float = Field(default=32.0, gt=0)
    super_k_factor: float = Field(default=64.0, gt=0)
    normal_vote_weight: int = Field(default=1, ge=1)
    super_vote_weight: int = Field(default=5, ge=1)
    uncertainty_floor: float = Field(default=50.0, gt=0)
    uncertainty_ceiling: float = 400.0
    uncertainty_decay: float = Field(default=10.0, ge=0)
    uncertainty_shrink: float = Field(default=0.98, gt=0, le=1)

    @model_validator(mode="after")
    def validate_bounds(self) -> RatingConfig:
        if self.uncertainty_floor >= self.uncertainty_ceiling:
            msg = "uncertainty_floor must be below uncertainty_ceiling"
            raise ValueError(msg)
        if not self.uncertainty_floor <= self.default_uncertainty <= self.uncertainty_ceiling:
            msg = "default_uncertainty must lie within [uncertainty_floor, uncertainty_ceiling]"
            raise ValueError(msg)
        if self.super_k_factor <= self.k_factor:
            msg = "super_k_factor must be greater than k_factor"
            raise ValueError(msg)
        if self.super_vote_weight <= self.normal_vote_weight:
            msg = "super_vote_weight must be greater than normal_vote_weight"
            raise ValueError(msg)
        return self


class CalibrationConfig(BaseModel):
    """Per-voter slider calibration and reliability parameters."""

    default_slider_std: float = Field(default=15.0, gt=0)
    min_slider_std: float = Field(default=5.0, gt=0)
    z_clamp: float = Field(default=2.5, gt=0)
    default_reliability: float = 1.0
    reliability_min: float = 0.5
    reliability_max: float = 1.5
    reliability_learning_rate: float = Field(default=0.10, gt=0, le=1)
    aligned_target: float = 1.2
    misaligned_target: float = 0.8
    reliability_ema_alpha: float = Field(default=0.05, gt=0, le=1)

    @model_validator(mode="after")
    def validate_reliability_bounds(self) -> CalibrationConfig:
        if self.reliability_min >= self.reliability_max:
            msg = "reliability_min must be below reliability_max"
            raise ValueError(msg)
        for name in ("default_reliability", "aligned_target", "misaligned_target"):
            value = getattr(self, name)
            if not self.reliability_min <= value <= self.reliability_max:
                msg = f"{name} must lie within [reliability_min, reliability_max]"
                raise ValueError(msg)
        return self


class ComponentWeights(BaseModel):
    """Relative weight of each score component."""

    rating: float = Field(default=0.40, ge=0)
    slider: float = Field(default=0.30, ge=0)
    favorite: float = Field(default=0.30, ge=0)

    @model_validator(mode="after")
    def validate_sum(self) -> ComponentWeights:
        _check_weight_sum("Component weights", self.rating, self.slider, self.favorite)
        return self


class ConfidenceWeights(BaseModel):
    """Relative weight of each item confidence input."""

    uncertainty: float = Field(default=0.5, ge=0)
    comparisons: float = Field(default=0.3, ge=0)
    sliders: float = Field(default=0.2, ge=0)

    @model_validator(mode="after")
    def validate_sum(self) -> ConfidenceWeights:
        _check_weight_sum("Confidence weights", self.uncertainty, self.comparisons, self.sliders)
        return self


class ComposerConfig(BaseModel):
    """Score composition parameters."""

    weights: ComponentWeights = Field(default_factory=ComponentWeights)
    confidence_weights: ConfidenceWeights = Field(default_factory=ConfidenceWeights)
    rating_min: float = 800.0
    rating_max: float = 2000.0
    neutral_slider: float = Field(default=50.0, ge=0, le=100)
    favorite_log_base: float = Field(default=4.0, gt=1)
    neutral_score: float = Field(default=50.0, ge=0, le=100)
    comparison_target: int = Field(default=10, ge=1)
    slider_target: int = Field(default=5, ge=1)
    provisional_min_comparisons: int = Field(default=5, ge=0)
    provisional_min_sliders: int = Field(default=2, ge=0)
    provisional_min_confidence: float = Field(default=30.0, ge=0, le=100)

    @model_validator(mode="after")
    def validate_domain(self) -> ComposerConfig:
        if self.rating_min >= self.rating_max:
            msg = "rating_min must be below rating_max"
            raise ValueError(msg)
        return self


class PublishGateConfig(BaseModel):
    """Minimum-data thresholds and republish policy."""

    min_comparisons: int = Field(default=5, ge=0)
    min_distinct_opponents: int = Field(default=3, ge=0)
    min_slider_ratings: int = Field(default=2, ge=0)
    min_distinct_slider_raters: int = Field(default=2, ge=0)
    min_score_change: float = Field(default=0.5, ge=0)
    confidence_tiers: list[float] = Field(
        default_factory=lambda: [20.0, 30.0, 40.0, 50.0, 60.0, 70.0, 80.0, 90.0]
    )
    grace_period_minutes: float = Field(default=5.0, ge=0)

    @field_validator("confidence_tiers")
    @classmethod
    def validate_tiers_ascending(cls, v: list[float]) -> list[float]:
        if any(b <= a for a, b in zip(v, v[1:], strict=False)):
            msg = "confidence_tiers must be strictly ascending"
            raise ValueError(msg)
        return v


class DirtyPriorities(BaseModel):
    """Queue priority raised by each event kind (higher is processed first)."""

    comparison: int = 0
    super_comparison: int = 10
    slider: int = 5
    favorite: int = 15


class BatchConfig(BaseModel):
    """Batch worker pacing, limits and failure policy.

    Attributes:
        batch_size: Maximum items processed per scheduled run.
        claim_chunk_size: Items claimed per claim round trip.
        max_concurrency: Items processed in parallel within a chunk.
        jitter_min_ms: Lower bound of the delay inserted between items.
        jitter_max_ms: Upper bound of the delay inserted between items.
        item_timeout_seconds: Time limit for processing a single item.
        max_batch_seconds: Soft cap after which no new chunks are claimed.
        claim_timeout_minutes: Age after which an abandoned claim may be reclaimed.
        failure_ratio: Error share above which the batch counts as failed.
        interval_minutes: Scheduler period.
        trigger_priority: Priority at or above which ingestion fires a priority batch.
        trigger_batch_size: Items claimed by an opportunistic priority batch.
        events_page_size: Events read per page while folding an item.
        vote_milestones: Comparison counts at which an item is escalated to a
            priority batch.
        high_activity_threshold: Comparisons within the activity window that
            escalate an item to a priority batch; None disables the check.
        high_activity_window_hours: Length of the activity window.
    """

    batch_size: int = Field(default=500, ge=1)
    claim_chunk_size: int = Field(default=25, ge=1)
    max_concurrency: int = Field(default=1, ge=1)
    jitter_min_ms: float = Field(default=5.0, ge=0)
    jitter_max_ms: float = Field(default=7.5, ge=0)
    item_timeout_seconds: float = Field(default=30.0, gt=0)
    max_batch_seconds: float = Field(default=300.0, gt=0)
    claim_timeout_minutes: float = Field(default=15.0, gt=0)
    failure_ratio: float = Field(default=0.5, ge=0, le=1)
    interval_minutes: float = Field(default=60.0, gt=0)
    trigger_priority: int = 10
    trigger_batch_size: int = Field(default=5, ge=1)
    events_page_size: int = Field(default=500, ge=1)
    vote_milestones: list[int] = Field(default_factory=lambda: [5, 10, 25, 50, 100])
    high_activity_threshold: int | None = Field(default=5, ge=1)
    high_activity_window_hours: float = Field(default=24.0, gt=0)
    priorities: DirtyPriorities = Field(default_factory=DirtyPriorities)

    @model_validator(mode="after")
    def validate_jitter(self) -> BatchConfig:
        if self.jitter_min_ms > self.jitter_max_ms:
            msg = "jitter_min_ms must not exceed jitter_max_ms"
            raise ValueError(msg)
        return self

    @field_validator("vote_milestones")
    @classmethod
    def validate_milestones(cls, v: list[int]) -> list[int]:
        if any(m < 1 for m in v):
            msg = "vote_milestones must be positive"
            raise ValueError(msg)
        return sorted(set(v))


class CollectionConfig(BaseModel):
    """Collection Aesthetic Index parameters."""

    trim_fraction: float = Field(default=0.05, ge=0, lt=0.5)
    min_trim_sample: int = Field(default=10, ge=1)
    cohesion_max_penalty: float = Field(default=0.30, ge=0, le=1)
    cohesion_std_scale: float = Field(default=15.0, gt=0)
    coverage_weight: float = Field(default=0.6, ge=0)
    depth_weight: float = Field(default=0.4, ge=0)
    target_votes_per_item: float = Field(default=20.0, gt=0)
    confidence_coverage_weight: float = Field(default=0.5, ge=0)
    confidence_depth_weight: float = Field(default=0.3, ge=0)
    confidence_uncertainty_weight: float = Field(default=0.2, ge=0)
    standard_error_scale: float = Field(default=10.0, gt=0)
    index_mean_weight: float = Field(default=0.80, ge=0)
    index_coverage_weight: float = Field(default=0.20, ge=0)
    provisional_min_confidence: float = Field(default=70.0, ge=0, le=100)
    provisional_min_coverage: float = Field(default=0.20, ge=0, le=1)
    staleness_hours: float = Field(default=24.0, gt=0)

    @model_validator(mode="after")
    def validate_weight_groups(self) -> CollectionConfig:
        _check_weight_sum("Coverage weights", self.coverage_weight, self.depth_weight)
        _check_weight_sum(
            "Collection confidence weights",
            self.confidence_coverage_weight,
            self.confidence_depth_weight,
            self.confidence_uncertainty_weight,
        )
        _check_weight_sum("Index weights", self.index_mean_weight, self.index_coverage_weight)
        return self


class StorageConfig(BaseModel):
    """Database location and operation-level resilience."""

    database_url: str = "sqlite:///./aesthetic_index.db"
    busy_timeout_seconds: float = Field(default=30.0, gt=0)
    operation_timeout_seconds: float = Field(default=10.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_min_wait_seconds: float = Field(default=0.1, ge=0)
    retry_max_wait_seconds: float = Field(default=2.0, ge=0)
    echo: bool = False


class ScoringConfig(BaseModel):
    """Complete pipeline configuration, loaded once and passed to every component."""

    rating: RatingConfig = Field(default_factory=RatingConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    composer: ComposerConfig = Field(default_factory=ComposerConfig)
    publish_gate: PublishGateConfig = Field(default_factory=PublishGateConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def load_config(path: str | Path) -> ScoringConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to YAML configuration file.

    Returns:
        Validated ScoringConfig instance.

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist.
        InvalidConfigError: If config is invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigFileNotFoundError(str(config_path))

    with config_path.open() as f:
        data = yaml.safe_load(f) or {}

    try:
        return ScoringConfig.model_validate(data)
    except pydantic.ValidationError as e:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidConfigError(str(config_path), reasons) from e
