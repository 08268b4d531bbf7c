"""Tests for configuration loading and validation."""

import tempfile
from pathlib import Path

import pydantic
import pytest
import yaml

from aesthetic_index.core.config import (
    BatchConfig,
    ComponentWeights,
    PublishGateConfig,
    RatingConfig,
    ScoringConfig,
    load_config,
)
from aesthetic_index.core.errors import ConfigFileNotFoundError, InvalidConfigError


class TestDefaults:
    """Tests for default configuration values."""

    def test_documented_defaults(self):
        """Test the defaults match the documented constants."""
        config = ScoringConfig()
        assert config.rating.default_mean == 1200
        assert config.rating.k_factor == 32
        assert config.rating.super_k_factor == 64
        assert config.composer.weights.rating == 0.40
        assert config.publish_gate.min_distinct_opponents == 3
        assert config.publish_gate.grace_period_minutes == 5
        assert config.batch.batch_size == 500
        assert config.batch.claim_timeout_minutes == 15
        assert config.collection.trim_fraction == 0.05
        assert config.batch.vote_milestones == [5, 10, 25, 50, 100]
        assert config.batch.high_activity_threshold == 5


class TestValidation:
    """Tests for model validators."""

    def test_weights_must_sum_to_one(self):
        """Test component weights that don't sum to one are rejected."""
        with pytest.raises(pydantic.ValidationError, match="sum to 1.0"):
            ComponentWeights(rating=0.5, slider=0.5, favorite=0.5)

    def test_uncertainty_bounds(self):
        """Test the floor must sit below the ceiling."""
        with pytest.raises(pydantic.ValidationError, match="uncertainty_floor"):
            RatingConfig(uncertainty_floor=500, uncertainty_ceiling=400)

    def test_super_k_must_exceed_k(self):
        """Test a super vote must move ratings more than a normal one."""
        with pytest.raises(pydantic.ValidationError, match="super_k_factor"):
            RatingConfig(k_factor=64, super_k_factor=32)

    def test_tiers_ascending(self):
        """Test confidence tiers must be strictly ascending."""
        with pytest.raises(pydantic.ValidationError, match="ascending"):
            PublishGateConfig(confidence_tiers=[20, 40, 30])

    def test_jitter_order(self):
        """Test jitter bounds must be ordered."""
        with pytest.raises(pydantic.ValidationError, match="jitter_min_ms"):
            BatchConfig(jitter_min_ms=10, jitter_max_ms=5)

    def test_milestones_sorted_and_positive(self):
        """Test vote milestones are deduplicated, ordered and positive."""
        assert BatchConfig(vote_milestones=[25, 5, 5]).vote_milestones == [5, 25]
        with pytest.raises(pydantic.ValidationError, match="vote_milestones"):
            BatchConfig(vote_milestones=[0, 5])


class TestLoadConfig:
    """Tests for config file loading."""

    def test_load_valid_yaml(self):
        """Test loading a partial YAML config keeps other defaults."""
        config_data = {
            "rating": {"k_factor": 24, "super_k_factor": 48},
            "batch": {"batch_size": 50},
            "storage": {"database_url": "sqlite:///scores.db"},
        }

        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            yaml.dump(config_data, f)
            f.flush()

            config = load_config(f.name)
            assert config.rating.k_factor == 24
            assert config.batch.batch_size == 50
            assert config.batch.claim_chunk_size == 25
            assert config.storage.database_url == "sqlite:///scores.db"

        Path(f.name).unlink()

    def test_empty_file_is_defaults(self, tmp_path):
        """Test an empty YAML file yields the default configuration."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == ScoringConfig()

    def test_load_missing_file_fails(self):
        """Test loading missing file raises error."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_missing_file_is_configuration_error(self):
        """Test the missing-file error carries a suggestion."""
        with pytest.raises(ConfigFileNotFoundError, match=r"\[Suggestion\]"):
            load_config("/nonexistent/config.yaml")

    def test_invalid_values_wrapped(self, tmp_path):
        """Test validation failures name the offending field."""
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"composer": {"weights": {"rating": 0.9}}}))
        with pytest.raises(InvalidConfigError, match="composer.weights"):
            load_config(path)

    def test_example_config_is_valid(self):
        """Test the shipped example config loads."""
        example = Path(__file__).resolve().parent.parent / "config.example.yaml"
        config = load_config(example)
        assert config == ScoringConfig()
