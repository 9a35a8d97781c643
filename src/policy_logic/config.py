"""
Configuration management for policy-logic.

Loads settings from environment variables (prefix ``POLICY_LOGIC_``) with
sensible defaults.
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ComplexityWeights(BaseModel):
    """Weight vector for the six complexity factors. Must sum to 1."""

    condition_count: float = Field(default=0.20, ge=0.0, le=1.0)
    operator_density: float = Field(default=0.15, ge=0.0, le=1.0)
    nesting_depth: float = Field(default=0.25, ge=0.0, le=1.0)
    cross_reference_count: float = Field(default=0.15, ge=0.0, le=1.0)
    readability_score: float = Field(default=0.15, ge=0.0, le=1.0)
    ambiguity_count: float = Field(default=0.10, ge=0.0, le=1.0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_sum(self) -> "ComplexityWeights":
        total = sum(self.as_dict().values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"complexity weights must sum to 1, got {total:.4f}")
        return self

    def as_dict(self) -> dict[str, float]:
        """Weights keyed by factor name, in scoring order."""
        return {
            "condition_count": self.condition_count,
            "operator_density": self.operator_density,
            "nesting_depth": self.nesting_depth,
            "cross_reference_count": self.cross_reference_count,
            "readability_score": self.readability_score,
            "ambiguity_count": self.ambiguity_count,
        }


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="POLICY_LOGIC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Logging
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # ==========================================================================
    # IR
    # ==========================================================================
    supported_schema_versions: list[str] = Field(default_factory=lambda: ["1.0"])
    extraction_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)

    # ==========================================================================
    # Reasoning
    # ==========================================================================
    eligible_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    conditional_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    low_confidence_warning: float = Field(default=0.6, ge=0.0, le=1.0)

    # ==========================================================================
    # Complexity
    # ==========================================================================
    complexity_weights: ComplexityWeights = Field(default_factory=ComplexityWeights)
    nesting_depth_ceiling: int = Field(default=5, ge=1)
    condition_count_ceiling: int = Field(default=50, ge=1)
    default_readability: float = Field(default=0.5, ge=0.0, le=1.0)

    # ==========================================================================
    # Graph / conflicts
    # ==========================================================================
    default_entity_type: str = "individual"
    conflict_max_workers: int = Field(default=1, ge=1)

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_thresholds(self) -> "Settings":
        if self.conditional_confidence > self.eligible_confidence:
            raise ValueError("conditional_confidence must not exceed eligible_confidence")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
