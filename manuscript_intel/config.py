"""Engine configuration via Pydantic Settings.

Loads from a .env file and MANUSCRIPT_* environment variables.
All settings are validated at construction time; every public operation
accepts an explicit ``Settings`` instance and falls back to the module-level
``settings`` when none is given.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RiskWeights(BaseModel):
    """Weights of the heatmap sub-scores in ``overall_risk``."""

    plot: float = Field(default=0.25, ge=0.0, le=1.0)
    pacing: float = Field(default=0.25, ge=0.0, le=1.0)
    character: float = Field(default=0.20, ge=0.0, le=1.0)
    setting: float = Field(default=0.10, ge=0.0, le=1.0)
    style: float = Field(default=0.20, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_total(self) -> RiskWeights:
        total = self.plot + self.pacing + self.character + self.setting + self.style
        if abs(total - 1.0) > 0.01:
            raise ValueError(f"risk weights must sum to 1.0, got {total:.3f}")
        return self


class Settings(BaseSettings):
    """Manuscript intelligence engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="MANUSCRIPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Logging ---
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # --- Processing tiers ---
    instant_delay_ms: int = Field(default=0, ge=0)
    debounced_delay_ms: int = Field(default=100, ge=0)
    background_delay_ms: int = Field(default=2000, ge=0)
    max_background_ms: int = Field(default=5000, gt=0)

    # --- Pattern passes ---
    max_matches_per_category: int = Field(default=500, gt=0)
    attribution_window_tokens: int = Field(default=8, gt=0)
    evidence_cap: int = Field(default=10, gt=0)
    evidence_snippet_chars: int = Field(default=100, gt=0)
    lexicon_path: str = ""  # optional YAML file extending the built-in lexicons

    # --- Structure ---
    section_max_words: int = Field(default=300, gt=0)

    # --- Timeline ---
    payoff_min_overlap: int = Field(default=2, ge=1)
    payoff_overlap_ratio: float = Field(default=0.5, gt=0.0, le=1.0)

    # --- Delta ---
    diff_window_limit: int = Field(default=20_000, gt=0)
    max_changed_ranges: int = Field(default=200, gt=0)

    # --- Heatmap ---
    risk_weights: RiskWeights = Field(default_factory=RiskWeights)
    hotspot_count: int = Field(default=5, gt=0)

    # --- HUD caps ---
    hud_max_entities: int = Field(default=8, gt=0)
    hud_max_relationships: int = Field(default=6, gt=0)
    hud_max_promises: int = Field(default=5, gt=0)
    hud_max_events: int = Field(default=5, gt=0)
    hud_max_issues: int = Field(default=10, gt=0)
    hud_max_changes: int = Field(default=5, gt=0)
    hud_max_style_alerts: int = Field(default=5, gt=0)
    hud_text_chars: int = Field(default=160, gt=0)
    hud_cursor_window: int = Field(default=1500, gt=0)

    @model_validator(mode="after")
    def check_tier_order(self) -> Settings:
        if not self.instant_delay_ms <= self.debounced_delay_ms <= self.background_delay_ms:
            raise ValueError("tier delays must satisfy instant <= debounced <= background")
        return self


settings = Settings()
