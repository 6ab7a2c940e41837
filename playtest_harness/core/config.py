"""
Application settings management.

Settings are loaded from environment variables with .env file support.
All configuration is validated using Pydantic.
"""

from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Prices in USD per 1M tokens: (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "anthropic/claude-opus-4.5": (15.0, 75.0),
    "qwen/qwen-2.5-72b-instruct": (0.35, 0.4),
    "moonshotai/kimi-k2": (0.08, 0.08),
    "x-ai/grok-4.1-fast": (2.0, 10.0),
    "deepseek/deepseek-v3.2": (0.27, 1.1),
    "x-ai/grok-4": (5.0, 15.0),
    "google/gemini-2.5-flash": (0.075, 0.3),
    "openai/gpt-4o-mini": (0.15, 0.6),
    "openai/gpt-5-nano": (0.05, 0.4),
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    # ==========================================================================
    # Paths
    # ==========================================================================

    config_dir: Path = Field(
        default=Path("config"),
        description="Directory containing YAML configuration files",
    )
    log_dir: Path = Field(default=Path("logs"), description="Directory for log files")

    # ==========================================================================
    # Checkpoint Storage
    # ==========================================================================

    checkpoint_backend: Literal["file", "sqlite"] = Field(
        default="file", description="Where checkpoint artifacts are written"
    )
    checkpoint_dir: Path = Field(
        default=Path("sessions"), description="Root directory for file checkpoints"
    )
    checkpoint_db_path: Path = Field(
        default=Path("data/checkpoints.db"),
        description="SQLite database for checkpoints when backend is 'sqlite'",
    )

    # ==========================================================================
    # LLM Provider
    # ==========================================================================

    openrouter_api_key: Optional[str] = Field(
        default=None, description="OpenRouter API key"
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenAI-compatible chat completions base URL",
    )
    request_timeout: float = Field(
        default=120.0, gt=0, description="Per-request timeout in seconds"
    )

    # ==========================================================================
    # Model Chains
    # ==========================================================================
    #
    # Every generative call runs through llm.fallback.with_model_fallback.
    # The lists below are the ordered candidates tried after the initial
    # model for each role.

    default_narrator_model: str = Field(default="anthropic/claude-opus-4.5")
    narrator_fallback_models: List[str] = Field(
        default_factory=lambda: ["x-ai/grok-4.1-fast", "deepseek/deepseek-v3.2"]
    )
    player_fallback_models: List[str] = Field(
        default_factory=lambda: [
            "deepseek/deepseek-v3.2",
            "qwen/qwen-2.5-72b-instruct",
            "moonshotai/kimi-k2",
            "x-ai/grok-4.1-fast",
        ]
    )
    classification_models: List[str] = Field(
        default_factory=lambda: [
            "openai/gpt-5-nano",
            "openai/gpt-4o-mini",
            "google/gemini-2.5-flash",
        ]
    )
    utility_model: str = Field(
        default="google/gemini-2.5-flash",
        description="Model for world-state extraction and contradiction checks",
    )
    character_model: str = Field(
        default="x-ai/grok-4", description="Model for group and identity generation"
    )
    feedback_model: str = Field(
        default="google/gemini-2.5-flash",
        description="Model for post-game player feedback",
    )

    # ==========================================================================
    # Retry Policy
    # ==========================================================================

    retries_per_model: int = Field(default=3, ge=1)
    classification_retries_per_model: int = Field(default=1, ge=1)
    narrator_quality_retries: int = Field(
        default=3, ge=1, description="Narrator generations before accepting output"
    )

    # ==========================================================================
    # Session Defaults
    # ==========================================================================

    default_max_turns: int = Field(default=100, ge=1)
    default_temperature: float = Field(default=0.7, ge=0, le=2)
    default_max_tokens: int = Field(default=2000, ge=1)
    max_parallel_sessions: int = Field(default=4, ge=1)
    debug: bool = Field(default=False, description="Enable debug mode")

    model_pricing: Dict[str, Tuple[float, float]] = Field(
        default_factory=lambda: dict(MODEL_PRICING)
    )

    def get_pricing_for_model(self, model: str) -> Optional[Tuple[float, float]]:
        """Look up (input, output) USD-per-million pricing for a model id.

        Exact ids win; otherwise the bare name after the provider prefix is
        matched, so "x-ai/grok-4.1-fast" and "grok-4.1-fast" price the same.
        """
        if model in self.model_pricing:
            return self.model_pricing[model]
        bare = model.split("/")[-1]
        for known, pricing in self.model_pricing.items():
            if known.split("/")[-1] == bare:
                return pricing
        return None


# ============================================================================
# Harness Configuration (from YAML)
# ============================================================================


class HistoryConfig(BaseModel):
    """How much transcript each actor sees."""

    player_context_messages: int = Field(
        default=10, ge=1, description="Recent messages shown to player agents"
    )


class IssueDetectionConfig(BaseModel):
    """Thresholds for the transcript issue detector."""

    loop_window: int = Field(default=5, ge=1)
    loop_similarity_threshold: float = Field(default=0.8, gt=0, le=1)
    stuck_turns: int = Field(default=10, ge=1)
    confusion_min_players: int = Field(default=2, ge=1)
    semantic_min_messages: int = Field(default=5, ge=0)
    semantic_sample_stride: int = Field(default=5, ge=1)


class PrivateMomentConfig(BaseModel):
    """Keyword heuristic for private-moment payoff."""

    min_keyword_length: int = Field(default=5, ge=1)


class GroupConfigDefaults(BaseModel):
    """Random group composition bounds."""

    min_size: int = Field(default=2, ge=2)
    max_size: int = Field(default=5, ge=2)


class HarnessConfig(BaseModel):
    """
    Harness tuning loaded from harness_config.yaml.

    Passed explicitly into the services that need it.
    """

    history: HistoryConfig = Field(default_factory=HistoryConfig)
    issues: IssueDetectionConfig = Field(default_factory=IssueDetectionConfig)
    private_moments: PrivateMomentConfig = Field(default_factory=PrivateMomentConfig)
    group: GroupConfigDefaults = Field(default_factory=GroupConfigDefaults)


def load_harness_config(config_path: Optional[Path] = None) -> HarnessConfig:
    """
    Load harness configuration from YAML file.

    Args:
        config_path: Path to harness_config.yaml. If None, uses
            config/harness_config.yaml at the project root, then the
            current working directory.

    Returns:
        HarnessConfig with validated settings (defaults if no file exists)
    """
    if config_path is None:
        candidates = [
            Path(__file__).resolve().parent.parent.parent
            / "config"
            / "harness_config.yaml",
            Path.cwd() / "config" / "harness_config.yaml",
        ]
        config_path = next((p for p in candidates if p.exists()), None)
        if config_path is None:
            return HarnessConfig()

    config_path = Path(config_path).resolve()
    if not config_path.exists():
        return HarnessConfig()

    with open(str(config_path)) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        return HarnessConfig()

    return HarnessConfig(**config_data)


# Global settings instance, read at process start and passed down explicitly
settings = Settings()
