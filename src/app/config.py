"""Configuration management using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "SCENTSYS"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Scent system
    scent_enabled: bool = True
    scent_definitions_path: str = "scenarios/scents/default.json"
    scent_base_detection_cooldown: float = 5.0   # global throttle between sweeps (s)
    scent_detection_interval: float = 10.0       # per-smeller scan interval (s)
    scent_pending_update_interval: float = 5.0   # per-smeller ticket refresh interval (s)
    scent_processing_interval_min: float = 10.0  # delivery attempt interval range (s)
    scent_processing_interval_max: float = 30.0
    scent_cooldown_min_pending: int = 3          # cooldowns ignored below this many pending
    scent_direct_interaction_range: float = 2.0  # reach for deliberate sniffing (m)
    scent_rng_seed: int | None = None


settings = Settings()
