"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Sourcing Negotiation Engine"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/sourcing.db"

    # Negotiation termination heuristics
    MAX_NEGOTIATION_ROUNDS: int = 8
    STAGNATION_WINDOW: int = 3  # consecutive offers of one party inspected
    STAGNATION_EPSILON_PERCENT: float = 1.0  # of the initial offer price
    PRICE_GAP_THRESHOLD_PERCENT: float = 40.0  # distance from buyer target

    # Scoring benchmarks
    QUALITY_WORST: float = 3.0
    QUALITY_BEST: float = 5.0
    LEAD_TIME_BEST_DAYS: int = 10
    LEAD_TIME_WORST_DAYS: int = 60

    # Orchestration
    DEFAULT_SUPPLIER_IDS: str = "1,2,3"
    PARALLEL_NEGOTIATION_LIMIT: int = 4
    MAX_AGENT_TURNS: int = 40  # safety stop for agents that never call a tool

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @field_validator("CORS_ORIGINS", "DEFAULT_SUPPLIER_IDS", mode="before")
    @classmethod
    def join_list_values(cls, v):
        """Accept either a list or a comma-separated string."""
        if isinstance(v, (list, tuple)):
            return ",".join(str(item) for item in v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def get_default_supplier_ids(self) -> list[int]:
        """Get the supplier slots opened for every new quote."""
        return [int(s.strip()) for s in self.DEFAULT_SUPPLIER_IDS.split(",") if s.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"
    LOG_NEGOTIATION_FILE: str = "./data/logs/negotiations.log"  # state transitions per negotiation

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
