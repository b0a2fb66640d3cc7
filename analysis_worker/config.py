"""
Configuration management for the analysis worker.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values.
"""

import os
from typing import Dict, Any, Optional
from dataclasses import dataclass


@dataclass
class WorkerConfig:
    """Configuration for the analysis worker"""

    # Inference service
    OPENAI_API_KEY: Optional[str] = None
    VISION_MODEL: str = "gpt-4o-mini"
    REASONING_MODEL: str = "gpt-4o"
    TRANSCRIPTION_MODEL: str = "whisper-1"
    REQUEST_TIMEOUT_SEC: float = 120.0

    # Retry / pacing
    MAX_RETRIES: int = 3
    BASE_BACKOFF_MS: int = 1000
    RATE_LIMIT_BACKOFF_MS: int = 2000
    RETRY_AFTER_MARGIN_MS: int = 500
    MIN_REQUEST_SPACING_MS: int = 3000
    PARALLEL_SLOTS: int = 8

    # Frame analysis
    FRAME_BATCH_SIZE: int = 3
    FRAME_MAX_SIDE: int = 768

    # Scene segmentation / synthesis
    SCENE_BATCH_SIZE: int = 6
    SCENE_MIN_SECONDS: float = 2.0
    SCENE_MAX_SECONDS: float = 8.0
    SCENE_CHANGE_THRESHOLD: float = 0.5

    # Credits
    LEDGER_TYPE: str = "none"  # postgres, memory, none
    LEDGER_CONFIG: Dict[str, Any] = None
    CREDIT_SECONDS_PER_UNIT: int = 15

    # Media acquisition
    AWS_REGION: str = "us-east-1"
    YTDLP_COOKIES_FILE: Optional[str] = None
    YTDLP_TIMEOUT_SEC: int = 120

    # Lifetimes
    PROGRESS_SWEEP_INTERVAL_SEC: int = 300
    PROGRESS_MAX_AGE_SEC: int = 3600
    JOB_TTL_SEC: int = 3600

    # Logging
    LOG_LEVEL: str = "INFO"

    # HTTP server
    ENABLE_HTTP_SERVER: bool = False
    HTTP_PORT: int = 8000

    # Data directories
    DATA_DIR: str = "/app/data"
    TEMP_DIR: Optional[str] = None

    def __post_init__(self):
        if self.LEDGER_CONFIG is None:
            self.LEDGER_CONFIG = {}
        if self.TEMP_DIR is None:
            self.TEMP_DIR = os.path.join(self.DATA_DIR, "tmp")

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        # Inference service
        config.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
        config.VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o-mini")
        config.REASONING_MODEL = os.getenv("REASONING_MODEL", "gpt-4o")
        config.TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
        config.REQUEST_TIMEOUT_SEC = float(os.getenv("OPENAI_TIMEOUT_SEC", "120"))

        # Retry / pacing
        config.MAX_RETRIES = int(os.getenv("INFERENCE_MAX_RETRIES", "3"))
        config.BASE_BACKOFF_MS = int(os.getenv("INFERENCE_BASE_BACKOFF_MS", "1000"))
        config.RATE_LIMIT_BACKOFF_MS = int(os.getenv("INFERENCE_RATE_LIMIT_BACKOFF_MS", "2000"))
        config.RETRY_AFTER_MARGIN_MS = int(os.getenv("INFERENCE_RETRY_AFTER_MARGIN_MS", "500"))
        config.MIN_REQUEST_SPACING_MS = int(os.getenv("INFERENCE_MIN_SPACING_MS", "3000"))
        config.PARALLEL_SLOTS = int(os.getenv("INFERENCE_PARALLEL_SLOTS", "8"))

        # Frame analysis
        config.FRAME_BATCH_SIZE = int(os.getenv("FRAME_BATCH_SIZE", "3"))
        config.FRAME_MAX_SIDE = int(os.getenv("FRAME_MAX_SIDE", "768"))

        # Scene segmentation / synthesis
        config.SCENE_BATCH_SIZE = int(os.getenv("SCENE_BATCH_SIZE", "6"))
        config.SCENE_MIN_SECONDS = float(os.getenv("SCENE_MIN_SECONDS", "2.0"))
        config.SCENE_MAX_SECONDS = float(os.getenv("SCENE_MAX_SECONDS", "8.0"))
        config.SCENE_CHANGE_THRESHOLD = float(os.getenv("SCENE_CHANGE_THRESHOLD", "0.5"))

        # Credits
        config.LEDGER_TYPE = os.getenv("LEDGER_TYPE", "none")
        config.LEDGER_CONFIG = cls._parse_ledger_config()
        config.CREDIT_SECONDS_PER_UNIT = int(os.getenv("CREDIT_SECONDS_PER_UNIT", "15"))

        # Media acquisition
        config.AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
        config.YTDLP_COOKIES_FILE = os.getenv("YTDLP_COOKIES_FILE")
        config.YTDLP_TIMEOUT_SEC = int(os.getenv("YTDLP_TIMEOUT_SEC", "120"))

        # Lifetimes
        config.PROGRESS_SWEEP_INTERVAL_SEC = int(os.getenv("PROGRESS_SWEEP_INTERVAL_SEC", "300"))
        config.PROGRESS_MAX_AGE_SEC = int(os.getenv("PROGRESS_MAX_AGE_SEC", "3600"))
        config.JOB_TTL_SEC = int(os.getenv("JOB_TTL_SEC", "3600"))

        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # HTTP server
        config.ENABLE_HTTP_SERVER = os.getenv("WORKER_DEV_HTTP", "false").lower() == "true"
        config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "8000"))

        # Data directories
        config.DATA_DIR = os.getenv("DATA_DIR", "/app/data")
        config.TEMP_DIR = os.getenv("TEMP_DIR", os.path.join(config.DATA_DIR, "tmp"))

        return config

    @classmethod
    def _parse_ledger_config(cls) -> Dict[str, Any]:
        """Parse credit ledger specific configuration"""
        ledger_type = os.getenv("LEDGER_TYPE", "none")

        if ledger_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
            }
        elif ledger_type == "memory":
            return {
                "initial_balance": int(os.getenv("MEMORY_LEDGER_BALANCE", "100"))
            }
        else:
            return {}

    def validate(self) -> None:
        """Validate configuration and raise errors for missing or inconsistent values"""
        required_vars = []

        if not self.OPENAI_API_KEY:
            required_vars.append("OPENAI_API_KEY")

        if self.LEDGER_TYPE == "postgres" and not self.LEDGER_CONFIG.get("database_url"):
            required_vars.append("DATABASE_URL")

        if required_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(required_vars)}")

        if self.LEDGER_TYPE not in ("postgres", "memory", "none"):
            raise ValueError(f"Unsupported LEDGER_TYPE: {self.LEDGER_TYPE}")

        if self.FRAME_BATCH_SIZE < 1 or self.SCENE_BATCH_SIZE < 1:
            raise ValueError("FRAME_BATCH_SIZE and SCENE_BATCH_SIZE must be positive")

        if self.SCENE_MAX_SECONDS < self.SCENE_MIN_SECONDS:
            raise ValueError("SCENE_MAX_SECONDS must not be smaller than SCENE_MIN_SECONDS")

    def model_for_tier(self, tier: str) -> str:
        """Resolve a model tier name to a concrete model"""
        tiers = {
            "vision": self.VISION_MODEL,
            "reasoning": self.REASONING_MODEL,
            "transcription": self.TRANSCRIPTION_MODEL
        }
        return tiers.get(tier, self.REASONING_MODEL)
