"""
Application Settings
====================
Centralized configuration management using Pydantic.
Loads from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ===================
    # Application Info
    # ===================
    APP_NAME: str = "Tire ML Continuous Learning"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = Field(default="production", description="development, staging, production")

    # ===================
    # Learning API (capture / feedback / stats)
    # ===================
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ===================
    # Model Server
    # ===================
    ML_SERVER_URL: Optional[str] = "http://localhost:3001"
    ML_HOST: str = "127.0.0.1"
    ML_PORT: int = 3001
    SERVER_STARTUP_TIMEOUT: float = 30.0  # seconds

    # ===================
    # Paths
    # ===================
    DATA_DIR: Path = Field(default_factory=lambda: Path.cwd() / "data" / "continuous-learning")
    MODELS_DIR: Optional[Path] = None
    RESULTS_DIR: Optional[Path] = None
    JOBS_DIR: Optional[Path] = None
    LOG_DIR: Optional[Path] = None

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Derived paths live under DATA_DIR unless overridden
        if self.MODELS_DIR is None:
            self.MODELS_DIR = self.DATA_DIR / "models"
        if self.RESULTS_DIR is None:
            self.RESULTS_DIR = self.DATA_DIR / "results"
        if self.JOBS_DIR is None:
            self.JOBS_DIR = self.DATA_DIR / "retraining-jobs"
        if self.LOG_DIR is None:
            self.LOG_DIR = self.DATA_DIR / "logs"

    # ===================
    # Image Handling
    # ===================
    IMAGE_SIZE: int = 224
    SAMPLE_JPEG_QUALITY: int = 95
    INFERENCE_JPEG_QUALITY: int = 90
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10 MB
    BATCH_SIZE_LIMIT: int = 10

    # ===================
    # Inference Client
    # ===================
    HEALTH_PROBE_TIMEOUT: float = 5.0  # seconds
    INFERENCE_TIMEOUT: float = 30.0  # seconds

    # ===================
    # Continuous Learning
    # ===================
    MIN_SAMPLES_FOR_RETRAIN: int = 50
    RETRAIN_INTERVAL_HOURS: float = 24.0

    # ===================
    # MLOps Pipeline
    # ===================
    DRIFT_THRESHOLD: float = 0.02  # retrain if accuracy drops by 2%
    MONITORING_INTERVAL_HOURS: float = 24.0
    PIPELINE_MIN_SAMPLES: int = 100

    # ===================
    # Training
    # ===================
    REGRESSION_EPOCHS: int = 50
    CLASSIFICATION_EPOCHS: int = 30
    TRAINING_BATCH_SIZE: int = 32
    LEARNING_RATE: float = 1e-3
    VALIDATION_SPLIT: float = 0.2
    MIN_REAL_SAMPLES: int = 10
    ALLOW_SYNTHETIC_DATA: bool = True
    SYNTHETIC_SAMPLES: int = 1000
    TEST_FRACTION: float = 0.2
    TRAINING_DEVICE: str = "auto"  # auto, cpu, cuda
    RANDOM_SEED: int = 42

    # ===================
    # Evaluation
    # ===================
    ACCURACY_THRESHOLD: float = 0.8
    MSE_THRESHOLD: float = 1.0

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_TO_FILE: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    @property
    def retrain_interval_seconds(self) -> float:
        return self.RETRAIN_INTERVAL_HOURS * 3600

    @property
    def monitoring_interval_seconds(self) -> float:
        return self.MONITORING_INTERVAL_HOURS * 3600


# Singleton settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None


def ensure_directories(settings: Optional[Settings] = None):
    """Create necessary directories if they don't exist."""
    settings = settings or get_settings()
    for dir_path in [
        settings.DATA_DIR,
        settings.DATA_DIR / "images",
        settings.DATA_DIR / "labels",
        settings.MODELS_DIR,
        settings.RESULTS_DIR,
        settings.JOBS_DIR,
        settings.LOG_DIR,
    ]:
        if dir_path:
            Path(dir_path).mkdir(parents=True, exist_ok=True)
