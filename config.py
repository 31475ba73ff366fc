import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Config:
    """
    Signal Consensus Engine Configuration
    All settings are loaded from environment variables for security and flexibility.
    """

    # Environment
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    DEBUG = ENVIRONMENT == "development"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # PostgreSQL Database
    DATABASE_URL = os.getenv("DATABASE_URL")

    # Weight Store
    WEIGHT_FLOOR = _float_env("WEIGHT_FLOOR", 0.1)
    WEIGHT_CEILING = _float_env("WEIGHT_CEILING", 3.0)
    DEFAULT_SIGNAL_WEIGHT = _float_env("DEFAULT_SIGNAL_WEIGHT", 1.0)
    DEFAULT_SIGNALS = [
        s.strip() for s in os.getenv(
            "DEFAULT_SIGNALS",
            "momentum,value,catalyst,insider,gamma,shadow,narrative,fsi,regime,volatility",
        ).split(",") if s.strip()
    ]
    WEIGHT_WRITE_RETRIES = _int_env("WEIGHT_WRITE_RETRIES", 3)
    WEIGHT_RETRY_BACKOFF_S = _float_env("WEIGHT_RETRY_BACKOFF_S", 0.05)

    # Data resolution / engines
    PROVIDER_TIMEOUT_S = _float_env("PROVIDER_TIMEOUT_S", 5.0)
    ENGINE_TIMEOUT_S = _float_env("ENGINE_TIMEOUT_S", 5.0)
    PRICE_CACHE_MAX_AGE_S = _int_env("PRICE_CACHE_MAX_AGE_S", 3600)
    # e.g. https://api.example.com/quote/{ticker}, response read at PRICE_PROVIDER_FIELD
    PRICE_PROVIDER_URL = os.getenv("PRICE_PROVIDER_URL")
    PRICE_PROVIDER_FIELD = os.getenv("PRICE_PROVIDER_FIELD", "price")

    # Recalibration
    RECALIBRATION_MIN_MULTIPLIER = _float_env("RECALIBRATION_MIN_MULTIPLIER", 0.5)
    RECALIBRATION_MAX_MULTIPLIER = _float_env("RECALIBRATION_MAX_MULTIPLIER", 1.5)
    PROFILE_MIN_SAMPLES = _int_env("PROFILE_MIN_SAMPLES", 5)

    # Accuracy feedback loop
    FEEDBACK_WEIGHT_DELTA = _float_env("FEEDBACK_WEIGHT_DELTA", 0.05)
    FEEDBACK_BATCH_SIZE = _int_env("FEEDBACK_BATCH_SIZE", 200)
    DRIFT_WINDOW = _int_env("DRIFT_WINDOW", 50)
    DRIFT_TOLERANCE = _float_env("DRIFT_TOLERANCE", 0.05)
    CORRECTION_FACTOR_MIN = _float_env("CORRECTION_FACTOR_MIN", 0.7)
    CORRECTION_FACTOR_MAX = _float_env("CORRECTION_FACTOR_MAX", 1.3)

    @classmethod
    def validate(cls):
        """Validate critical configuration on startup."""
        import logging
        logger = logging.getLogger(__name__)

        warnings = []

        if not cls.DATABASE_URL:
            warnings.append("DATABASE_URL not set (Weight Store and Ledger unavailable)")
        if cls.WEIGHT_FLOOR <= 0:
            warnings.append(f"WEIGHT_FLOOR={cls.WEIGHT_FLOOR} must be positive")
        if cls.WEIGHT_CEILING < cls.WEIGHT_FLOOR:
            warnings.append("WEIGHT_CEILING is below WEIGHT_FLOOR")
        if cls.RECALIBRATION_MIN_MULTIPLIER > cls.RECALIBRATION_MAX_MULTIPLIER:
            warnings.append("RECALIBRATION_MIN_MULTIPLIER exceeds RECALIBRATION_MAX_MULTIPLIER")
        if not cls.DEFAULT_SIGNALS:
            warnings.append("DEFAULT_SIGNALS is empty")

        for w in warnings:
            logger.warning(f"⚠️  {w}")

        if cls.ENVIRONMENT == "production":
            logger.info("🚀 Running in PRODUCTION mode")
        else:
            logger.info("🔧 Running in DEVELOPMENT mode")

        return len(warnings) == 0

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == "production"


config = Config()
