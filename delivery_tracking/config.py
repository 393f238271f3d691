"""
Configuration de l'application / Application configuration.
Utilise pydantic-settings pour charger depuis .env ou variables d'environnement.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Delivery Tracking Core"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True

    # Database - SQLite par défaut pour le développement
    # Database - SQLite by default for development
    DATABASE_URL: str = "sqlite+aiosqlite:///./delivery_tracking.db"

    # CORS - origines autorisées / allowed origins
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Rate Limiting
    RATE_LIMIT_LOCATION: str = "120/minute"
    RATE_LIMIT_DEFAULT: str = "60/minute"

    # Seuils de suivi / Tracking thresholds
    MIN_UPDATE_INTERVAL_SECONDS: float = 30.0
    MIN_UPDATE_DISTANCE_METERS: float = 100.0
    MAX_SILENCE_SECONDS: float = 300.0
    GEOFENCE_RADIUS_METERS: float = 200.0
    HISTORY_WINDOW_HOURS: int = 24
    SAMPLE_RETENTION_DAYS: int = 30

    # Seuils d'anomalies / Issue detector thresholds
    EXCESSIVE_SPEED_KMH: float = 100.0
    STATIONARY_SPEED_KMH: float = 2.0
    PROLONGED_STOP_MINUTES: float = 30.0
    POOR_ACCURACY_METERS: float = 100.0
    LOW_BATTERY_PERCENT: float = 20.0

    # Prediction ETA / ETA prediction
    ETA_REFRESH_ENABLED: bool = True
    ETA_REFRESH_INTERVAL_SECONDS: float = 30.0
    ETA_REFRESH_MAX_CONCURRENCY: int = 8
    ETA_PREDICTION_TIMEOUT_SECONDS: float = 10.0
    HISTORY_LOOKBACK_DAYS: int = 90
    HISTORY_MAX_ROUTES: int = 50
    HISTORY_NEARBY_RADIUS_KM: float = 5.0
    DEFAULT_HISTORICAL_ACCURACY: float = 0.8

    # Services externes (vides = mode hors ligne) / External services (empty = offline mode)
    ROUTING_URL: str = ""
    ROUTING_PROFILE: str = "driving"
    WEATHER_URL: str = ""
    WEATHER_CONDITION: str = "clear"
    EXTERNAL_TIMEOUT_SECONDS: float = 2.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
