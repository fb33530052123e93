from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Environment
    environment: str = "development"
    debug: bool = True

    # Application
    app_name: str = "Visitor Analytics"
    app_version: str = "1.0.0"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Database (visitors, sessions, page views, events)
    database_url: str = "sqlite:///./analytics.db"

    # Redis (shared by queue and lock backends)
    redis_url: str = "redis://localhost:6379/0"

    # Queue settings
    queue_backend: str = "memory"  # Options: "redis_streams", "memory"
    queue_name: str = "analytics_tracking"
    queue_consumer_group: str = "analytics_workers"
    queue_batch_size: int = 100  # Number of jobs to process at once
    queue_poll_interval: float = 1.0  # Worker idle sleep in seconds

    # Per-visitor lock settings
    lock_backend: str = "memory"  # Options: "redis", "memory"
    lock_timeout: int = 10  # Seconds a visitor lock may be held

    # Worker
    run_embedded_worker: bool = True  # Run the tracking worker inside the API process

    # Sessions
    session_idle_timeout: int = 86400  # 24 hours of inactivity expires a session
    session_expiry_interval: int = 300  # Seconds between idle-session sweeps

    # Realtime
    realtime_interval: int = 5  # Seconds between broadcasts
    realtime_active_window: int = 300  # Sessions updated within 5 minutes are "active"
    realtime_pageview_window: int = 60  # Page views within 60 seconds are "current"

    # Auth
    jwt_secret: str = "your-secret-key-here-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expires_minutes: int = 60 * 24 * 7
    admin_roles: List[str] = ["admin"]

    # Geo lookup
    geoip_db_path: str = "GeoLite2-City.mmdb"

    # Tracking skip policy
    analytics_skip_paths: List[str] = [
        "/api",
        "/health",
        "/favicon.ico",
        "/.well-known",
        "/robots.txt",
        "/sitemap.xml",
        "/docs*",
        "/redoc",
        "/openapi.json",
        "/ws*",
    ]
    analytics_track_only_public: bool = True
    analytics_skip_bots: bool = True
    analytics_skip_admins: bool = True
    api_prefix: str = "/api"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
