"""Configuration management for the conversion worker."""

import os
from dataclasses import dataclass


@dataclass
class GoogleAdsConfig:
    """Google Ads API configuration."""
    developer_token: str
    refresh_token: str
    client_id: str
    client_secret: str
    login_customer_id: str
    use_proto_plus: bool = True
    api_version: str = ""  # Empty uses the google-ads library default


@dataclass
class PubSubConfig:
    """Pub/Sub subscription the worker pulls from."""
    project_id: str
    subscription_id: str
    max_messages: int = 50


@dataclass
class PerformanceConfig:
    """Upload tuning settings."""
    upload_timeout: float = 30.0  # Seconds per account upload call
    max_concurrent_uploads: int = 20


@dataclass
class AppConfig:
    """Application configuration."""
    google_ads: GoogleAdsConfig
    pubsub: PubSubConfig
    performance: PerformanceConfig
    log_level: str = "INFO"
    dry_run: bool = False  # Sends uploads with validate_only


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables."""

    # Validate required env vars
    required_vars = [
        "GADS_CLIENT_ID",
        "GADS_CLIENT_SECRET",
        "GADS_DEVELOPER_TOKEN",
        "GADS_REFRESH_TOKEN",
        "GADS_LOGIN_CUSTOMER_ID",
        "GCP_PROJECT_ID",
        "PUBSUB_SUBSCRIPTION_ID",
    ]

    missing = [var for var in required_vars if not os.getenv(var)]
    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}\n"
            "Please set them in your .env file or environment."
        )

    google_ads_config = GoogleAdsConfig(
        developer_token=os.getenv("GADS_DEVELOPER_TOKEN"),
        refresh_token=os.getenv("GADS_REFRESH_TOKEN"),
        client_id=os.getenv("GADS_CLIENT_ID"),
        client_secret=os.getenv("GADS_CLIENT_SECRET"),
        login_customer_id=os.getenv("GADS_LOGIN_CUSTOMER_ID").replace("-", ""),
        use_proto_plus=True,
        api_version=os.getenv("GADS_API_VERSION", "")
    )

    pubsub_config = PubSubConfig(
        project_id=os.getenv("GCP_PROJECT_ID"),
        subscription_id=os.getenv("PUBSUB_SUBSCRIPTION_ID"),
        max_messages=int(os.getenv("PUBSUB_MAX_MESSAGES", "50"))
    )

    performance_config = PerformanceConfig(
        upload_timeout=float(os.getenv("UPLOAD_TIMEOUT", "30.0")),
        max_concurrent_uploads=int(os.getenv("MAX_CONCURRENT_UPLOADS", "20"))
    )

    return AppConfig(
        google_ads=google_ads_config,
        pubsub=pubsub_config,
        performance=performance_config,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        dry_run=os.getenv("DRY_RUN", "false").lower() == "true"
    )
