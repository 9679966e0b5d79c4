"""
Configuration management for the Sales Coach platform
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Sales Coach"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./salescoach.db"

    # HITL (human-in-the-loop) defaults, overridable per tenant
    hitl_review_required: bool = True
    hitl_send_on_approve: bool = True

    # Training
    training_lookback_months: int = 3
    insight_retention_days: int = 90
    training_stale_after_hours: int = 0  # 0 disables the staleness sweep
    training_schedule: str = "30 2 * * *"

    # Delivery
    delivery_delay_ms: int = 200

    # Scheduler
    scheduler_timezone: str = "America/Sao_Paulo"
    morning_schedule: str = "0 7 * * *"
    midday_schedule: str = "0 12 * * *"
    evening_schedule: str = "0 18 * * *"
    enable_scheduler: bool = True

    # WhatsApp
    whatsapp_provider: str = "twilio"  # twilio | meta
    whatsapp_timeout_seconds: float = 30.0

    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from: str = "whatsapp:+14155238886"

    # Meta (WhatsApp Cloud API)
    meta_token: Optional[str] = None
    meta_phone_id: Optional[str] = None
    meta_app_secret: Optional[str] = None
    meta_verify_token: Optional[str] = None
    meta_api_version: str = "v18.0"

    # Webhooks
    webhook_validate_signature: bool = True

    # LLM Configuration
    anthropic_api_key: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    enable_llm_messages: bool = False
    llm_max_tokens: int = 400

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
