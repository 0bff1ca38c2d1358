"""
PayGate Configuration Module

Loads environment variables for the gateway: Daraja credentials, endpoint
environment, completion mode and storage backend.
"""
from pydantic_settings import BaseSettings
from typing import List, Literal, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - consumer_key, consumer_secret and passkey are required; startup aborts
      when any of them is missing (see missing_credentials)
    - sandbox switches both the OAuth and STK push endpoints
    - completion_mode selects the demo timer or real provider callbacks
    """

    # Daraja Credentials
    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None
    passkey: Optional[str] = None

    # Daraja Request Fields
    shortcode: str = "6434270"
    callback_url: Optional[str] = None  # Defaults to http://localhost:{port}/callback
    account_ref: str = "HELB Disbursement"
    transaction_desc: str = "HELB Disbursement"
    transaction_type: str = "CustomerBuyGoodsOnline"
    sandbox: bool = False
    http_timeout_seconds: float = 30.0

    # Lifecycle
    completion_mode: Literal["demo", "provider"] = "demo"
    demo_completion_delay_seconds: float = 2.0
    validation_profile: Literal["generic", "provider"] = "generic"
    push_rejection_policy: Literal["mark_failed", "leave_pending"] = "mark_failed"
    pending_timeout_seconds: Optional[float] = None
    stale_sweep_interval_seconds: float = 60.0

    # Storage
    store_backend: Literal["memory", "sqlite"] = "memory"
    database_path: str = "./paygate.db"

    # Audit Trail
    audit_log_dir: str = "logs"
    audit_mock_requests: bool = True
    mock_delay_seconds: float = 1.0

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def resolved_callback_url(self) -> str:
        return self.callback_url or f"http://localhost:{self.port}/callback"

    def missing_credentials(self) -> List[str]:
        """Return the env names of required credentials that are not set."""
        required = {
            "CONSUMER_KEY": self.consumer_key,
            "CONSUMER_SECRET": self.consumer_secret,
            "PASSKEY": self.passkey,
        }
        return [name for name, value in required.items() if not value]


# Global settings instance
settings = Settings()
