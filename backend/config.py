"""
config.py: hotspot voucher service settings.

Usage:
    from backend.config import settings
    print(settings.mikrotik_host)

Never use FastAPI Depends() for settings. Import directly as a module-level singleton.
"""
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore any extra env vars
    )

    # --- MikroTik hotspot controller (RouterOS API) ---
    mikrotik_host: str = "192.168.88.1"
    mikrotik_port: int = 8728
    mikrotik_user: str = "admin"
    mikrotik_password: str = ""
    # Socket timeout in seconds, applied to connect and to every command write
    mikrotik_timeout: float = 10.0

    # --- Device connection manager ---
    device_reconnect_delay_s: float = 5.0
    # Liveness probe period while READY; 0 disables the probe
    device_keepalive_s: float = 30.0

    # --- Payment confirmations ---
    # Case-insensitive pattern the SMS sender must contain
    sms_sender_pattern: str = "mvola"

    # Offer code -> hotspot user profile name on the controller.
    # Override with a JSON object, e.g. OFFER_PROFILES='{"1h": "1Heure"}'
    offer_profiles: Dict[str, str] = Field(
        default_factory=lambda: {"1h": "1Heure", "5h": "5Heures", "24h": "24Heures"}
    )

    # --- Session expiry ---
    session_expiry_s: int = 420   # 7 minutes
    sweep_interval_s: int = 60

    # --- Voucher credentials ---
    voucher_username_prefix: str = "SD-"
    voucher_username_length: int = 5
    voucher_password_length: int = 6

    # --- CORS ---
    # Comma-separated list of allowed frontend origins, "*" for any
    cors_origins: str = "*"

    # --- Application ---
    debug: bool = False
    app_version: str = "0.1.0"
    port: int = 4000

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Module-level singleton, import this throughout the codebase
settings = Settings()
