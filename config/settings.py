"""Centralized configuration using pydantic-settings. All values are env-configurable."""

from typing import Annotated

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


SERVICE_REQUIRED = ("broker_url", "openai_api_key")


class ConfigurationError(Exception):
    """Required settings are missing or invalid at startup."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AURALINK_",
        env_file=".env",
        extra="ignore",
    )

    # MQTT
    broker_url: str
    mqtt_client_id: str = "auralink-backend"
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_keepalive_sec: int = 60
    mqtt_reconnect_sec: int = 5
    mqtt_publish_qos: int = 0

    # Topics
    topic_temperature: str = "auralink/sensors/temperature"
    topic_humidity: str = "auralink/sensors/humidity"
    topic_quote: str = "auralink/display/quote"
    topic_email: str = "auralink/display/email"
    topic_priority: str = "auralink/display/priority"

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_timeout_sec: float = 20.0

    # Gmail
    gmail_client_id: str = ""
    gmail_client_secret: str = ""
    gmail_redirect_uri: str = "http://localhost:3000/auth/google/callback"
    gmail_refresh_token: str = ""

    # Pipeline
    required_kinds: Annotated[list[str], NoDecode] = ["temperature", "humidity"]
    quote_max_chars: int = 120
    email_fetch_count: int = 5

    # Storage
    data_file_path: str = "./data/sensorData.json"
    store_max_readings: int = 1000

    # API
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Monitoring
    log_level: str = "INFO"

    @field_validator("required_kinds", mode="before")
    @classmethod
    def _split_kinds(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        kinds = [str(k).strip().lower() for k in value if str(k).strip()]
        if not kinds:
            raise ValueError("at least one required kind must be configured")
        return kinds

    @property
    def sensor_topics(self) -> list[str]:
        return [self.topic_temperature, self.topic_humidity]

    @property
    def topic_kinds(self) -> dict[str, str]:
        """Configured sensor topic → sensor kind."""
        return {self.topic_temperature: "temperature", self.topic_humidity: "humidity"}

    @property
    def gmail_configured(self) -> bool:
        return bool(self.gmail_client_id and self.gmail_client_secret)


def load_settings(required: tuple[str, ...] = SERVICE_REQUIRED, **overrides) -> Settings:
    """Build Settings from the environment, converting validation failures.

    `required` names fields that must be non-empty for the caller; the
    simulator only needs the broker, the service also needs OpenAI.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            field = ".".join(str(part) for part in err["loc"]) or "settings"
            if err["type"] == "missing":
                problems.append(f"AURALINK_{field.upper()} is required")
            else:
                problems.append(f"AURALINK_{field.upper()}: {err['msg']}")
        raise ConfigurationError("; ".join(problems)) from e

    missing = [name for name in required if not getattr(settings, name)]
    if missing:
        raise ConfigurationError("; ".join(f"AURALINK_{name.upper()} is required" for name in missing))
    return settings
