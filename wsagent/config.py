"""Application settings loaded from the environment."""

import os
from dataclasses import dataclass, field

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant with access to tools.\n"
    "You can fetch URLs, perform calculations, and get weather information.\n"
    "Use the available tools when needed to help answer user questions."
)


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings for the agent server."""

    aws_region: str = "us-east-1"
    model_id: str = "us.anthropic.claude-sonnet-4-5-20250929-v1:0"

    # Agent loop
    max_iterations: int = 10
    tool_timeout_seconds: float = 30.0
    default_temperature: float = 0.7
    default_max_tokens: int = 2048
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    session_timeout_minutes: int = 60
    log_level: str = "INFO"
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    # Tracing (OpenTelemetry, OTLP/HTTP)
    tracing_enabled: bool = False
    otel_service_name: str = "bedrock-ws-agent"
    otlp_endpoint: str = "http://localhost:4318"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            aws_region=os.getenv("AWS_REGION", cls.aws_region),
            model_id=os.getenv("MODEL_ID", cls.model_id),
            max_iterations=int(os.getenv("MAX_ITERATIONS", cls.max_iterations)),
            tool_timeout_seconds=float(os.getenv("TOOL_TIMEOUT_SECONDS", cls.tool_timeout_seconds)),
            default_temperature=float(os.getenv("DEFAULT_TEMPERATURE", cls.default_temperature)),
            default_max_tokens=int(os.getenv("DEFAULT_MAX_TOKENS", cls.default_max_tokens)),
            system_prompt=os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
            session_timeout_minutes=int(os.getenv("SESSION_TIMEOUT_MINUTES", cls.session_timeout_minutes)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            allowed_origins=_env_list("ALLOWED_ORIGINS", "*"),
            tracing_enabled=_env_bool("TRACING_ENABLED", "false"),
            otel_service_name=os.getenv("OTEL_SERVICE_NAME", cls.otel_service_name),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", cls.otlp_endpoint),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings

