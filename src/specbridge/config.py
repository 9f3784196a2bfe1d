"""
SpecBridge Configuration
========================

This module handles configuration loading for the relay server and the
producer runtime.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    SPECBRIDGE_RELAY_URL              -> producer.relay_url
    SPECBRIDGE_MIN_FRAME_INTERVAL_MS  -> producer.min_frame_interval_ms
    SPECBRIDGE_JPEG_QUALITY           -> producer.jpeg_quality
    SPECBRIDGE_DETECTION_INTERVAL     -> detection.interval_seconds
    SPECBRIDGE_MODEL                  -> detection.model
    OPENROUTER_API_KEY                -> detection.api_key
    SPECBRIDGE_ALERT_COOLDOWN         -> alerts.cooldown_seconds
    SPECBRIDGE_FEEDBACK_BACKEND       -> alerts.feedback.backend
    SPECBRIDGE_RELAY_PORT             -> relay.port
    SPECBRIDGE_LOG_LEVEL              -> logging.level
    PORT                              -> relay.port

Example:
    from specbridge.config import settings

    print(settings.relay.port)
    print(settings.producer.relay_url)
    print(settings.alerts.cooldown_seconds)
"""

import os
import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class RelayConfig(BaseModel):
    """Relay server configuration."""

    name: str = Field(default="specbridge-relay", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    subscriber_queue_size: int = Field(
        default=8,
        ge=1,
        description="Pending messages per push subscriber before it is dropped",
    )
    stream_interval_ms: int = Field(
        default=66,
        ge=1,
        description="Tick period of the multipart pull stream (~15 fps)",
    )
    max_frame_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=1,
        description="Largest accepted frame upload",
    )
    log_every_n_frames: int = Field(
        default=30,
        ge=1,
        description="Log ingress stats every N frames",
    )


class ProducerConfig(BaseModel):
    """Frame ingestion configuration (glasses/phone side)."""

    relay_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the relay server",
    )
    min_frame_interval_ms: int = Field(
        default=66,
        ge=1,
        description="Minimum interval between frame sends (~15 fps)",
    )
    jpeg_quality: int = Field(
        default=60,
        ge=1,
        le=100,
        description="JPEG compression quality for relayed frames",
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for relay HTTP requests",
    )
    error_status_interval_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Minimum interval between error status updates",
    )


class DetectionConfig(BaseModel):
    """Violation detector and inference configuration."""

    interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Period of the violation detector loop",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single inference call",
    )
    endpoint: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        description="Chat-completions endpoint of the vision model",
    )
    model: str = Field(
        default="google/gemini-2.5-flash",
        description="Vision model identifier",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key for the inference endpoint",
    )
    max_tokens: int = Field(default=200, ge=1, description="Completion token cap")
    temperature: float = Field(default=0.1, ge=0, le=2.0, description="Sampling temperature")


class FeedbackConfig(BaseModel):
    """Local device feedback configuration."""

    backend: str = Field(
        default="log",
        description="Feedback backend: 'log' or 'command'",
    )
    commands: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "shoes": ["aplay", "-q", "sounds/shoes.wav"],
            "gloves": ["aplay", "-q", "sounds/gloves.wav"],
        },
        description="Command to run per alert category (backend 'command')",
    )


class AlertsConfig(BaseModel):
    """Alert state machine and fanout configuration."""

    cooldown_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Minimum interval between raises of the same category",
    )
    sequence_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay between local feedback of simultaneous alerts",
    )
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for SpecBridge.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    relay: RelayConfig = Field(default_factory=RelayConfig)
    producer: ProducerConfig = Field(default_factory=ProducerConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Producer settings
    if env_url := os.environ.get("SPECBRIDGE_RELAY_URL"):
        config_data.setdefault("producer", {})["relay_url"] = env_url
    if env_interval := os.environ.get("SPECBRIDGE_MIN_FRAME_INTERVAL_MS"):
        config_data.setdefault("producer", {})["min_frame_interval_ms"] = int(env_interval)
    if env_quality := os.environ.get("SPECBRIDGE_JPEG_QUALITY"):
        config_data.setdefault("producer", {})["jpeg_quality"] = int(env_quality)

    # Detection settings
    if env_period := os.environ.get("SPECBRIDGE_DETECTION_INTERVAL"):
        config_data.setdefault("detection", {})["interval_seconds"] = float(env_period)
    if env_model := os.environ.get("SPECBRIDGE_MODEL"):
        config_data.setdefault("detection", {})["model"] = env_model
    if env_key := os.environ.get("OPENROUTER_API_KEY"):
        config_data.setdefault("detection", {})["api_key"] = env_key

    # Alert settings
    if env_cooldown := os.environ.get("SPECBRIDGE_ALERT_COOLDOWN"):
        config_data.setdefault("alerts", {})["cooldown_seconds"] = float(env_cooldown)
    if env_feedback := os.environ.get("SPECBRIDGE_FEEDBACK_BACKEND"):
        config_data.setdefault("alerts", {}).setdefault("feedback", {})["backend"] = env_feedback

    # Relay settings (PORT wins for container platforms)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("relay", {})["port"] = int(env_port)
    elif env_port := os.environ.get("SPECBRIDGE_RELAY_PORT"):
        config_data.setdefault("relay", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("SPECBRIDGE_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
