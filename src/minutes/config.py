import os

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator, validate_call
from pydantic.types import FilePath

from minutes.constants import SAMPLE_RATE
from minutes.format import Bytes
from minutes.logs import get_logger

logger = get_logger("cfg")

DEFAULT_STT_ENDPOINT = "https://api.groq.com/openai/v1/audio/transcriptions"


class SessionStoreConfig(BaseModel):
  """Configuration for per-session audio buffering and idle eviction."""

  sample_rate: int = Field(default=SAMPLE_RATE, gt=0)
  """Sample rate used to convert buffered bytes into a duration."""

  max_buffer_bytes: int = Field(default=1024 * 1024, gt=0)
  """Appends that would grow a session buffer beyond this size are dropped."""

  session_timeout: float = Field(default=30.0, gt=0.0)
  """Seconds without activity after which a session is evicted."""

  sweep_interval: float = Field(default=10.0, gt=0.0)
  """Seconds between idle-eviction sweeps."""

  @model_validator(mode="after")
  def validate_sweep_interval(self) -> "SessionStoreConfig":
    if self.sweep_interval >= self.session_timeout:
      raise ValueError(
        f"sweep_interval ({self.sweep_interval}s) must be less than "
        f"session_timeout ({self.session_timeout}s)"
      )
    return self


class TranscriptionConfig(BaseModel):
  """Configuration for the remote speech-to-text backend."""

  endpoint: str = DEFAULT_STT_ENDPOINT
  """OpenAI-compatible audio transcription endpoint."""

  model: str = "whisper-large-v3-turbo"
  """Model name sent with every request."""

  api_key: SecretStr | None = Field(
    default_factory=lambda: SecretStr(key) if (key := os.getenv("GROQ_API_KEY")) else None
  )
  """Bearer token. Falls back to the GROQ_API_KEY environment variable."""

  timeout: float = Field(default=15.0, gt=0.0)
  """Per-request timeout in seconds."""

  temperature: float = Field(default=0.0, ge=0.0, le=1.0)
  """Sampling temperature passed to the backend."""


class SessionDefaults(BaseModel):
  """Values applied when a client's start message omits them."""

  language: str = "ja"
  mode: str = "normal"
  min_transcribe_duration_sec: float = Field(default=2.0, ge=0.0)
  threshold: float = Field(default=1.6, gt=0.0)


class MinutesConfig(BaseModel):
  """Top-level server configuration."""

  store: SessionStoreConfig = Field(default_factory=SessionStoreConfig)
  transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
  defaults: SessionDefaults = Field(default_factory=SessionDefaults)

  def pretty_print(self) -> None:
    """Log every active setting at INFO level, defaults included."""
    logger.info("=" * 60)
    logger.info("MINUTES CONFIGURATION")
    logger.info("=" * 60)

    logger.info("SESSION STORE:")
    logger.info(f"  Sample Rate: {self.store.sample_rate}")
    logger.info(f"  Max Buffer Size: {Bytes(self.store.max_buffer_bytes)}")
    logger.info(f"  Session Timeout: {self.store.session_timeout}s")
    logger.info(f"  Sweep Interval: {self.store.sweep_interval}s")

    logger.info("TRANSCRIPTION:")
    logger.info(f"  Endpoint: {self.transcription.endpoint}")
    logger.info(f"  Model: {self.transcription.model}")
    logger.info(f"  API Key: {'set' if self.transcription.api_key else 'MISSING'}")
    logger.info(f"  Timeout: {self.transcription.timeout}s")
    logger.info(f"  Temperature: {self.transcription.temperature}")

    logger.info("SESSION DEFAULTS:")
    logger.info(f"  Language: {self.defaults.language}")
    logger.info(f"  Mode: {self.defaults.mode}")
    logger.info(f"  Min Transcribe Duration: {self.defaults.min_transcribe_duration_sec}s")
    logger.info(f"  Threshold: {self.defaults.threshold}")

    logger.info("=" * 60)


@validate_call
def load_config_from_file(config_path: FilePath) -> MinutesConfig:
  """Load and validate configuration from a YAML file."""
  logger.info("Loading configuration", path=str(config_path))

  try:
    with open(config_path, "r", encoding="utf-8") as file:
      config_data = yaml.safe_load(file)
  except yaml.YAMLError as e:
    raise ValueError(f"Invalid YAML in configuration file: {e}") from e
  except OSError as e:
    raise ValueError(f"Error reading configuration file: {e}") from e

  if config_data is None:
    raise ValueError("Configuration file is empty")

  if not isinstance(config_data, dict):
    raise ValueError("Configuration file must contain a YAML dictionary")

  return MinutesConfig.model_validate(config_data)


def get_env_or_default(env_var: str, default, var_type: type = str):
  """Get an environment variable with type conversion, falling back to the default."""
  value = os.getenv(env_var)
  if value is None:
    return default

  if var_type is bool:
    return value.lower() in ("true", "1", "yes", "on")
  if var_type is int:
    try:
      return int(value)
    except ValueError:
      return default
  return value
