"""Configuration loader and validation."""

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "RecognizerConfig",
    "AudioConfig",
    "PersistenceConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "discover_audio_devices",
]

DEFAULT_BACKEND_URL = "http://localhost:5000/api"


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class RecognizerConfig:
    """Remote speech recognizer settings."""

    endpoint: str = "https://api.wit.ai/dictation"
    token: str | None = None
    timeout: float = 30.0
    api_version: str | None = None


@dataclass
class AudioConfig:
    """Audio capture configuration."""

    sample_rate: int = 16000
    channels: int = 1
    chunk_size: int = 4096
    device: int | str | None = None
    min_duration: float = 1.0


@dataclass
class PersistenceConfig:
    """Backend used to store transcripts."""

    enabled: bool = True
    base_url: str = DEFAULT_BACKEND_URL
    timeout: float = 10.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False
    debug: bool = False


@dataclass
class Config:
    """Main configuration container."""

    recognizer: RecognizerConfig = field(default_factory=RecognizerConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. VOICE_SCRIBE_CONFIG env var
                  2. ./voice_scribe.toml
                  3. ~/.config/voice_scribe.toml
                  Defaults are used when none of them exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit file is missing or values are invalid
        """
        if env is None:
            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                recognizer=RecognizerConfig(**coerced["recognizer"]),
                audio=AudioConfig(**coerced["audio"]),
                persistence=PersistenceConfig(**coerced["persistence"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any value is unusable
        """
        validate_recognizer_config(self.recognizer)
        validate_audio_config(self.audio)
        validate_persistence_config(self.persistence)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path (must exist)
    2. VOICE_SCRIBE_CONFIG environment variable
    3. ./voice_scribe.toml (current directory)
    4. ~/.config/voice_scribe.toml (user config directory)

    Raises:
        ConfigError: If an explicit path does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get("VOICE_SCRIBE_CONFIG"):
        candidates.append(Path(env_path))

    candidates.append(Path("voice_scribe.toml"))
    candidates.append(Path.home() / ".config" / "voice_scribe.toml")

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Fills secrets and URLs from the environment when the file leaves them out.
    """
    coerced = {}

    for section in ("recognizer", "audio", "persistence", "general"):
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    recognizer_section = coerced["recognizer"]
    if not recognizer_section.get("token"):
        recognizer_section["token"] = env.get("WIT_API_TOKEN")

    persistence_section = coerced["persistence"]
    if env_url := env.get("VOICE_SCRIBE_BACKEND_URL"):
        persistence_section["base_url"] = env_url

    return coerced


def discover_audio_devices() -> list[dict]:
    """Enumerate available audio capture devices.

    Returns:
        List of device dicts with keys: index, name, channels, sample_rate
        Returns empty list if sounddevice unavailable or no devices found
    """
    try:
        import sounddevice
    except (ImportError, OSError):
        logger.warning("sounddevice not available, cannot enumerate audio devices")
        return []

    devices = []
    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) > 0:
                devices.append(
                    {
                        "index": idx,
                        "name": dev_info.get("name", f"Device {idx}"),
                        "channels": dev_info.get("max_input_channels", 0),
                        "sample_rate": dev_info.get("default_samplerate", 0),
                    }
                )
    except Exception as e:
        logger.warning("Error discovering audio devices: %s", e)

    return devices


def validate_recognizer_config(recognizer_cfg: RecognizerConfig) -> None:
    """Validate recognizer configuration.

    Raises:
        ConfigError: If endpoint, token or timeout is unusable
    """
    if not recognizer_cfg.endpoint:
        raise ConfigError("recognizer.endpoint is required")

    if not recognizer_cfg.endpoint.startswith(("http://", "https://")):
        raise ConfigError(
            f"recognizer.endpoint must be an http(s) URL, got '{recognizer_cfg.endpoint}'"
        )

    if not recognizer_cfg.token:
        raise ConfigError(
            "Recognizer token is required. "
            "Set it in config file or via WIT_API_TOKEN environment variable."
        )

    if recognizer_cfg.timeout <= 0:
        raise ConfigError(
            f"recognizer.timeout must be positive, got {recognizer_cfg.timeout}"
        )


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    """Validate audio capture configuration.

    Raises:
        ConfigError: If sample format or thresholds are invalid
    """
    if audio_cfg.sample_rate <= 0:
        raise ConfigError(f"sample_rate must be positive, got {audio_cfg.sample_rate}")

    if audio_cfg.channels not in (1, 2):
        raise ConfigError(f"channels must be 1 or 2, got {audio_cfg.channels}")

    if audio_cfg.chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {audio_cfg.chunk_size}")

    if audio_cfg.min_duration < 0:
        raise ConfigError(
            f"min_duration must be non-negative, got {audio_cfg.min_duration}"
        )


def validate_persistence_config(persistence_cfg: PersistenceConfig) -> None:
    """Validate persistence backend configuration.

    Raises:
        ConfigError: If enabled without a usable URL or timeout
    """
    if not persistence_cfg.enabled:
        return

    if not persistence_cfg.base_url:
        raise ConfigError("persistence.base_url is required when persistence is enabled")

    if persistence_cfg.timeout <= 0:
        raise ConfigError(
            f"persistence.timeout must be positive, got {persistence_cfg.timeout}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().
    """
    return Config.from_toml(path, env=env)
