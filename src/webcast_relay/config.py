"""
Webcast Relay Configuration
===========================

This module handles configuration loading for the relay.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    TARGET_URL             -> target.url
    YOUTUBE_RTMP_URL       -> stream.rtmp_url
    STREAM_KEY             -> stream.stream_key
    WIDTH / HEIGHT         -> video.width / video.height
    FPS                    -> video.fps
    VIDEO_BITRATE          -> video.bitrate
    MUSIC_PATH             -> audio.music_path
    MUSIC_VOLUME           -> audio.music_volume
    CAPTURE_MODE           -> capture.mode
    DISPLAY                -> capture.display
    BROWSER_EXECUTABLE_PATH -> browser.executable_path
    FFMPEG_PATH            -> encoder.binary
    RESTART_DELAY          -> supervisor.restart_delay_seconds (milliseconds)
    PAGE_REFRESH_INTERVAL  -> supervisor.rejuvenation_interval_seconds (milliseconds)
    HEALTH_PORT            -> server.port (and enables the health server)
    LOG_LEVEL              -> logging.level
    DEBUG                  -> logging.level = DEBUG

The validated Settings object is immutable and is passed explicitly to
every component. Nothing reads configuration from module globals.

Example:
    from webcast_relay.config import load_config

    settings = load_config("config.yaml")
    print(settings.masked_target)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from webcast_relay.errors import ConfigError
from webcast_relay.models.state import CaptureMode


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class TargetConfig(_Frozen):
    """Page to render."""

    url: str = Field(default="https://neptun.in.ua", description="Page to stream")
    settle_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Fixed wait after network idle before the page counts as settled",
    )
    navigation_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for navigation and reload",
    )


class StreamConfig(_Frozen):
    """Remote live-streaming endpoint."""

    rtmp_url: str = Field(
        default="rtmp://a.rtmp.youtube.com/live2",
        description="RTMP ingest URL without the key",
    )
    stream_key: str = Field(..., min_length=1, description="Secret stream key")

    @field_validator("rtmp_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class VideoConfig(_Frozen):
    """Frame geometry and video encoding parameters."""

    width: int = Field(default=1920, ge=16, le=7680, description="Frame width")
    height: int = Field(default=1080, ge=16, le=4320, description="Frame height")
    fps: int = Field(default=30, ge=1, le=120, description="Target frame rate")
    bitrate: str = Field(default="8000k", description="Video bitrate (ffmpeg syntax)")
    jpeg_quality: int = Field(
        default=85,
        ge=1,
        le=100,
        description="JPEG quality for captured frames",
    )

    @field_validator("bitrate")
    @classmethod
    def _check_bitrate(cls, value: str) -> str:
        parse_bitrate_kbps(value)
        return value


class AudioConfig(_Frozen):
    """Background audio track."""

    music_path: str = Field(
        default="music/background.mp3",
        description="Looped background track; silence is used if missing",
    )
    music_volume: float = Field(default=0.15, ge=0.0, le=1.0, description="Track volume")
    bitrate: str = Field(default="192k", description="AAC bitrate")


class CaptureConfig(_Frozen):
    """Frame acquisition strategy."""

    mode: CaptureMode = Field(default=CaptureMode.DELEGATED, description="Capture strategy")
    display: str = Field(default=":99", description="X11 display for the browser and x11grab")
    failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive acquisition failures that escalate to SourceError",
    )
    failure_window_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Window the consecutive failures must fall into",
    )
    acquire_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for a single screenshot (polled)",
    )
    stall_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Silence after which a screencast counts as stalled (pushed)",
    )


class BrowserConfig(_Frozen):
    """Chromium launch options."""

    headless: Optional[bool] = Field(
        default=None,
        description="None = headful for delegated capture, headless otherwise",
    )
    executable_path: Optional[str] = Field(default=None, description="Chromium binary")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User agent presented to the target site",
    )
    extra_args: List[str] = Field(default_factory=list, description="Additional Chromium flags")
    close_timeout_seconds: float = Field(default=10.0, gt=0, description="Bound on teardown")


class EncoderConfig(_Frozen):
    """Encoder subprocess and its supervision."""

    binary: str = Field(default="ffmpeg", description="ffmpeg executable")
    preset: str = Field(default="fast", description="x264 preset")
    threads: int = Field(default=4, ge=0, description="ffmpeg worker threads (0 = auto)")
    crf: int = Field(default=18, ge=0, le=51, description="x264 constant rate factor")
    gop_seconds: int = Field(default=2, ge=1, description="Keyframe interval in seconds")
    relaunch_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay before relaunching a crashed encoder",
    )
    crash_loop_threshold: int = Field(
        default=3,
        ge=1,
        description="Relaunches allowed inside the crash-loop window",
    )
    crash_loop_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Window for crash-loop detection",
    )
    startup_probe_seconds: float = Field(
        default=0.5,
        ge=0,
        description="An encoder exiting this soon after launch fails start()",
    )
    stop_grace_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Grace period after SIGTERM before SIGKILL",
    )
    write_buffer_high_water: int = Field(
        default=4 * 1024 * 1024,
        ge=1024,
        description="Bytes buffered for stdin before send() reports backpressure",
    )
    drain_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Maximum wait for a drain signal",
    )
    progress_log_interval_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Minimum spacing of encoder progress log lines",
    )


class SupervisorConfig(_Frozen):
    """Restart and rejuvenation timing."""

    restart_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay before restarting a failed pipeline",
    )
    rejuvenation_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Maximum session age before it is reloaded",
    )
    rejuvenation_check_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How often session age is checked",
    )


class ServerConfig(_Frozen):
    """Optional HTTP liveness endpoint."""

    enabled: bool = Field(default=False, description="Serve /health and /status")
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class LoggingConfig(_Frozen):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(_Frozen):
    """
    Immutable configuration snapshot for one relay process.

    Changing any value requires a full restart.
    """

    target: TargetConfig = Field(default_factory=TargetConfig)
    stream: StreamConfig
    video: VideoConfig = Field(default_factory=VideoConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def rtmp_target(self) -> str:
        """Full publish URL including the secret key."""
        return f"{self.stream.rtmp_url}/{self.stream.stream_key}"

    @property
    def masked_target(self) -> str:
        """Publish URL safe for logs."""
        return f"{self.stream.rtmp_url}/****"

    @property
    def browser_headless(self) -> bool:
        if self.browser.headless is not None:
            return self.browser.headless
        return self.capture.mode is not CaptureMode.DELEGATED


def parse_bitrate_kbps(value: str) -> int:
    """Parse an ffmpeg bitrate string ('8000k', '8M', '800000') into kbit/s."""
    text = value.strip().lower()
    try:
        if text.endswith("k"):
            return int(float(text[:-1]))
        if text.endswith("m"):
            return int(float(text[:-1]) * 1000)
        return int(float(text) / 1000)
    except ValueError:
        raise ValueError(f"Invalid bitrate: {value!r}") from None


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
        config_path: Path to config.yaml. If None, RELAY_CONFIG and the
            working directory are searched.

    Returns:
        Settings: Validated, immutable configuration

    Raises:
        ConfigError: Missing stream key, bad env value, unreadable YAML or
            any validation failure
    """
    if config_path is None:
        config_path = os.environ.get("RELAY_CONFIG")
    if config_path is None:
        for path in (Path("config.yaml"), Path("config.yml")):
            if path.exists():
                config_path = str(path)
                break

    config_data: dict = {}
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed config file {config_path}: {e}") from e
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        for name, value in list(config_data.items()):
            if value is None:
                config_data[name] = {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    try:
        return Settings.model_validate(config_data)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) for err in e.errors()
        )
        if any(err["loc"][:1] == ("stream",) for err in e.errors()):
            hint = " (set STREAM_KEY)"
        else:
            hint = ""
        raise ConfigError(f"Invalid configuration: {fields}{hint}") from e


def _env_number(name: str, cast):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"Environment variable {name} is not a valid number: {raw!r}") from None


def _section(config_data: dict, name: str) -> dict:
    """Return the mutable mapping for a config section, creating it if absent."""
    section = config_data.get(name)
    if section is None:
        section = config_data[name] = {}
    elif not isinstance(section, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Target
    if env_url := os.environ.get("TARGET_URL"):
        _section(config_data, "target")["url"] = env_url

    # Stream endpoint
    if env_rtmp := os.environ.get("YOUTUBE_RTMP_URL"):
        _section(config_data, "stream")["rtmp_url"] = env_rtmp
    if env_key := os.environ.get("STREAM_KEY"):
        _section(config_data, "stream")["stream_key"] = env_key

    # Video
    if (width := _env_number("WIDTH", int)) is not None:
        _section(config_data, "video")["width"] = width
    if (height := _env_number("HEIGHT", int)) is not None:
        _section(config_data, "video")["height"] = height
    if (fps := _env_number("FPS", int)) is not None:
        _section(config_data, "video")["fps"] = fps
    if env_bitrate := os.environ.get("VIDEO_BITRATE"):
        _section(config_data, "video")["bitrate"] = env_bitrate

    # Audio
    if env_music := os.environ.get("MUSIC_PATH"):
        _section(config_data, "audio")["music_path"] = env_music
    if (volume := _env_number("MUSIC_VOLUME", float)) is not None:
        _section(config_data, "audio")["music_volume"] = volume

    # Capture
    if env_mode := os.environ.get("CAPTURE_MODE"):
        _section(config_data, "capture")["mode"] = env_mode.lower()
    if env_display := os.environ.get("DISPLAY"):
        _section(config_data, "capture")["display"] = env_display

    # Browser / encoder binaries
    if env_chrome := os.environ.get("BROWSER_EXECUTABLE_PATH"):
        _section(config_data, "browser")["executable_path"] = env_chrome
    if env_ffmpeg := os.environ.get("FFMPEG_PATH"):
        _section(config_data, "encoder")["binary"] = env_ffmpeg

    # Supervisor timing (milliseconds, as the container env sets them)
    if (restart_ms := _env_number("RESTART_DELAY", int)) is not None:
        _section(config_data, "supervisor")["restart_delay_seconds"] = restart_ms / 1000.0
    if (refresh_ms := _env_number("PAGE_REFRESH_INTERVAL", int)) is not None:
        _section(config_data, "supervisor")["rejuvenation_interval_seconds"] = refresh_ms / 1000.0

    # Health server
    if (port := _env_number("HEALTH_PORT", int)) is not None:
        server = _section(config_data, "server")
        server["port"] = port
        server["enabled"] = True

    # Logging
    if env_log := os.environ.get("LOG_LEVEL"):
        _section(config_data, "logging")["level"] = env_log
    if os.environ.get("DEBUG"):
        _section(config_data, "logging")["level"] = "DEBUG"


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
        force=True,
    )
