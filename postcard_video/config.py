"""
Configuration management for the postcard video recorder.

This module handles loading and validation of configuration parameters
from config.yaml, with asset paths optionally overridden by resources.txt.
"""

import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Any, Optional
import yaml
import configparser

from .models import MAX_GREETING_LENGTH

logger = logging.getLogger(__name__)


def parse_smart_timestamp(timestamp_str: str) -> float:
    """
    Smart timestamp parser that handles multiple formats:

    Supported formats:
    - Seconds only: "45.5", "123", "45"
    - MM:SS: "1:23.5", "2:15", "0:45.2"
    - HH:MM:SS: "1:23:45.5", "0:02:15", "2:01:30"
    - Mixed: "1h23m45.5s", "2m15s", "45s"

    Args:
        timestamp_str: Timestamp string in any supported format

    Returns:
        Timestamp in seconds as float
    """
    timestamp_str = str(timestamp_str).strip()

    # Handle pure numeric values (seconds)
    try:
        return float(timestamp_str)
    except ValueError:
        pass

    # Handle HH:MM:SS or MM:SS formats
    if ':' in timestamp_str:
        parts = timestamp_str.split(':')

        if len(parts) == 2:  # MM:SS
            return float(parts[0]) * 60 + float(parts[1])

        elif len(parts) == 3:  # HH:MM:SS
            return float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2])

    # Handle text formats like "1h23m45.5s", "2m15s", "45s"
    hour_match = re.search(r'(\d+(?:\.\d+)?)h', timestamp_str.lower())
    min_match = re.search(r'(\d+(?:\.\d+)?)m(?!s)', timestamp_str.lower())
    ms_match = re.search(r'(\d+(?:\.\d+)?)ms', timestamp_str.lower())
    sec_match = re.search(r'(\d+(?:\.\d+)?)s', re.sub(r'\d+(?:\.\d+)?ms', '', timestamp_str.lower()))

    total_seconds = 0.0
    matched = False

    if hour_match:
        total_seconds += float(hour_match.group(1)) * 3600
        matched = True
    if min_match:
        total_seconds += float(min_match.group(1)) * 60
        matched = True
    if sec_match:
        total_seconds += float(sec_match.group(1))
        matched = True
    if ms_match:
        total_seconds += float(ms_match.group(1)) / 1000
        matched = True

    if matched:
        return total_seconds

    raise ValueError(
        f"Could not parse duration '{timestamp_str}'. "
        f"Supported formats: '10' (seconds), '0:10' (MM:SS), "
        f"'0:00:10' (HH:MM:SS), '10s', '1m30s', '2000ms'"
    )


def parse_duration_ms(value: Any) -> int:
    """Parse a smart timestamp into whole milliseconds."""
    return int(round(parse_smart_timestamp(value) * 1000))


@dataclass
class Config:
    """Configuration class for the postcard video recorder."""

    # Input assets
    overlay_image: Optional[str] = None      # local path or http(s) URL
    frame_art_image: Path = Path("assets/photo-frame-story.png")
    background_video: Optional[Path] = None
    greeting: str = ""

    # Output
    output_dir: Path = Path("output")

    # Composition
    canvas_size: int = 512
    overlay_scale: float = 0.8
    font_path: Optional[Path] = None
    font_size: int = 28
    line_height: int = 28
    text_margin: int = 40
    text_bottom_offset: int = 30
    background_max_frames: int = 300

    # Frame scheduling
    refresh_hz: float = 60.0

    # Automatic path (fixed length)
    auto_fps: int = 24
    auto_duration_ms: int = 10000
    auto_bitrate: int = 500000

    # Manual path (caller-driven stop)
    manual_fps: int = 15
    mobile_manual_fps: int = 12
    manual_bitrate: int = 200000
    min_manual_duration_ms: int = 2000
    max_manual_duration_ms: Optional[int] = None

    # Encoders
    finish_timeout_s: float = 10.0
    codec_profile: str = "baseline"
    force_mobile: bool = False

    # Compatibility
    profile: str = "messaging-platform-share"
    reencode_output: bool = False

    # Upload relay
    upload_enabled: bool = True
    upload_folder: str = "diwali-postcards/videos"
    upload_timeout_s: float = 120.0

    def __post_init__(self):
        """Post-initialization validation and path conversion."""
        if isinstance(self.frame_art_image, str):
            self.frame_art_image = Path(self.frame_art_image)
        if isinstance(self.background_video, str):
            self.background_video = Path(self.background_video)
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if isinstance(self.font_path, str):
            self.font_path = Path(self.font_path)
        if self.overlay_image is not None:
            self.overlay_image = str(self.overlay_image)
        if self.greeting is None:
            self.greeting = ""

        self.validate()

    def validate(self):
        """Validate configuration parameters."""
        if self.canvas_size <= 0 or self.canvas_size % 2:
            # H.264 with yuv420p needs even dimensions
            raise ValueError(f"Canvas size must be a positive even number, got {self.canvas_size}")

        if len(self.greeting) > MAX_GREETING_LENGTH:
            raise ValueError(
                f"Greeting must be at most {MAX_GREETING_LENGTH} characters, "
                f"got {len(self.greeting)}"
            )

        for name in ("auto_fps", "manual_fps", "mobile_manual_fps", "auto_duration_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if self.refresh_hz <= 0:
            raise ValueError("refresh_hz must be positive")

        if not 0 < self.overlay_scale <= 1:
            raise ValueError("overlay_scale must be in (0, 1]")

        if self.min_manual_duration_ms < 0:
            raise ValueError("min_manual_duration_ms must not be negative")

        if (self.max_manual_duration_ms is not None
                and self.max_manual_duration_ms < self.min_manual_duration_ms):
            raise ValueError("max_manual_duration_ms must not be below min_manual_duration_ms")

        if self.finish_timeout_s <= 0:
            raise ValueError("finish_timeout_s must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for serialization."""
        result = {}
        for item in fields(self):
            value = getattr(self, item.name)
            result[item.name] = str(value) if isinstance(value, Path) else value
        return result


def _known_fields(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the Config dataclass does not define."""
    known = {item.name for item in fields(Config)}
    unknown = sorted(set(config_dict) - known)
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {unknown}")
    return {key: value for key, value in config_dict.items() if key in known}


def load_config(config_path: str, resources_path: str = "resources.txt") -> Config:
    """Load configuration from YAML file and resources.txt file."""
    config_file = Path(config_path)

    # First try to load from resources.txt
    if Path(resources_path).exists():
        logger.info(f"Loading configuration from {resources_path}")
        return load_config_from_resources(resources_path, config_path)

    # Fall back to YAML config
    if not config_file.exists():
        default_config = Config()
        save_config(default_config, config_path)
        logger.info(f"Created default configuration file: {config_path}")
        logger.info("Edit it with your asset paths, or create a resources.txt file.")
        return default_config

    with open(config_file, 'r') as f:
        config_dict = yaml.safe_load(f) or {}

    return Config(**_known_fields(config_dict))


def load_config_from_resources(resources_path: str, config_path: str) -> Config:
    """Load configuration from resources.txt file."""
    resources = configparser.ConfigParser()
    resources.read(resources_path)

    config_dict: Dict[str, Any] = {}

    # Assets
    if 'ASSETS' in resources:
        assets = resources['ASSETS']
        for key in ('overlay_image', 'frame_art_image', 'background_video', 'greeting'):
            if key in assets:
                config_dict[key] = assets[key]

    # Recording durations accept smart timestamps
    if 'RECORDING' in resources:
        recording = resources['RECORDING']
        for key in ('auto_duration', 'min_manual_duration', 'max_manual_duration'):
            if key in recording:
                try:
                    config_dict[f"{key}_ms"] = parse_duration_ms(recording[key])
                    logger.info(f"Parsed {key}: {recording[key]} → {config_dict[f'{key}_ms']}ms")
                except ValueError as e:
                    logger.warning(f"Could not parse {key} '{recording[key]}': {e}")
        for key in ('auto_fps', 'manual_fps'):
            if key in recording:
                config_dict[key] = recording.getint(key)
        if 'force_mobile' in recording:
            config_dict['force_mobile'] = recording.getboolean('force_mobile')
        if 'reencode_output' in recording:
            config_dict['reencode_output'] = recording.getboolean('reencode_output')

    # Output directories
    if 'OUTPUT' in resources:
        output_section = resources['OUTPUT']
        if 'output_directory' in output_section:
            config_dict['output_dir'] = output_section['output_directory']
        if 'profile' in output_section:
            config_dict['profile'] = output_section['profile']

    if 'UPLOAD' in resources:
        upload = resources['UPLOAD']
        if 'enabled' in upload:
            config_dict['upload_enabled'] = upload.getboolean('enabled')
        if 'folder' in upload:
            config_dict['upload_folder'] = upload['folder']

    # YAML config takes precedence over defaults, resources.txt takes precedence over YAML
    yaml_config_file = Path(config_path)
    if yaml_config_file.exists():
        with open(yaml_config_file, 'r') as f:
            yaml_dict = yaml.safe_load(f) or {}
        for key, value in yaml_dict.items():
            if key not in config_dict:
                config_dict[key] = value

    return Config(**_known_fields(config_dict))


def save_config(config: Config, config_path: str):
    """Save configuration to YAML file."""
    with open(config_path, 'w') as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, indent=2)


def create_example_config() -> str:
    """Create an example configuration file."""
    example_config = """# Postcard Video Recorder Configuration
# Edit these paths to match your assets

# Required assets
overlay_image: "output/postcard.png"            # AI-generated postcard (path or URL)
frame_art_image: "assets/photo-frame-story.png" # Decorative frame drawn on top
background_video: "assets/background/1.mp4"     # Looping background clip
greeting: "Happy Diwali!"                       # At most 75 characters

output_dir: "output"

# Composition
canvas_size: 512       # Square output, must be even
overlay_scale: 0.8     # Postcard occupies 80% of the canvas
font_path: null        # Bold TrueType font, falls back to Pillow's default
font_size: 28
line_height: 28

# Automatic recording (fixed length)
auto_fps: 24
auto_duration_ms: 10000
auto_bitrate: 500000

# Manual recording (stop when ready)
manual_fps: 15
mobile_manual_fps: 12
manual_bitrate: 200000
min_manual_duration_ms: 2000
max_manual_duration_ms: null   # unbounded

# Encoders
finish_timeout_s: 10.0
codec_profile: "baseline"
force_mobile: false            # skip the library encoder

# Compatibility
profile: "messaging-platform-share"
reencode_output: false

# Upload (credentials come from CLOUDINARY_* environment variables)
upload_enabled: true
upload_folder: "diwali-postcards/videos"
"""

    return example_config


if __name__ == "__main__":
    # Generate example config when run directly
    example = create_example_config()
    with open("config_example.yaml", "w") as f:
        f.write(example)
    print("Example configuration saved to config_example.yaml")
