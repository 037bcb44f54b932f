#!/usr/bin/env python3
"""
Resource validation script for Festive Postcard Video.

This script helps validate your resources.txt file and checks that all
specified files exist and are accessible.
"""

import configparser
from pathlib import Path
import sys

from postcard_video.config import parse_smart_timestamp
from postcard_video.models import MAX_GREETING_LENGTH
from postcard_video.validator import PROFILES


def _check_file(label: str, value: str, required: bool = True) -> bool:
    if value.startswith(("http://", "https://")):
        print(f"  🌐 {label}: {value} (fetched at recording time)")
        return True
    path = Path(value)
    if path.exists():
        print(f"  ✅ {label}: {path}")
        return True
    if required:
        print(f"  ❌ {label} NOT FOUND: {path}")
        return False
    print(f"  ⚠️  {label} NOT FOUND (optional): {path}")
    return True


def validate_resources(resources_file: Path = Path("resources.txt")) -> bool:
    """Validate all resources specified in resources.txt"""

    if not resources_file.exists():
        print("❌ resources.txt file not found!")
        print("📝 Please create a resources.txt file with your asset paths.")
        print("💡 Run: python validate_resources.py --example")
        return False

    print("🔍 Validating resources.txt...")
    print("=" * 50)

    config = configparser.ConfigParser()
    try:
        config.read(resources_file)
    except configparser.Error as e:
        print(f"❌ Error reading resources.txt: {e}")
        return False

    all_valid = True

    if 'ASSETS' in config:
        print("\n🪔 ASSETS:")
        assets = config['ASSETS']

        for key, label in (('overlay_image', 'Postcard overlay'),
                           ('background_video', 'Background video')):
            if key in assets:
                all_valid = _check_file(label, assets[key]) and all_valid
            else:
                print(f"  ❌ {key} not specified!")
                all_valid = False

        if 'frame_art_image' in assets:
            all_valid = _check_file('Frame art', assets['frame_art_image']) and all_valid
        else:
            print("  ℹ️  No frame_art_image specified (will use assets/photo-frame-story.png)")

        if 'greeting' in assets:
            greeting = assets['greeting']
            if len(greeting) > MAX_GREETING_LENGTH:
                print(f"  ❌ Greeting is {len(greeting)} characters (max {MAX_GREETING_LENGTH})")
                all_valid = False
            else:
                print(f"  ✅ Greeting: {greeting}")
    else:
        print("  ❌ [ASSETS] section missing!")
        all_valid = False

    if 'RECORDING' in config:
        print("\n🎬 RECORDING:")
        recording = config['RECORDING']
        for key in ('auto_duration', 'min_manual_duration', 'max_manual_duration'):
            if key in recording:
                time_str = recording[key]
                try:
                    seconds = parse_smart_timestamp(time_str)
                    print(f"  🎯 {key}: {time_str} → {seconds:.1f}s")
                except ValueError:
                    print(f"  ❌ Invalid {key} format: {time_str}")
                    print("     Supported: 10 (seconds), 0:10 (MM:SS), 10s, 1m30s, 2000ms")
                    all_valid = False
        for key in ('auto_fps', 'manual_fps'):
            if key in recording:
                try:
                    if recording.getint(key) <= 0:
                        raise ValueError
                    print(f"  ✅ {key}: {recording[key]}")
                except ValueError:
                    print(f"  ❌ {key} must be a positive integer: {recording[key]}")
                    all_valid = False
    else:
        print("\n  ℹ️  No [RECORDING] section (will use 10s auto / 2s minimum manual)")

    if 'OUTPUT' in config:
        print("\n📤 OUTPUT SETTINGS:")
        output_section = config['OUTPUT']

        if 'output_directory' in output_section:
            path = Path(output_section['output_directory'])
            path.mkdir(parents=True, exist_ok=True)  # Create if needed
            print(f"  ✅ Output directory: {path}")

        if 'profile' in output_section:
            profile = output_section['profile']
            if profile in PROFILES:
                print(f"  ✅ Compatibility profile: {profile}")
            else:
                print(f"  ❌ Unknown profile '{profile}' (available: {', '.join(sorted(PROFILES))})")
                all_valid = False

    if 'UPLOAD' in config:
        print("\n☁️  UPLOAD:")
        upload = config['UPLOAD']
        try:
            enabled = upload.getboolean('enabled', fallback=True)
            print(f"  ✅ Upload {'enabled' if enabled else 'disabled'}")
        except ValueError:
            print(f"  ❌ enabled must be true/false: {upload['enabled']}")
            all_valid = False
        if 'folder' in upload:
            print(f"  ✅ Folder: {upload['folder']}")
        print("     Credentials are read from CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET")

    print("\n" + "=" * 50)

    if all_valid:
        print("🎉 All required resources validated successfully!")
        print("💡 Run: python main.py")
        return True

    print("❌ Some required resources are missing!")
    print("📋 Please check the paths in your resources.txt file.")
    return False


def print_example_resources():
    """Print an example resources.txt file"""
    print("\n📝 Example resources.txt file:")
    print("=" * 50)

    example = """[ASSETS]
# Postcard can be a local file or a URL
overlay_image = output/postcard.png
frame_art_image = assets/photo-frame-story.png
background_video = assets/background/1.mp4
greeting = Happy Diwali from all of us!

[RECORDING]
# Smart duration formats: 10 (seconds), 0:10 (MM:SS), 10s, 1m30s, 2000ms
auto_duration = 10s
min_manual_duration = 2s
# max_manual_duration = 30s
auto_fps = 24
manual_fps = 15
force_mobile = false
reencode_output = false

[OUTPUT]
output_directory = output
profile = messaging-platform-share

[UPLOAD]
enabled = true
folder = diwali-postcards/videos"""

    print(example)
    print("=" * 50)


if __name__ == "__main__":
    print("🪔 Festive Postcard Video - Resource Validator")
    print("=" * 50)

    if len(sys.argv) > 1 and sys.argv[1] == "--example":
        print_example_resources()
        sys.exit(0)

    success = validate_resources()

    if not success:
        print("\n💡 Need help? Run: python validate_resources.py --example")
        sys.exit(1)
    else:
        sys.exit(0)
