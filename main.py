#!/usr/bin/env python3
"""
Festive Postcard Video - Main Application

Records a short animated festive postcard: a looping background clip, the
AI-generated postcard image, decorative frame art and a greeting, composed
on a square canvas and encoded into a messaging-friendly MP4.

Pipeline:
- Load the overlay, frame art and background clip
- Record automatically (fixed 10 s) or manually (stop when ready, 2 s minimum)
- Validate the result against the sharing profile, falling back to the
  native recorder when the library encoder's output is rejected
- Save locally and optionally upload for a shareable link
"""

import sys
import time
import asyncio
import argparse
import logging
import json
from pathlib import Path
from typing import Any, Dict, Optional

# Import our modules
from postcard_video.config import Config, load_config, parse_smart_timestamp
from postcard_video.canvas import Canvas
from postcard_video.assets import load_composition_inputs
from postcard_video.compositor import FrameComposer
from postcard_video.backends import LibraryEncoder, NativeMediaRecorder
from postcard_video.capabilities import CapabilityProbe
from postcard_video.exceptions import RecordingError, UploadFailedError
from postcard_video.models import BackendKind, Failed, RecordingMode, RecordingState, Succeeded
from postcard_video.orchestrator import RecordingOrchestrator
from postcard_video.upload_relay import SignedUploadRelay

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('postcard_video.log')
    ]
)
logger = logging.getLogger(__name__)


class PostcardVideoApp:
    """Main application class for the festive postcard video recorder."""

    def __init__(self, config_path: str, overrides: Optional[Dict[str, Any]] = None):
        """Initialize the application with configuration."""
        self.config = load_config(config_path)
        for key, value in (overrides or {}).items():
            if value is not None:
                setattr(self.config, key, value)
        self.config.__post_init__()
        self.setup_directories()

        self.work_dir = self.config.output_dir / "work"
        self.composer = FrameComposer(self.config)
        self.backends = {
            BackendKind.LIBRARY_ENCODER: LibraryEncoder(self.work_dir),
            BackendKind.NATIVE_MEDIA_RECORDER: NativeMediaRecorder(self.work_dir),
        }
        self.final_state: Optional[RecordingState] = None
        self.saved_path: Optional[Path] = None

        logger.info("Festive Postcard Video initialized")
        logger.info(f"Configuration loaded from: {config_path}")

    def setup_directories(self):
        """Create output directories if they don't exist."""
        for dir_path in (self.config.output_dir, self.config.output_dir / "work"):
            dir_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"Output directories created: {self.config.output_dir}")

    def validate_inputs(self) -> bool:
        """Validate that required inputs exist."""
        if not self.config.overlay_image:
            logger.error("No overlay image specified")
            return False
        if not self.config.background_video:
            logger.error("No background video specified")
            return False

        required_files = [self.config.frame_art_image, self.config.background_video]
        if not self.config.overlay_image.startswith(("http://", "https://")):
            required_files.append(Path(self.config.overlay_image))

        missing_files = [str(path) for path in required_files if not Path(path).exists()]
        if missing_files:
            logger.error(f"Missing required input files: {missing_files}")
            logger.error("Please check your resources.txt or config.yaml file")
            return False

        logger.info("All required inputs validated")
        logger.info(f"Overlay image: {self.config.overlay_image}")
        logger.info(f"Frame art: {self.config.frame_art_image}")
        logger.info(f"Background video: {self.config.background_video}")
        if self.config.greeting:
            logger.info(f"Greeting: {self.config.greeting}")

        capabilities = CapabilityProbe(self.config).probe()
        if not capabilities.supports_library_encoder:
            logger.warning("ffmpeg not found, recording will use the native recorder only")
        return True

    def _upload_relay(self, upload: bool) -> Optional[SignedUploadRelay]:
        if not (upload and self.config.upload_enabled):
            return None
        try:
            return SignedUploadRelay.from_env(self.config.upload_folder, self.config.upload_timeout_s)
        except UploadFailedError as e:
            logger.warning(f"Upload disabled: {e}")
            return None

    async def run_pipeline(self, mode: RecordingMode = RecordingMode.AUTOMATIC,
                           manual_duration_s: Optional[float] = None,
                           upload: bool = True) -> RecordingState:
        """Record, validate, save and optionally upload one postcard video."""
        logger.info(f"Starting postcard recording ({mode.value})")

        inputs = await load_composition_inputs(
            self.config.overlay_image,
            self.config.frame_art_image,
            self.config.background_video,
            greeting_text=self.config.greeting,
            canvas_size=self.config.canvas_size,
            background_max_frames=self.config.background_max_frames,
        )
        canvas = Canvas(self.config.canvas_size)

        orchestrator = RecordingOrchestrator(
            self.config,
            self.composer,
            self.backends,
            upload_relay=self._upload_relay(upload),
        )
        async with orchestrator:
            handle = await orchestrator.start(inputs, canvas, mode)
            if mode is RecordingMode.MANUAL:
                if manual_duration_s is None:
                    loop = asyncio.get_running_loop()
                    await loop.run_in_executor(None, input, "Recording... press Enter to stop ")
                else:
                    await asyncio.sleep(manual_duration_s)
                state = await orchestrator.stop()
            else:
                state = await handle.wait()

        self.final_state = state
        if isinstance(state, Succeeded):
            timestamp = int(time.time())
            self.saved_path = state.artifact.save(
                self.config.output_dir / f"festive-postcard-{timestamp}.{state.artifact.container}"
            )
            logger.info(f"Saved {state.artifact.size_mb:.2f}MB video: {self.saved_path}")
            for warning in state.warnings:
                logger.warning(warning)
            if state.upload is not None:
                logger.info(f"Shareable link: {state.upload.secure_url}")
            elif state.upload_error:
                logger.warning(f"Upload failed, video is available locally: {state.upload_error}")
        elif isinstance(state, Failed):
            logger.error(f"Recording failed ({state.cause.value}): {state.message}")
        return state

    def generate_report(self) -> Path:
        """Write a JSON report describing the last recording."""
        state = self.final_state
        report: Dict[str, Any] = {
            "config": self.config.to_dict(),
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
            "status": state.status.value if state else "not_run",
        }
        session = getattr(state, "session", None)
        if session is not None:
            report["session"] = {
                "id": session.session_id,
                "backend": session.backend_kind.value,
                "mode": session.mode.value,
                "fps": session.target_fps,
                "frames": session.frames_emitted,
                "elapsed_ms": round(session.elapsed_ms),
                "fallback_attempt": session.fallback_attempt,
            }
        if isinstance(state, Succeeded):
            report["artifact"] = {
                "path": str(self.saved_path),
                "mime_type": state.artifact.mime_type,
                "size_bytes": state.artifact.size_bytes,
                "warnings": list(state.warnings),
                "url": state.upload.secure_url if state.upload else None,
                "upload_error": state.upload_error,
            }
        elif isinstance(state, Failed):
            report["failure"] = {"cause": state.cause.value, "message": state.message}

        report_file = self.config.output_dir / "recording_report.json"
        with open(report_file, 'w') as f:
            json.dump(report, f, indent=2)

        logger.info(f"Report saved: {report_file}")
        return report_file


def main():
    """Main entry point for the festive postcard video recorder."""
    parser = argparse.ArgumentParser(
        description="Festive Postcard Video - Record a shareable animated postcard"
    )
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to configuration file (default: config.yaml)")
    parser.add_argument("--overlay", type=str, help="Postcard image path or URL")
    parser.add_argument("--frame-art", type=str, help="Decorative frame image")
    parser.add_argument("--background", type=str, help="Looping background video")
    parser.add_argument("--greeting", type=str, help="Greeting text (max 75 characters)")
    parser.add_argument("--mode", choices=[m.value for m in RecordingMode], default="auto",
                        help="auto: fixed 10 s recording, manual: stop when ready")
    parser.add_argument("--manual-duration", type=str,
                        help="Stop a manual recording after this long (e.g. 5, 0:05, 5s)")
    parser.add_argument("--output", type=str, help="Output directory")
    parser.add_argument("--profile", type=str, help="Compatibility profile name")
    parser.add_argument("--no-upload", action="store_true", help="Skip the upload step")
    parser.add_argument("--validate-only", action="store_true",
                        help="Only validate inputs without recording")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        manual_duration = (parse_smart_timestamp(args.manual_duration)
                           if args.manual_duration else None)
        app = PostcardVideoApp(args.config, {
            "overlay_image": args.overlay,
            "frame_art_image": args.frame_art,
            "background_video": args.background,
            "greeting": args.greeting,
            "output_dir": args.output,
            "profile": args.profile,
        })

        if not app.validate_inputs():
            sys.exit(1)

        if args.validate_only:
            logger.info("Input validation completed successfully")
            return

        state = asyncio.run(app.run_pipeline(RecordingMode(args.mode), manual_duration,
                                             upload=not args.no_upload))
        app.generate_report()

        if not isinstance(state, Succeeded):
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Recording interrupted by user")
        sys.exit(1)
    except (RecordingError, ValueError) as e:
        logger.error(f"Fatal error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
