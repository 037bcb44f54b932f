"""
Compatibility checks for encoded postcards against sharing-target limits.

Validation is a pure function of the artifact and the profile: the same
input always yields the same verdict.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import CompatibilityVerdict, EncodedArtifact, VerdictReason

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


@dataclass(frozen=True)
class CompatibilityProfile:
    """Hard and soft limits a sharing target imposes on video files."""

    name: str
    max_size_bytes: int
    min_size_bytes: int
    warn_size_bytes: Optional[int] = None
    required_container: Optional[str] = "mp4"
    max_duration_ms: Optional[int] = None

    # Re-encode target
    target_width: int = 512
    target_height: int = 512
    target_fps: int = 15
    target_bitrate: int = 200000


MESSAGING_PLATFORM_SHARE = CompatibilityProfile(
    name="messaging-platform-share",
    max_size_bytes=16 * MIB,
    min_size_bytes=1000,
    warn_size_bytes=8 * MIB,
    required_container="mp4",
    max_duration_ms=60000,
)

LOCAL_DOWNLOAD = CompatibilityProfile(
    name="local-download",
    max_size_bytes=100 * MIB,
    min_size_bytes=1000,
    required_container=None,
)

PROFILES: Dict[str, CompatibilityProfile] = {
    profile.name: profile for profile in (MESSAGING_PLATFORM_SHARE, LOCAL_DOWNLOAD)
}


def get_profile(name: str) -> CompatibilityProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown compatibility profile '{name}'. "
                         f"Available: {', '.join(sorted(PROFILES))}") from None


class CompatibilityValidator:
    """Decides whether an artifact is acceptable for a profile."""

    def __init__(self, profile: CompatibilityProfile = MESSAGING_PLATFORM_SHARE):
        self.profile = profile

    def validate(self, artifact: EncodedArtifact,
                 profile: Optional[CompatibilityProfile] = None) -> CompatibilityVerdict:
        """
        Check size, container and duration limits.

        Args:
            artifact: Encoded video to check
            profile: Overrides the validator's default profile

        Returns:
            CompatibilityVerdict with the first failing reason, or ok with warnings
        """
        profile = profile or self.profile
        size = artifact.size_bytes

        if size > profile.max_size_bytes:
            return self._reject(VerdictReason.TOO_LARGE, artifact, profile)

        if profile.required_container and artifact.container != profile.required_container:
            return self._reject(VerdictReason.WRONG_FORMAT, artifact, profile)

        if size < profile.min_size_bytes:
            return self._reject(VerdictReason.SUSPECTED_CORRUPT, artifact, profile)

        if (profile.max_duration_ms is not None and artifact.duration_ms is not None
                and artifact.duration_ms > profile.max_duration_ms):
            return self._reject(VerdictReason.TOO_LONG, artifact, profile)

        warnings: List[str] = []
        if profile.warn_size_bytes is not None and size > profile.warn_size_bytes:
            warnings.append(
                f"File is {artifact.size_mb:.1f}MB, large for {profile.name} "
                f"(over {profile.warn_size_bytes / MIB:.0f}MB)"
            )
        for warning in warnings:
            logger.warning(warning)

        return CompatibilityVerdict(ok=True, warnings=tuple(warnings))

    def needs_reencode(self, artifact: EncodedArtifact,
                       profile: Optional[CompatibilityProfile] = None) -> bool:
        """True when the artifact passes but is heavier than the profile would like."""
        profile = profile or self.profile
        return profile.warn_size_bytes is not None and artifact.size_bytes > profile.warn_size_bytes

    @staticmethod
    def _reject(reason: VerdictReason, artifact: EncodedArtifact,
                profile: CompatibilityProfile) -> CompatibilityVerdict:
        logger.info(f"Artifact rejected for {profile.name}: {reason.value} "
                    f"({artifact.size_bytes} bytes, {artifact.mime_type})")
        return CompatibilityVerdict(ok=False, reason=reason)
