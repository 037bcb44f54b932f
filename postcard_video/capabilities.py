"""
Runtime capability detection used to order the recording backends.
"""

import logging
import sys
from dataclasses import dataclass

from .backends.library_encoder import LibraryEncoder
from .config import Config

logger = logging.getLogger(__name__)

MOBILE_PLATFORMS = ("android", "ios")


@dataclass(frozen=True)
class PlatformCapabilities:
    is_mobile: bool
    supports_library_encoder: bool


class CapabilityProbe:
    """Inspects the environment once per start request."""

    def __init__(self, config: Config):
        self.config = config

    def probe(self) -> PlatformCapabilities:
        is_mobile = self.config.force_mobile or sys.platform in MOBILE_PLATFORMS
        capabilities = PlatformCapabilities(
            is_mobile=is_mobile,
            supports_library_encoder=LibraryEncoder.is_available(),
        )
        logger.debug(f"Platform capabilities: {capabilities}")
        return capabilities
