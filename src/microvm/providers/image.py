"""Artifact resolution for container image references."""

import logging
import re
from pathlib import Path
from typing import Optional, Set

from microvm.exceptions import ResourceResolutionError
from microvm.providers.base import ArtifactResolver


logger = logging.getLogger(__name__)

# [registry[:port]/]name[/name...][:tag][@algo:digest]
IMAGE_REF_RE = re.compile(
    r"^(?:(?P<registry>[a-zA-Z0-9.-]+(?::[0-9]+)?)/)?"
    r"(?P<name>[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*)"
    r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
    r"(?:@(?P<digest>[a-z0-9]+:[a-fA-F0-9]{32,}))?$"
)


def cache_key(image: str) -> str:
    """Filesystem-safe directory name for an image reference."""
    return re.sub(r"[^0-9A-Za-z._-]", "_", image)


class ImageCacheResolver(ArtifactResolver):
    """Maps image references onto an on-disk image cache.

    Pulling and unpacking images is done elsewhere; this resolver only
    checks that a reference is well formed and returns where its
    contents live.  References listed in ``unavailable`` fail to
    resolve, which stands in for a registry that cannot serve them.
    """

    def __init__(self, cache_dir: Path, unavailable: Optional[Set[str]] = None):
        """Initialize resolver."""
        self.cache_dir = Path(cache_dir)
        self.unavailable: Set[str] = set(unavailable or ())

    async def resolve(self, image: str, filename: str = "") -> Path:
        """Resolve an image, or a file within it, to a local path."""
        if not IMAGE_REF_RE.match(image):
            raise ResourceResolutionError(f"Invalid image reference: {image!r}")
        if image in self.unavailable:
            raise ResourceResolutionError(f"Image {image} could not be fetched")

        path = self.cache_dir / cache_key(image)
        if filename:
            path = path / filename.lstrip("/")
        logger.debug(f"Resolved {image} {filename or '(default artifact)'} to {path}")
        return path
