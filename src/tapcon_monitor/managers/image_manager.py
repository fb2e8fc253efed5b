"""Image table and image provenance proofs."""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set

from tapcon_monitor.metadata.api import MetadataAPI
from tapcon_monitor.models.images import (
    ImageMetadata,
    image_ids,
    load_image_metadata,
    load_repository_index,
)
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.audit_logger import AuditEventType, get_audit_logger
from tapcon_monitor.utils.exceptions import ImageLoadError, MetadataAPIError
from tapcon_monitor.utils.ids import truncate_id
from tapcon_monitor.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


class TrackedImage:
    """An image listed in the repository index."""

    def __init__(self, image_id: str) -> None:
        self.image_id = image_id
        self.metadata: Optional[ImageMetadata] = None
        self.proven = False

    @property
    def tapcon_id(self) -> str:
        return truncate_id(self.image_id)

    @property
    def needs_proof(self) -> bool:
        """Loaded, built from a known source repository, and not proven yet."""
        return self.metadata is not None and bool(self.metadata.source.repo) and not self.proven

    def fact(self) -> str:
        source = self.metadata.source if self.metadata else None
        repo = source.repo if source else ""
        revision = source.revision if source else ""
        return f'imageFact("{self.tapcon_id}", "{repo}", "{revision}", "", "")'

    def summary(self) -> dict:
        return {
            "id": self.tapcon_id,
            "loaded": self.metadata is not None,
            "source_repo": self.metadata.source.repo if self.metadata else None,
            "proven": self.proven,
        }


class ImageTracker:
    """
    Mirrors the image repository index and posts image provenance facts.

    Images whose proof fails to post are retried on the next scan.
    """

    def __init__(self, api: MetadataAPI, repo_file: Path, content_root: Path) -> None:
        """
        Initialize the tracker.

        Args:
            api: Metadata service capability
            repo_file: Repository index file
            content_root: Content-addressed image metadata store
        """
        self.api = api
        self.repo_file = repo_file
        self.content_root = content_root
        self.images: Dict[str, TrackedImage] = {}
        self._lock = asyncio.Lock()
        self._scan_lock = asyncio.Lock()
        self.audit_logger = get_audit_logger()
        self.metrics = get_metrics_collector()

    async def scan(self) -> None:
        """Reload the repository index, load new images and post missing proofs."""
        async with self._scan_lock:
            try:
                repositories = load_repository_index(self.repo_file)
            except ImageLoadError as e:
                logger.error("Failed to load image repositories", extra={"error": str(e)})
                return

            ids = image_ids(repositories)
            async with self._lock:
                current = {image_id: self.images[image_id] for image_id in ids if image_id in self.images}
                for image_id in ids:
                    image = current.get(image_id) or TrackedImage(image_id)
                    if image.metadata is None:
                        try:
                            image.metadata = load_image_metadata(self.content_root, image_id)
                        except ImageLoadError as e:
                            logger.warning(
                                "Failed to load image",
                                extra={"image_id": image_id, "error": str(e)},
                            )
                            continue
                    current[image_id] = image
                self.images = current
                to_prove = [image for image in current.values() if image.needs_proof]
                self.metrics.set_tracked_images(len(current))

            for image in to_prove:
                await self._post_proof(image)

    async def _post_proof(self, image: TrackedImage) -> None:
        try:
            await self.api.post_proof(image.tapcon_id, [image.fact()])
        except MetadataAPIError as e:
            logger.error(
                "Failed to post image proof",
                extra={"image_id": image.tapcon_id, "error": str(e)},
            )
            return
        image.proven = True
        self.audit_logger.log_event(
            AuditEventType.IMAGE_PROOF,
            principal=image.tapcon_id,
            details={"fact": image.fact()},
        )

    async def known_principals(self) -> Set[str]:
        """Principal identifiers of every tracked image."""
        async with self._lock:
            return {image.tapcon_id for image in self.images.values()}

    async def summaries(self) -> List[dict]:
        async with self._lock:
            return [image.summary() for image in self.images.values()]
