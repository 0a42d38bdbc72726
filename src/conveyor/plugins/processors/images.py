"""Poster and thumbnail steps.

Both read the metadata document left by the video step and download the
referenced images beside it. Image URLs are public CDN links, so these
steps need no credential.
"""

from __future__ import annotations

import json
from typing import ClassVar

import structlog

from conveyor.contracts import Credential, Outcome, WorkItem
from conveyor.plugins.processors.base import BaseProcessor, extension_from_url, image_url

logger = structlog.get_logger(__name__)


class ImageProcessor(BaseProcessor):
    """Download ``<id>_<kind>.<ext>`` for each image kind in ``kinds``."""

    kinds: ClassVar[tuple[str, ...]] = ()
    requires_credential = False

    def process(self, item: WorkItem, credential: Credential) -> Outcome:
        metadata_path = self.metadata_path(item)
        if not metadata_path.exists():
            return Outcome.skipped(item, "metadata not found")

        with open(metadata_path, encoding="utf-8") as f:
            metadata = json.load(f)

        details: dict[str, object] = {}
        found = 0
        downloaded = 0
        for kind in self.kinds:
            url = image_url(metadata, kind)
            if url is None:
                continue
            found += 1
            path = self.output_dir(item) / f"{item.external_id}_{kind}.{extension_from_url(url)}"
            skipped = self.already_exists(path)
            if not skipped:
                self._client.download(url, path)
                downloaded += 1
            details[f"{kind}Path"] = str(path)
            details[f"{kind}Skipped"] = skipped

        if found == 0:
            return Outcome.skipped(item, f"no {' or '.join(self.kinds)} URL in metadata")
        if downloaded == 0:
            return Outcome.skipped(item, "images already exist", details)
        logger.debug("images_migrated", external_id=item.external_id, downloaded=downloaded)
        return Outcome.success(item, details)


class PosterProcessor(ImageProcessor):
    """Poster step: downloads both the poster and the thumbnail."""

    name = "poster"
    kinds = ("poster", "thumbnail")


class ThumbnailProcessor(ImageProcessor):
    name = "thumbnail"
    kinds = ("thumbnail",)
