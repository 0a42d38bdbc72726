"""Video migration step.

For each item: fetch CMS metadata and sources, download the last source
rendition, then write the metadata document next to it. The metadata
document is written last, so its presence means the item is complete and
a rerun skips it.
"""

from __future__ import annotations

from typing import Any

import structlog

from conveyor.contracts import Credential, Outcome, RemoteNotFoundError, WorkItem
from conveyor.plugins.processors.base import BaseProcessor, write_json_atomic

logger = structlog.get_logger(__name__)

DEFAULT_CONTAINER = "mp4"


def select_source(sources: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the rendition to migrate: the last source listed by the CMS."""
    if not sources:
        return None
    source = sources[-1]
    if not source.get("src"):
        return None
    return source


class VideoProcessor(BaseProcessor):
    """Download a video payload and its metadata document."""

    name = "video"
    writes_ledger = True

    def process(self, item: WorkItem, credential: Credential) -> Outcome:
        out_dir = self.output_dir(item)
        metadata_path = self.metadata_path(item)
        if self.already_exists(metadata_path):
            return Outcome.skipped(item, "metadata already exists", {"outputDir": str(out_dir)})

        out_dir.mkdir(parents=True, exist_ok=True)

        metadata = self._client.get_video(item.external_id, credential)
        source = select_source(self._client.get_sources(item.external_id, credential))
        if source is None:
            raise RemoteNotFoundError(f"No video source found for {item.external_id}")

        container = str(source.get("container") or DEFAULT_CONTAINER).lower()
        file_name = f"{item.external_id}.{container}"
        video_path = out_dir / file_name

        video_skipped = self.already_exists(video_path)
        if not video_skipped:
            self._client.download(source["src"], video_path)

        metadata_skipped = self.already_exists(metadata_path)
        if not metadata_skipped:
            write_json_atomic(metadata_path, {**metadata, "container": container})

        logger.debug("video_migrated", external_id=item.external_id, path=str(video_path), skipped=video_skipped)
        return Outcome.success(
            item,
            {
                "fileName": file_name,
                "outputDir": str(out_dir),
                "container": container,
                "videoSkipped": video_skipped,
                "metadataSkipped": metadata_skipped,
            },
        )
