"""Base class and shared helpers for item processors.

Output layout for every processor:

    <output.base_path>/<item.target_key>/<output.suffix>/<external_id>.<ext>

The metadata document ``<external_id>.json`` written by the video step is
the marker that an item finished; the image steps read it back.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlparse

from conveyor.contracts import Credential, Outcome, WorkItem
from conveyor.plugins.clients.brightcove import PUBLISHED_FILE_MODE, BrightcoveClient

if TYPE_CHECKING:
    from conveyor.core.config import OutputSettings

_IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
DEFAULT_IMAGE_EXTENSION = "jpg"


def extension_from_url(url: str) -> str:
    """File extension of an image URL, defaulting to jpg."""
    try:
        path = urlparse(url).path
    except ValueError:
        return DEFAULT_IMAGE_EXTENSION
    match = _IMAGE_EXTENSION.search(path)
    return match.group(1).lower() if match else DEFAULT_IMAGE_EXTENSION


def image_url(metadata: dict[str, Any], kind: str) -> str | None:
    """URL of the poster or thumbnail image in a CMS metadata document.

    Prefers ``images.<kind>.src`` and falls back to the first rendition in
    ``images.<kind>.sources``.
    """
    images = metadata.get("images") or {}
    image = images.get(kind) or {}
    if image.get("src"):
        return str(image["src"])
    sources = image.get("sources") or []
    if sources and sources[0].get("src"):
        return str(sources[0]["src"])
    return None


def write_json_atomic(path: Path, document: dict[str, Any]) -> None:
    """Write a JSON document so readers never observe a partial file."""
    f = tempfile.NamedTemporaryFile(  # noqa: SIM115 - renamed into place, not deleted
        mode="w", encoding="utf-8", dir=path.parent, prefix=f"{path.name}.", suffix=".part", delete=False
    )
    partial = Path(f.name)
    try:
        with f:
            json.dump(document, f, indent=2)
        os.chmod(partial, PUBLISHED_FILE_MODE)
        os.replace(partial, path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise


class BaseProcessor(ABC):
    """Base class for item processors.

    Subclasses set ``name`` (the pipeline step they implement) and
    implement process(). Class attributes tell the CLI how to wire them:

        requires_credential: Remote calls need an OAuth token
        writes_ledger: SUCCESS outcomes are recorded in the ledger
    """

    name: ClassVar[str]
    requires_credential: ClassVar[bool] = True
    writes_ledger: ClassVar[bool] = False

    def __init__(self, client: BrightcoveClient, output: OutputSettings) -> None:
        self._client = client
        self._output = output

    def output_dir(self, item: WorkItem) -> Path:
        return self._output.base_path / item.target_key / self._output.suffix

    def metadata_path(self, item: WorkItem) -> Path:
        return self.output_dir(item) / f"{item.external_id}.json"

    def already_exists(self, path: Path) -> bool:
        return self._output.skip_existing and path.exists()

    @abstractmethod
    def process(self, item: WorkItem, credential: Credential) -> Outcome:
        """Process one item with the given credential snapshot."""
