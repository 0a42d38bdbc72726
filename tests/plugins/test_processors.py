"""Tests for the video, poster and thumbnail processors."""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest
import respx

from conveyor.contracts import Credential, ItemProcessor, OutcomeKind, RemoteNotFoundError, WorkItem
from conveyor.core.config import BrightcoveSettings, OutputSettings
from conveyor.plugins.clients.brightcove import BrightcoveClient
from conveyor.plugins.processors.base import extension_from_url, image_url, write_json_atomic
from conveyor.plugins.processors.images import PosterProcessor, ThumbnailProcessor
from conveyor.plugins.processors.video import VideoProcessor, select_source

CMS = "https://cms.example.com/v1/accounts/1234"
CREDENTIAL = Credential(token="abc123", issued_at=datetime(2024, 1, 1, tzinfo=UTC), generation=1)
ITEM = WorkItem(external_id="42", target_key="webroot_a", fields={"bc_id": "42"})

METADATA = {
    "id": "42",
    "name": "Intro",
    "images": {
        "poster": {"src": "https://cdn.example.com/img/poster.png?v=2"},
        "thumbnail": {"sources": [{"src": "https://cdn.example.com/img/thumb"}]},
    },
}


@pytest.fixture
def client(brightcove_settings: BrightcoveSettings):
    with BrightcoveClient(brightcove_settings) as c:
        yield c


def _out_dir(output: OutputSettings) -> Path:
    return output.base_path / "webroot_a" / "assets" / "video"


def _mock_video_api(sources: list[dict]) -> None:
    respx.get(f"{CMS}/videos/42").mock(return_value=httpx.Response(200, json=METADATA))
    respx.get(f"{CMS}/videos/42/sources").mock(return_value=httpx.Response(200, json=sources))


class TestHelpers:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://cdn.example.com/a.PNG", "png"),
            ("https://cdn.example.com/a.jpeg?x=1", "jpeg"),
            ("https://cdn.example.com/a.webp", "webp"),
            ("https://cdn.example.com/a", "jpg"),
            ("https://cdn.example.com/a.bmp", "jpg"),
        ],
    )
    def test_extension_from_url(self, url: str, expected: str) -> None:
        assert extension_from_url(url) == expected

    def test_image_url_prefers_src(self) -> None:
        assert image_url(METADATA, "poster") == "https://cdn.example.com/img/poster.png?v=2"

    def test_image_url_falls_back_to_first_source(self) -> None:
        assert image_url(METADATA, "thumbnail") == "https://cdn.example.com/img/thumb"

    def test_image_url_missing(self) -> None:
        assert image_url({"images": {}}, "poster") is None
        assert image_url({}, "thumbnail") is None

    def test_select_source_takes_last(self) -> None:
        assert select_source([{"src": "a"}, {"src": "b"}]) == {"src": "b"}
        assert select_source([]) is None

    def test_write_json_atomic_publishes_readable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "42.json"

        write_json_atomic(path, {"id": "42"})

        assert json.loads(path.read_text()) == {"id": "42"}
        assert path.stat().st_mode & 0o777 == 0o644
        assert list(tmp_path.glob("*.part")) == []

    def test_concurrent_json_writes_to_same_path(self, tmp_path: Path) -> None:
        path = tmp_path / "42.json"

        def write(n: int) -> None:
            write_json_atomic(path, {"id": "42", "writer": n})

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(write, range(200)))

        assert json.loads(path.read_text())["id"] == "42"
        assert list(tmp_path.glob("*.part")) == []


class TestVideoProcessor:
    """Test the video step."""

    def test_satisfies_protocol(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        assert isinstance(VideoProcessor(client, output_settings), ItemProcessor)

    @respx.mock
    def test_downloads_video_and_writes_metadata(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        _mock_video_api([{"src": "https://cdn.example.com/low.mp4"}, {"src": "https://cdn.example.com/high.mp4", "container": "MP4"}])
        respx.get("https://cdn.example.com/high.mp4").mock(return_value=httpx.Response(200, content=b"video"))

        outcome = VideoProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        out_dir = _out_dir(output_settings)
        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.details == {
            "fileName": "42.mp4",
            "outputDir": str(out_dir),
            "container": "mp4",
            "videoSkipped": False,
            "metadataSkipped": False,
        }
        assert (out_dir / "42.mp4").read_bytes() == b"video"
        saved = json.loads((out_dir / "42.json").read_text())
        assert saved["name"] == "Intro"
        assert saved["container"] == "mp4"

    @respx.mock
    def test_container_defaults_to_mp4(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        _mock_video_api([{"src": "https://cdn.example.com/v"}])
        respx.get("https://cdn.example.com/v").mock(return_value=httpx.Response(200, content=b"v"))

        outcome = VideoProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.details["fileName"] == "42.mp4"

    def test_existing_metadata_is_skipped_without_remote_calls(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        out_dir = _out_dir(output_settings)
        out_dir.mkdir(parents=True)
        (out_dir / "42.json").write_text("{}")

        with respx.mock(assert_all_called=False) as mock:
            outcome = VideoProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SKIPPED
        assert outcome.reason == "metadata already exists"
        assert mock.calls.call_count == 0

    @respx.mock
    def test_existing_video_is_not_downloaded_again(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        out_dir = _out_dir(output_settings)
        out_dir.mkdir(parents=True)
        (out_dir / "42.mp4").write_bytes(b"partial run")
        _mock_video_api([{"src": "https://cdn.example.com/high.mp4", "container": "MP4"}])

        outcome = VideoProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.details["videoSkipped"] is True
        assert (out_dir / "42.mp4").read_bytes() == b"partial run"
        assert (out_dir / "42.json").exists()

    @respx.mock
    def test_no_sources_raises_not_found(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        _mock_video_api([])

        with pytest.raises(RemoteNotFoundError, match="No video source"):
            VideoProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert not (_out_dir(output_settings) / "42.json").exists()


class TestImageProcessors:
    """Test the poster and thumbnail steps."""

    def _write_metadata(self, output: OutputSettings, metadata: dict) -> Path:
        out_dir = _out_dir(output)
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "42.json").write_text(json.dumps(metadata))
        return out_dir

    def test_do_not_require_credentials(self) -> None:
        assert not PosterProcessor.requires_credential
        assert not ThumbnailProcessor.requires_credential
        assert VideoProcessor.requires_credential

    def test_missing_metadata_is_skipped(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        outcome = PosterProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SKIPPED
        assert outcome.reason == "metadata not found"

    @respx.mock
    def test_poster_downloads_poster_and_thumbnail(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        out_dir = self._write_metadata(output_settings, METADATA)
        respx.get("https://cdn.example.com/img/poster.png?v=2").mock(return_value=httpx.Response(200, content=b"P"))
        respx.get("https://cdn.example.com/img/thumb").mock(return_value=httpx.Response(200, content=b"T"))

        outcome = PosterProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SUCCESS
        assert (out_dir / "42_poster.png").read_bytes() == b"P"
        assert (out_dir / "42_thumbnail.jpg").read_bytes() == b"T"
        assert outcome.details["posterSkipped"] is False

    @respx.mock
    def test_thumbnail_only(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        out_dir = self._write_metadata(output_settings, METADATA)
        respx.get("https://cdn.example.com/img/thumb").mock(return_value=httpx.Response(200, content=b"T"))

        outcome = ThumbnailProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SUCCESS
        assert (out_dir / "42_thumbnail.jpg").exists()
        assert not (out_dir / "42_poster.png").exists()

    def test_existing_images_are_skipped(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        out_dir = self._write_metadata(output_settings, METADATA)
        (out_dir / "42_poster.png").write_bytes(b"P")
        (out_dir / "42_thumbnail.jpg").write_bytes(b"T")

        outcome = PosterProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SKIPPED
        assert outcome.reason == "images already exist"

    def test_metadata_without_images_is_skipped(self, client: BrightcoveClient, output_settings: OutputSettings) -> None:
        self._write_metadata(output_settings, {"id": "42"})

        outcome = PosterProcessor(client, output_settings).process(ITEM, CREDENTIAL)

        assert outcome.kind is OutcomeKind.SKIPPED
        assert outcome.reason == "no poster or thumbnail URL in metadata"
