"""Unit tests for DownloadService."""

import hashlib

import httpx
import pytest

from ddiclient.errors import HashMismatchError, SizeMismatchError, TransportError
from ddiclient.models.deployment import Artifact, Chunk
from ddiclient.services.download import DownloadService
from ddiclient.services.transport import DDITransport

SECURE_URL = "https://cdn.test/firmware.bin"
PLAIN_URL = "http://cdn.test/firmware.bin"


def _artifact(content: bytes, size=None, sha256=None, plain_link=True) -> Artifact:
    links = {"download": {"href": SECURE_URL}}
    if plain_link:
        links["download-http"] = {"href": PLAIN_URL}
    return Artifact.model_validate({
        "filename": "firmware.bin",
        "size": len(content) if size is None else size,
        "hashes": {
            "sha256": sha256 or hashlib.sha256(content).hexdigest(),
            "md5": hashlib.md5(content).hexdigest(),
        },
        "_links": links,
    })


class _Server:
    """httpx handler serving scripted responses per URL."""

    def __init__(self, responses):
        self.responses = {url: list(items) for url, items in responses.items()}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        queue = self.responses[url]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item)
        return httpx.Response(200, content=item)


@pytest.mark.unit
class TestDownloadService:
    """Test DownloadService against a mock HTTP transport."""

    @pytest.fixture
    def make_service(self, config):
        def _make(server: _Server, cfg=None) -> DownloadService:
            cfg = cfg or config
            transport = DDITransport(cfg, transport=httpx.MockTransport(server))
            return DownloadService(transport, cfg)

        return _make

    @pytest.mark.asyncio
    async def test_download_success(self, make_service, tmp_path):
        # Arrange
        content = b"firmware" * 50_000
        server = _Server({SECURE_URL: [content]})
        service = make_service(server)
        progress = []
        chunk = Chunk(part="os", name="rootfs", version="1.0")

        # Act
        result = await service.fetch_artifact(
            _artifact(content), tmp_path, chunk=chunk, on_progress=lambda r, t: progress.append(r)
        )

        # Assert
        assert result.path == tmp_path / "firmware.bin"
        assert result.path.read_bytes() == content
        assert result.hashes["sha256"] == hashlib.sha256(content).hexdigest()
        assert result.part == "os"
        assert result.chunk_name == "rootfs"
        assert progress[-1] == len(content)
        assert not (tmp_path / "firmware.bin.part").exists()
        assert server.requests == [SECURE_URL]

    @pytest.mark.asyncio
    async def test_zero_byte_artifact(self, make_service, tmp_path):
        server = _Server({SECURE_URL: [b""]})

        result = await make_service(server).fetch_artifact(_artifact(b""), tmp_path)

        assert result.path.read_bytes() == b""

    @pytest.mark.asyncio
    async def test_hash_mismatch_leaves_no_file(self, make_service, make_config, tmp_path):
        # Arrange
        content = b"genuine content"
        server = _Server({SECURE_URL: [content]})
        service = make_service(server, make_config(allow_location_fallback=False))

        # Act & Assert
        with pytest.raises(HashMismatchError) as exc_info:
            await service.fetch_artifact(_artifact(content, sha256="0" * 64), tmp_path)

        assert exc_info.value.filename == "firmware.bin"
        assert list(tmp_path.iterdir()) == []
        # Integrity errors are not retried on the same location
        assert server.requests == [SECURE_URL]

    @pytest.mark.asyncio
    async def test_short_body_is_size_mismatch(self, make_service, make_config, tmp_path):
        content = b"0123456789"
        server = _Server({SECURE_URL: [content[:4]]})
        service = make_service(server, make_config(allow_location_fallback=False))

        with pytest.raises(SizeMismatchError) as exc_info:
            await service.fetch_artifact(_artifact(content), tmp_path)

        assert exc_info.value.expected == 10
        assert exc_info.value.actual == 4
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_oversized_body_is_size_mismatch(self, make_service, make_config, tmp_path):
        content = b"0123456789"
        server = _Server({SECURE_URL: [content + b"extra"]})
        service = make_service(server, make_config(allow_location_fallback=False))

        with pytest.raises(SizeMismatchError):
            await service.fetch_artifact(_artifact(content), tmp_path)

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, make_service, tmp_path):
        # Arrange
        content = b"payload"
        server = _Server({
            SECURE_URL: [
                httpx.ConnectError("refused"),
                503,
                content,
            ]
        })

        # Act
        result = await make_service(server).fetch_artifact(_artifact(content), tmp_path)

        # Assert
        assert result.path.read_bytes() == content
        assert server.requests == [SECURE_URL] * 3

    @pytest.mark.asyncio
    async def test_falls_back_once_on_integrity_error(self, make_service, tmp_path):
        # Arrange
        content = b"payload bytes"
        corrupted = b"X" + content[1:]
        server = _Server({SECURE_URL: [corrupted], PLAIN_URL: [content]})

        # Act
        result = await make_service(server).fetch_artifact(_artifact(content), tmp_path)

        # Assert
        assert result.path.read_bytes() == content
        assert server.requests == [SECURE_URL, PLAIN_URL]

    @pytest.mark.asyncio
    async def test_fails_when_both_locations_are_bad(self, make_service, tmp_path):
        content = b"payload bytes"
        corrupted = b"X" + content[1:]
        server = _Server({SECURE_URL: [corrupted], PLAIN_URL: [corrupted]})

        with pytest.raises(HashMismatchError):
            await make_service(server).fetch_artifact(_artifact(content), tmp_path)

        assert server.requests == [SECURE_URL, PLAIN_URL]
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_falls_back_after_exhausted_transport_retries(self, make_service, make_config, tmp_path):
        content = b"payload"
        server = _Server({SECURE_URL: [500], PLAIN_URL: [content]})
        service = make_service(server, make_config(download_max_attempts=2))

        result = await service.fetch_artifact(_artifact(content), tmp_path)

        assert result.path.read_bytes() == content
        assert server.requests == [SECURE_URL, SECURE_URL, PLAIN_URL]

    @pytest.mark.asyncio
    async def test_transport_error_without_alternate(self, make_service, make_config, tmp_path):
        server = _Server({SECURE_URL: [500]})
        service = make_service(server, make_config(download_max_attempts=2))

        with pytest.raises(TransportError):
            await service.fetch_artifact(_artifact(b"payload", plain_link=False), tmp_path)

        assert server.requests == [SECURE_URL, SECURE_URL]

    @pytest.mark.asyncio
    async def test_preferred_scheme_http(self, make_service, make_config, tmp_path):
        content = b"payload"
        server = _Server({SECURE_URL: [content], PLAIN_URL: [content]})
        service = make_service(server, make_config(preferred_scheme="http"))

        await service.fetch_artifact(_artifact(content), tmp_path)

        assert server.requests == [PLAIN_URL]
