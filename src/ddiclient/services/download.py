"""Artifact download service with streaming hash verification."""

from pathlib import Path
from typing import Callable, Optional
import logging

import aiofiles

from ddiclient.config import ClientConfig
from ddiclient.errors import IntegrityError, SizeMismatchError, TransportError
from ddiclient.models.deployment import Artifact, Chunk, DownloadedArtifact
from ddiclient.services.transport import DDITransport
from ddiclient.utils.verification import HashVerifier

ProgressCallback = Callable[[int, int], None]


class DownloadService:
    """Streams artifacts to disk while hashing and counting bytes.

    Bytes go to ``<filename>.part`` and are renamed only after size and hash
    checks pass; the partial file is removed on every failure path.
    """

    def __init__(self, transport: DDITransport, config: ClientConfig):
        """Initialize download service.

        Args:
            transport: DDI transport used for streaming GETs
            config: Client configuration (hash set, retry policy, locations)
        """
        self.logger = logging.getLogger("ddiclient.download")
        self.transport = transport
        self.algorithms = config.hash_algorithms
        self.policy = config.download_policy()
        self.preferred_scheme = config.preferred_scheme
        self.allow_location_fallback = config.allow_location_fallback
        self.chunk_size = 64 * 1024  # 64KB chunks for progress granularity

    async def fetch_artifact(
        self,
        artifact: Artifact,
        target_dir: Path,
        chunk: Optional[Chunk] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DownloadedArtifact:
        """Download and verify one artifact.

        Transport errors are retried with backoff on the same location.
        Integrity errors are not. When a second location is offered, one
        fallback onto it is made before giving up.

        Args:
            artifact: Artifact description from the deployment descriptor
            target_dir: Directory to write the artifact into
            chunk: Owning chunk (recorded on the result)
            on_progress: Called with (bytes received, expected size)

        Returns:
            DownloadedArtifact pointing at the verified file

        Raises:
            IntegrityError: Size or hash mismatch on the last location tried
            TransportError: Retries exhausted on the last location tried
        """
        locations = artifact.download_locations(self.preferred_scheme)
        if not self.allow_location_fallback:
            locations = locations[:1]

        target_dir.mkdir(parents=True, exist_ok=True)
        target_path = target_dir / artifact.filename
        self.logger.info(
            f"Starting download: {artifact.filename}, size={artifact.size} bytes, "
            f"locations={len(locations)}"
        )

        last_error: Optional[Exception] = None
        for index, url in enumerate(locations):
            if index > 0:
                self.logger.warning(
                    f"Falling back to alternate location for {artifact.filename}: {url}"
                )

            async def attempt(url: str = url) -> dict[str, str]:
                return await self._download_once(url, artifact, target_path, on_progress)

            try:
                hashes = await self.policy.run(
                    attempt,
                    retry_on=(TransportError,),
                    description=f"Download of {artifact.filename}",
                    logger=self.logger,
                )
            except (TransportError, IntegrityError) as e:
                self.logger.error(f"Download of {artifact.filename} from {url} failed: {e}")
                last_error = e
                continue

            self.logger.info(f"Downloaded and verified {artifact.filename}")
            return DownloadedArtifact(
                part=chunk.part if chunk else "",
                chunk_name=chunk.name if chunk else "",
                chunk_version=chunk.version if chunk else "",
                filename=artifact.filename,
                path=target_path,
                size=artifact.size,
                hashes=hashes,
            )

        assert last_error is not None
        raise last_error

    async def _download_once(
        self,
        url: str,
        artifact: Artifact,
        target_path: Path,
        on_progress: Optional[ProgressCallback],
    ) -> dict[str, str]:
        """Single streaming attempt against one location.

        Returns:
            Computed digests
        """
        part_path = target_path.with_name(f"{target_path.name}.part")
        verifier = HashVerifier(self.algorithms)
        received = 0
        last_progress = -1

        try:
            async with self.transport.stream(url, chunk_size=self.chunk_size) as chunks:
                async with aiofiles.open(part_path, "wb") as f:
                    async for data in chunks:
                        received += len(data)
                        if received > artifact.size:
                            raise SizeMismatchError(artifact.filename, artifact.size, received)
                        verifier.update(data)
                        await f.write(data)

                        if on_progress is not None:
                            on_progress(received, artifact.size)

                        # Log progress every 5%
                        current_progress = int((received / artifact.size) * 100) if artifact.size else 100
                        if current_progress >= last_progress + 5:
                            last_progress = current_progress
                            self.logger.debug(
                                f"Download progress {artifact.filename}: {current_progress}% "
                                f"({received}/{artifact.size} bytes)"
                            )

            if received != artifact.size:
                raise SizeMismatchError(artifact.filename, artifact.size, received)

            hashes = verifier.verify(artifact.hashes.as_dict(), artifact.filename)
            part_path.replace(target_path)
            return hashes
        except BaseException:
            # Also covers task cancellation
            part_path.unlink(missing_ok=True)
            raise
