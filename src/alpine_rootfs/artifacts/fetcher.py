"""Download tool binaries and verify them against a pinned digest."""
import hashlib
import re
from pathlib import Path
from typing import Optional

import aiohttp
import appdirs

from alpine_rootfs.constants import CHUNK_SIZE, CONNECT_TIMEOUT
from alpine_rootfs.errors import IntegrityError, ProvisioningError, ValidationError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.types import ArtifactReference, StepContext

logger = get_logger(__name__)

# <http(s) url>#!<algorithm>!<hex digest>
REFERENCE_RE = re.compile(r"^(?P<url>https?://[^#\s]+)#!(?P<algorithm>[a-z0-9_]+)!(?P<digest>[0-9a-fA-F]+)$")


def get_cache_dir() -> Path:
    """Get the directory downloaded artifacts are cached in."""
    return Path(appdirs.user_cache_dir("alpine-rootfs")) / "artifacts"


def parse_artifact_reference(
    reference: str, cache_path: Optional[Path] = None, algorithms: Optional[tuple[str, ...]] = None
) -> ArtifactReference:
    """Split a ``url#!algorithm!digest`` reference, rejecting anything else."""
    match = REFERENCE_RE.match(reference or "")
    if not match:
        raise ValidationError(
            "apk-tools-url",
            "The value must start with https:// or http:// and end with '#!<algorithm>!' followed "
            f"by a hex digest of the file to be downloaded, but got: {reference}",
        )

    algorithm = match["algorithm"]
    # shake_* digests are variable-length and need an explicit size.
    if (
        algorithm not in hashlib.algorithms_guaranteed
        or algorithm.startswith("shake_")
        or (algorithms and algorithm not in algorithms)
    ):
        raise ValidationError("apk-tools-url", f"Unsupported digest algorithm: {algorithm}")

    url = match["url"]
    if cache_path is None:
        cache_path = get_cache_dir() / match["digest"].lower() / url.rsplit("/", 1)[-1]

    return ArtifactReference(
        url=url,
        algorithm=algorithm,
        digest=match["digest"].lower(),
        cache_path=cache_path,
    )


def compute_file_hash(path: Path, algorithm: str = "sha256") -> str:
    """Compute hex digest of a file."""
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def is_valid(ref: ArtifactReference) -> bool:
    """True if the cached file exists and hashes to the pinned digest."""
    if not ref.cache_path.is_file():
        return False
    return compute_file_hash(ref.cache_path, ref.algorithm) == ref.digest


async def download_file(url: str, dest: Path) -> None:
    """Download a file with streaming."""
    timeout = aiohttp.ClientTimeout(sock_connect=CONNECT_TIMEOUT, connect=CONNECT_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            logger.info("download_started", url=url, destination=str(dest))

            async with session.get(url) as response:
                if response.status != 200:
                    logger.error("download_request_failed", url=url, status=response.status)
                    response.raise_for_status()

                downloaded = 0
                with open(dest, "wb") as f:
                    while chunk := await response.content.read(CHUNK_SIZE):
                        f.write(chunk)
                        downloaded += len(chunk)

                logger.info("download_complete", url=url, size=downloaded)

    except Exception as e:
        if dest.exists():
            dest.unlink()
        raise ProvisioningError(f"Failed to download {url}: {e}", details={"url": url}) from e


async def fetch_artifact(ref: ArtifactReference, ctx: Optional[StepContext] = None) -> Path:
    """Return a verified local copy of the artifact, downloading only if needed."""
    log = ctx.logger if ctx else logger
    phase = ctx.phase if ctx else None

    if is_valid(ref):
        log.info("artifact_cached", url=ref.url, path=str(ref.cache_path))
        return ref.cache_path

    ref.cache_path.parent.mkdir(parents=True, exist_ok=True)
    partial = ref.cache_path.with_name(ref.cache_path.name + ".part")

    try:
        await download_file(ref.url, partial)
    except ProvisioningError as e:
        e.phase = phase
        raise

    actual = compute_file_hash(partial, ref.algorithm)
    if actual != ref.digest:
        partial.unlink()
        log.error("artifact_checksum_mismatch", url=ref.url, expected=ref.digest, actual=actual)
        raise IntegrityError(ref.url, ref.algorithm, ref.digest, actual, phase=phase)

    partial.replace(ref.cache_path)
    log.info("artifact_verified", url=ref.url, path=str(ref.cache_path), digest=actual)
    return ref.cache_path
