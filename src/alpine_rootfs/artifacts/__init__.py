"""Checksum-gated artifact fetching."""
from alpine_rootfs.artifacts.fetcher import (
    compute_file_hash,
    download_file,
    fetch_artifact,
    get_cache_dir,
    parse_artifact_reference,
)

__all__ = [
    "compute_file_hash",
    "download_file",
    "fetch_artifact",
    "get_cache_dir",
    "parse_artifact_reference",
]
