"""Display URL composition for files kept in object storage.

Files are referenced by id only; the service never talks to object storage.
A file URL is the configured endpoint followed by the bucket segment, the
layer id, the geometry type and finally the file id.

Example:
    Build the URLs of two files:
        >>> from replica_server.utils.urls import create_url_paths
        >>> create_url_paths("http://minio:9000", ["bucket", 5, "point"], ["a", "b"])
        ['http://minio:9000/bucket/5/point/a', 'http://minio:9000/bucket/5/point/b']

    Prefix the bucket with a project id:
        >>> bucket_segment("replicas", "proj")
        'proj:replicas'
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


def bucket_segment(bucket_name: str, project_id: str | None = None) -> str:
    """Return the bucket path segment, prefixed with the project when set."""
    if project_id:
        return f"{project_id}:{bucket_name}"
    return bucket_name


def create_url_paths(
    header: str,
    sub_paths: Iterable[object],
    file_ids: Iterable[object],
) -> list[str]:
    """Join a URL header, shared sub paths and each file id.

    Args:
        header: Scheme, host and port, without a trailing slash.
        sub_paths: Path segments shared by every file.
        file_ids: One URL is produced per id, in order.

    Returns:
        List of URLs, empty when there are no file ids.
    """
    prefix = "/".join([header, *(str(part) for part in sub_paths)])
    return [f"{prefix}/{file_id}" for file_id in file_ids]
