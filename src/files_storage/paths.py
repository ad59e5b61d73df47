"""Mapping of object ids to bucket keys."""
from typing import Optional


def resolve_path(prefix: Optional[str], object_id: str) -> str:
    """Join the namespace prefix and the object id with ``/``.

    The id is not validated, S3 decides what a legal key is.
    """
    return f"{prefix}/{object_id}" if prefix else object_id
