"""
Adapters package for the docgate service.

Contains the outbound object storage transport and the client that creates
pre-authenticated requests. Transport failures are mapped to shared errors
here; nothing above this layer sees httpx exceptions.
"""

from .object_storage_client import BucketLocation, ObjectStorageClient, redact_url
from .par_client import PreauthenticatedRequestFetcher

__all__ = [
    "BucketLocation",
    "ObjectStorageClient",
    "PreauthenticatedRequestFetcher",
    "redact_url",
]
