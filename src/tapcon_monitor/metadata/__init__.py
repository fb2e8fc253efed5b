"""Metadata service capability and its HTTP client."""

from .api import MetadataAPI
from .http_client import HttpMetadataAPI

__all__ = ["HttpMetadataAPI", "MetadataAPI"]
