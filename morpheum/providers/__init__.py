"""LLM client abstraction module."""

from morpheum.providers.base import (
    DualRendering,
    ExecutionMode,
    LLMClient,
    PlainText,
    ProgressChunk,
    ProviderIdentity,
    coerce_chunk,
)
from morpheum.providers.factory import create_client, validate_credentials

__all__ = [
    "DualRendering",
    "ExecutionMode",
    "LLMClient",
    "PlainText",
    "ProgressChunk",
    "ProviderIdentity",
    "coerce_chunk",
    "create_client",
    "validate_credentials",
]
