"""Value types passed between the pipeline stages."""

from dataclasses import dataclass
from typing import NamedTuple

from pydantic import BaseModel


class ClassificationResult(BaseModel):
    """Schema for the structured metadata persisted for each image."""

    description: str
    tags: list[str]


@dataclass(frozen=True)
class ImageAsset:
    """Raw image bytes together with the name used to infer their type."""

    name: str
    data: bytes
    extension: str
    mime_type: str


@dataclass(frozen=True)
class EncodedImage:
    """Base64 payload ready to be embedded in a data URL."""

    data: str
    size: int
    resized: bool = False
    quality: int | None = None
    compress_level: int | None = None


class ProcessingDecision(NamedTuple):
    skip: bool
    reason: str


@dataclass
class BatchSummary:
    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
