"""
Batch and single-image orchestration.

Batch mode walks the input folder, skips images whose metadata is up to date, and for the rest
runs encode -> classify -> persist. A failure on one image is logged and the loop moves on.
Single-image mode accepts a local path or URL and returns the metadata without persisting it.
"""

import asyncio
import time
import urllib.parse
from pathlib import Path
from typing import Generic, TypeVar

from loguru import logger

from photo_describer.images import (
    ImageEncoder,
    afetch_image,
    fetch_image,
    read_image_file,
)
from photo_describer.library import PhotoLibrary
from photo_describer.models import BatchSummary, ClassificationResult, EncodedImage, ImageAsset
from photo_describer.openrouter import AsyncOpenRouterClient, OpenRouterClient


REQUEST_PAUSE_SECONDS = 1.0

ClientT = TypeVar("ClientT", OpenRouterClient, AsyncOpenRouterClient)


def is_url(target: str) -> bool:
    """
    Tell URLs from local paths: a URL needs both a scheme and a host.

    Examples:
        >>> is_url("https://example.com/cat.jpg")
        True
        >>> is_url("photos/cat.jpg")
        False
        >>> is_url("C:\\\\photos\\\\cat.jpg")
        False

    """
    parsed = urllib.parse.urlparse(target)
    return bool(parsed.scheme and parsed.netloc)


def _log_failure(image_name: str, stage: str, exc: Exception) -> None:
    logger.error(
        "processing_failed",
        file=image_name,
        stage=stage,
        error=str(exc),
        error_type=type(exc).__name__,
    )


def _log_summary(summary: BatchSummary) -> None:
    logger.info(
        "processing_summary",
        total_files=summary.total,
        successful=summary.processed,
        skipped=summary.skipped,
        failed=summary.failed,
    )


class _ProcessorBase(Generic[ClientT]):
    """State and per-image bookkeeping shared by the blocking and asynchronous orchestrators."""

    def __init__(
        self,
        library: PhotoLibrary,
        encoder: ImageEncoder,
        client: ClientT,
        *,
        pause_seconds: float = REQUEST_PAUSE_SECONDS,
    ) -> None:
        self.library = library
        self.encoder = encoder
        self.client = client
        self.pause_seconds = pause_seconds

    def _start(self, **extra: str) -> tuple[list[str], BatchSummary]:
        logger.info("starting_photo_processing", **extra)
        self.library.initialize_folders()
        images = self.library.list_images()
        return images, BatchSummary(total=len(images))

    def _skip(self, image_name: str, summary: BatchSummary) -> bool:
        if self.library.should_skip(image_name):
            logger.info("skipping_already_processed")
            summary.skipped += 1
            return True
        logger.info("processing_image")
        return False

    def _encode(self, image_name: str) -> EncodedImage:
        return self.encoder.encode_file(self.library.image_path(image_name))

    @staticmethod
    def _record(summary: BatchSummary, image_name: str, stage: str, exc: Exception | None) -> None:
        if exc is None:
            logger.info("processing_success")
            summary.processed += 1
        else:
            _log_failure(image_name, stage, exc)
            summary.failed += 1


class PhotoProcessor(_ProcessorBase[OpenRouterClient]):
    """
    Blocking orchestrator.

    Args:
        library: Catalog, idempotency gate and metadata sink
        encoder: Size-bounded image encoder
        client: Blocking classification client
        pause_seconds: Delay after each non-skipped image

    """

    def run(self) -> BatchSummary:
        """Describe every new or modified image in the input folder."""
        images, summary = self._start()
        for idx, image_name in enumerate(images, start=1):
            with logger.contextualize(file=image_name, index=f"{idx}/{len(images)}"):
                stage = "gate"
                error: Exception | None = None
                try:
                    if self._skip(image_name, summary):
                        continue
                    stage = "encode"
                    encoded = self._encode(image_name)
                    stage = "classify"
                    result = self.client.classify(encoded.data, image_name)
                    stage = "persist"
                    self.library.save_metadata(image_name, result)
                except Exception as exc:  # noqa: BLE001
                    error = exc
                self._record(summary, image_name, stage, error)
                time.sleep(self.pause_seconds)

        _log_summary(summary)
        return summary

    def process_single(self, target: str) -> ClassificationResult | None:
        """
        Describe one image given as a local path or URL. Nothing is written to disk.

        Returns:
            The metadata, or None if any step failed (the error is logged).

        """
        logger.info("processing_single_image", target=target)
        stage = "read"
        try:
            asset = fetch_image(target) if is_url(target) else read_image_file(Path(target))
            stage = "encode"
            encoded = self.encoder.encode(asset.data, asset.extension)
            stage = "classify"
            return self.client.classify(encoded.data, asset.name)
        except Exception as exc:  # noqa: BLE001
            _log_failure(target, stage, exc)
            return None


class AsyncPhotoProcessor(_ProcessorBase[AsyncOpenRouterClient]):
    """Asynchronous orchestrator; suspends only while waiting on the network."""

    async def run(self) -> BatchSummary:
        images, summary = self._start(transport="async")
        for idx, image_name in enumerate(images, start=1):
            with logger.contextualize(file=image_name, index=f"{idx}/{len(images)}"):
                stage = "gate"
                error: Exception | None = None
                try:
                    if self._skip(image_name, summary):
                        continue
                    stage = "encode"
                    encoded = self._encode(image_name)
                    stage = "classify"
                    result = await self.client.classify(encoded.data, image_name)
                    stage = "persist"
                    self.library.save_metadata(image_name, result)
                except Exception as exc:  # noqa: BLE001
                    error = exc
                self._record(summary, image_name, stage, error)
                await asyncio.sleep(self.pause_seconds)

        _log_summary(summary)
        return summary

    async def process_single(self, target: str) -> ClassificationResult | None:
        logger.info("processing_single_image", target=target, transport="async")
        stage = "read"
        try:
            asset: ImageAsset
            if is_url(target):
                asset = await afetch_image(target)
            else:
                asset = read_image_file(Path(target))
            stage = "encode"
            encoded = self.encoder.encode(asset.data, asset.extension)
            stage = "classify"
            return await self.client.classify(encoded.data, asset.name)
        except Exception as exc:  # noqa: BLE001
            _log_failure(target, stage, exc)
            return None
