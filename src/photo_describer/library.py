"""Input catalog, idempotency checks and JSON metadata persistence."""

import json
import os
from pathlib import Path

from loguru import logger

from photo_describer.errors import FileAccessError
from photo_describer.images import extension_of
from photo_describer.models import ClassificationResult, ProcessingDecision


class PhotoLibrary:
    """
    File system side of the pipeline: where images come from and where metadata goes.

    Args:
        input_folder: Directory scanned for images
        output_folder: Directory receiving one ``<stem>.json`` record per image
        supported_extensions: Lower-case extensions (without dot) to catalog

    """

    def __init__(
        self,
        input_folder: Path,
        output_folder: Path,
        supported_extensions: frozenset[str],
    ) -> None:
        self.input_folder = input_folder
        self.output_folder = output_folder
        self.supported_extensions = supported_extensions

    def initialize_folders(self) -> None:
        """Create the input and output directories when they do not exist yet."""
        for folder in (self.input_folder, self.output_folder):
            if not folder.exists():
                folder.mkdir(parents=True, exist_ok=True)
                logger.info("created_folder", folder=str(folder))

    def list_images(self) -> list[str]:
        """
        Return image filenames in the input folder, in directory enumeration order.

        Only the extension is checked (case-insensitive); entries are not required to be
        regular files.

        Examples:
            >>> library = PhotoLibrary(Path("in"), Path("out"), frozenset({"jpg"}))
            >>> library.list_images()  # doctest: +SKIP
            ['IMG_0001.JPG', 'beach.jpg']

        """
        try:
            entries = os.listdir(self.input_folder)
        except OSError as exc:
            msg = f"Cannot list input folder {self.input_folder}: {exc}"
            raise FileAccessError(msg) from exc

        images = [
            entry for entry in entries if extension_of(entry) in self.supported_extensions
        ]
        logger.info("images_found", count=len(images), folder=str(self.input_folder))
        return images

    def image_path(self, image_name: str) -> Path:
        return self.input_folder / image_name

    def metadata_path(self, image_name: str) -> Path:
        """Return ``<output_folder>/<image stem>.json``."""
        return self.output_folder / f"{Path(image_name).stem}.json"

    def check(self, image_name: str) -> ProcessingDecision:
        """
        Decide whether an image needs (re)processing by comparing modification times.

        An image whose metadata record is as new as (or newer than) the image itself is
        considered processed.
        """
        metadata_path = self.metadata_path(image_name)
        if not metadata_path.exists():
            return ProcessingDecision(skip=False, reason="not_processed")

        image_mtime = self.image_path(image_name).stat().st_mtime
        metadata_mtime = metadata_path.stat().st_mtime
        if image_mtime > metadata_mtime:
            logger.info("image_modified_since_last_processing", file=image_name)
            return ProcessingDecision(skip=False, reason="modified_since_last_processing")

        return ProcessingDecision(skip=True, reason="already_processed")

    def should_skip(self, image_name: str) -> bool:
        return self.check(image_name).skip

    def save_metadata(self, image_name: str, metadata: ClassificationResult) -> Path:
        """
        Write the metadata record for an image as pretty-printed JSON.

        Returns:
            Path of the written record.

        Raises:
            FileAccessError: If the record cannot be written.

        """
        target = self.metadata_path(image_name)
        document = json.dumps(metadata.model_dump(), indent=4)
        # A partial record would be newer than the image and mark it as processed
        partial = target.with_name(f".{target.name}.tmp")
        try:
            partial.write_text(document, encoding="utf-8")
            partial.replace(target)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            msg = f"Failed to save metadata for {image_name}: {exc}"
            raise FileAccessError(msg) from exc
        logger.info("metadata_saved", target=str(target), tags=len(metadata.tags))
        return target
