#!/usr/bin/env python3
"""
Photo Describer: CLI app to describe photos and tag them using a vision model on OpenRouter.

Without arguments, every image in INPUT_FOLDER gets a JSON metadata file in OUTPUT_FOLDER
(images already described and unchanged since are skipped). With an image path or URL, the
metadata for that single image is printed to stdout instead.

Configuration comes from environment variables or a .env file:
 - OPENROUTER_API_KEY (required), AI_MODEL, INPUT_FOLDER, OUTPUT_FOLDER, LOG_LEVEL,
   SUPPORTED_EXTENSIONS, MAX_IMAGE_BYTES, API_TIMEOUT.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated, Any

from cyclopts import App, Parameter
from loguru import logger

from photo_describer.config import AppConfig, LogLevel
from photo_describer.errors import ConfigError
from photo_describer.images import ImageEncoder
from photo_describer.library import PhotoLibrary
from photo_describer.models import ClassificationResult
from photo_describer.openrouter import AsyncOpenRouterClient, OpenRouterClient
from photo_describer.processor import AsyncPhotoProcessor, PhotoProcessor


# Cyclopts app
__version__ = "0.1.0"
app = App(
    name="photo-describer",
    version=__version__,
)


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <7}</level> | "
    "<cyan>{extra[file]:<20.20}</cyan> | "
    "<level>{message:<32}</level> | "
    "<yellow>{extra}</yellow>"
)


def setup_logging(
    console_log_level: LogLevel = "INFO",
    file_log_level: LogLevel = "OFF",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Replace loguru's handlers with a console sink and an optional JSON-lines file sink.

    Console lines show the image being processed next to the event name. The file sink
    serializes every record, so a batch run can be audited image by image afterwards.
    'OFF' disables either sink.
    """
    handlers: list[dict[str, Any]] = []
    if console_log_level != "OFF":
        handlers.append(
            {"sink": sys.stderr, "level": console_log_level, "format": CONSOLE_FORMAT},
        )
    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        handlers.append(
            {
                "sink": log_folder / "photo_describer_{time:YYYYMMDD}.jsonl",
                "level": file_log_level,
                "serialize": True,
                "rotation": "10 MB",
                "retention": 5,
            },
        )
    # Records logged outside an image context still need extra[file]
    logger.configure(handlers=handlers, extra={"file": "-"})


def build_processor(config: AppConfig) -> PhotoProcessor:
    """Wire the blocking pipeline from the resolved configuration."""
    return PhotoProcessor(
        PhotoLibrary(config.input_folder, config.output_folder, config.supported_extensions),
        ImageEncoder(config.max_image_bytes),
        OpenRouterClient(config.api_key, config.model, timeout=config.api_timeout),
    )


def build_async_processor(config: AppConfig) -> AsyncPhotoProcessor:
    return AsyncPhotoProcessor(
        PhotoLibrary(config.input_folder, config.output_folder, config.supported_extensions),
        ImageEncoder(config.max_image_bytes),
        AsyncOpenRouterClient(config.api_key, config.model, timeout=config.api_timeout),
    )


def _run(config: AppConfig, target: str | None) -> ClassificationResult | None:
    processor = build_processor(config)
    with processor.client:
        if target is None:
            processor.run()
            return None
        return processor.process_single(target)


async def _run_async(config: AppConfig, target: str | None) -> ClassificationResult | None:
    processor = build_async_processor(config)
    async with processor.client:
        if target is None:
            await processor.run()
            return None
        return await processor.process_single(target)


@app.default
def describe(
    target: Annotated[
        str | None,
        Parameter(
            help="Image path or URL to describe. Without it, the whole input folder is processed",
        ),
    ] = None,
    *,
    show_logs: Annotated[
        bool,
        Parameter(
            name=("--log",),
            negative="",
            help="Enable log output when describing a single image (off by default)",
        ),
    ] = False,
    use_async: Annotated[
        bool,
        Parameter(
            name=("--async",),
            negative="",
            help="Use the asynchronous (asyncio) HTTP transport",
        ),
    ] = False,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "OFF",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
) -> None:
    """
    Describe and tag images with a vision-language model.

    Batch mode (no TARGET): writes <OUTPUT_FOLDER>/<name>.json for each new or modified image
    in INPUT_FOLDER, pausing one second between API calls.

    Single mode (TARGET given): prints the JSON metadata for that file or URL to stdout.

    Exit status: 1 on configuration errors, unexpected errors, or a failed single image.

    Examples:
        photo-describer
        photo-describer ./photos/cat.jpg
        photo-describer https://example.com/dog.png --log --async

    """
    try:
        config = AppConfig.from_env()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)  # noqa: T201
        raise SystemExit(1) from exc

    quiet = target is not None and not show_logs
    setup_logging(
        console_log_level="OFF" if quiet else config.log_level,
        file_log_level=file_log_level,
        log_folder=log_folder,
    )
    logger.info(
        "starting_photo_describer",
        target=target,
        model=config.model,
        input_folder=str(config.input_folder),
        output_folder=str(config.output_folder),
        api_key_present=bool(config.api_key),
        transport="async" if use_async else "sync",
    )

    try:
        if use_async:
            result = asyncio.run(_run_async(config, target))
        else:
            result = _run(config, target)
    except Exception as exc:
        logger.exception("unexpected_error", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)  # noqa: T201
        raise SystemExit(1) from exc

    if target is None:
        return
    if result is None:
        print("Error: Failed to process image.", file=sys.stderr)  # noqa: T201
        raise SystemExit(1)
    print(json.dumps(result.model_dump(), indent=4))  # noqa: T201


if __name__ == "__main__":
    app()
