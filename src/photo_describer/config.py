"""Application configuration resolved once at startup from the environment."""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal, get_args

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from photo_describer.errors import ConfigError


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]

DEFAULT_INPUT_FOLDER = "input_photos"
DEFAULT_OUTPUT_FOLDER = "output"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_MODEL_NAME = "anthropic/claude-3-opus:beta"
DEFAULT_EXTENSIONS = "jpg,jpeg,png,gif,webp"
DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024
DEFAULT_API_TIMEOUT = 120.0


class AppConfig(BaseModel):
    """Resolved settings shared by every component."""

    model_config = ConfigDict(frozen=True)

    input_folder: Path
    output_folder: Path
    api_key: str
    log_level: LogLevel = "INFO"
    model: str = DEFAULT_MODEL_NAME
    supported_extensions: frozenset[str] = frozenset(DEFAULT_EXTENSIONS.split(","))
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    api_timeout: float = DEFAULT_API_TIMEOUT

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        dotenv_path: Path | None = None,
    ) -> "AppConfig":
        """
        Build the configuration from environment variables.

        A ``.env`` file is loaded first when reading the process environment; variables already
        set take precedence over the file.

        Args:
            environ: Mapping to read instead of ``os.environ`` (no ``.env`` loading then)
            dotenv_path: Explicit ``.env`` location, otherwise searched from the working directory

        Raises:
            ConfigError: If the API key is missing or a value cannot be parsed.

        """
        if environ is None:
            load_dotenv(dotenv_path=dotenv_path)
            environ = os.environ

        api_key = environ.get("OPENROUTER_API_KEY", "").strip()
        if not api_key:
            msg = "OPENROUTER_API_KEY is not set in configuration"
            raise ConfigError(msg)

        log_level = environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
        if log_level not in get_args(LogLevel):
            msg = f"LOG_LEVEL must be one of {', '.join(get_args(LogLevel))}, got {log_level!r}"
            raise ConfigError(msg)

        extensions = parse_extensions(environ.get("SUPPORTED_EXTENSIONS", DEFAULT_EXTENSIONS))
        if not extensions:
            msg = "SUPPORTED_EXTENSIONS does not contain any extension"
            raise ConfigError(msg)

        return cls(
            input_folder=Path(environ.get("INPUT_FOLDER") or DEFAULT_INPUT_FOLDER),
            output_folder=Path(environ.get("OUTPUT_FOLDER") or DEFAULT_OUTPUT_FOLDER),
            api_key=api_key,
            log_level=log_level,  # type: ignore[arg-type]
            model=environ.get("AI_MODEL") or DEFAULT_MODEL_NAME,
            supported_extensions=extensions,
            max_image_bytes=int(
                _number_from_env(environ, "MAX_IMAGE_BYTES", DEFAULT_MAX_IMAGE_BYTES, int),
            ),
            api_timeout=_number_from_env(environ, "API_TIMEOUT", DEFAULT_API_TIMEOUT, float),
        )


def parse_extensions(image_extensions: str) -> frozenset[str]:
    """
    Normalize comma-separated extensions into a set like {"jpg", "png"}.

    Examples:
        >>> sorted(parse_extensions("JPG, .png ,,webp"))
        ['jpg', 'png', 'webp']

    """
    return frozenset(
        ext.strip().lstrip(".").lower()
        for ext in image_extensions.split(",")
        if ext.strip().lstrip(".")
    )


def _number_from_env(
    environ: Mapping[str, str],
    name: str,
    default: float,
    cast: type[int] | type[float],
) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        msg = f"{name} must be a number, got {raw!r}"
        raise ConfigError(msg) from exc
    if value <= 0:
        msg = f"{name} must be positive, got {raw!r}"
        raise ConfigError(msg)
    return value
