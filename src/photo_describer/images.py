"""
Image ingestion and size-bounded encoding.

Images under the size budget are sent byte-for-byte. Larger ones are downscaled once by a
fixed factor and re-encoded; JPEG and WebP get one extra lower-quality pass if that is still
not enough. The reducer stops there, so an image can remain over budget.
"""

import base64
import urllib.parse
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Any

import httpx
from loguru import logger
from PIL import Image, UnidentifiedImageError

from photo_describer.errors import FileAccessError, NetworkError, UnsupportedFormatError
from photo_describer.models import EncodedImage, ImageAsset


DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024
SCALE_FACTOR = 0.7
LOSSY_QUALITY = 85
LOSSY_FALLBACK_QUALITY = 50
PNG_COMPRESS_LEVEL = 6

DEFAULT_MIME_TYPE = "image/jpeg"
MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}
PIL_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
    "webp": "WEBP",
}
LOSSY_FORMATS = {"JPEG", "WEBP"}

FETCH_TIMEOUT = 30.0
FETCH_MAX_REDIRECTS = 5
FETCH_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_URL_FILENAME = "image.jpg"


def extension_of(name: str) -> str:
    """
    Lower-cased file extension without the dot.

    Examples:
        >>> extension_of("photo.JPG")
        'jpg'

    """
    return PurePosixPath(name).suffix.lstrip(".").lower()


def mime_type_for(name: str) -> str:
    """
    Map a filename to the MIME type used in the data URL.

    Unknown extensions fall back to ``image/jpeg`` with a warning.

    Examples:
        >>> mime_type_for("icon.png")
        'image/png'

    """
    extension = extension_of(name)
    mime_type = MIME_TYPES.get(extension)
    if mime_type is None:
        logger.warning("unknown_image_extension", extension=extension, fallback=DEFAULT_MIME_TYPE)
        return DEFAULT_MIME_TYPE
    return mime_type


def _make_asset(name: str, data: bytes) -> ImageAsset:
    return ImageAsset(
        name=name,
        data=data,
        extension=extension_of(name),
        mime_type=MIME_TYPES.get(extension_of(name), DEFAULT_MIME_TYPE),
    )


def read_image_file(image_path: Path) -> ImageAsset:
    """Load a local image; raises FileAccessError when it is missing or unreadable."""
    if not image_path.exists():
        msg = f"File not found: {image_path}"
        raise FileAccessError(msg)
    try:
        data = image_path.read_bytes()
    except OSError as exc:
        msg = f"Failed to read file {image_path}: {exc}"
        raise FileAccessError(msg) from exc
    logger.debug("image_file_read", path=str(image_path), size=len(data))
    return _make_asset(image_path.name, data)


def filename_from_url(url: str) -> str:
    """
    Derive a filename from the URL path, used for MIME inference.

    Examples:
        >>> filename_from_url("https://example.com/pics/cat.png?size=large")
        'cat.png'
        >>> filename_from_url("https://example.com/")
        'image.jpg'

    """
    path = urllib.parse.urlparse(url).path
    return PurePosixPath(urllib.parse.unquote(path)).name or DEFAULT_URL_FILENAME


def _fetch_client_options() -> dict[str, Any]:
    return {
        "follow_redirects": True,
        "max_redirects": FETCH_MAX_REDIRECTS,
        "timeout": FETCH_TIMEOUT,
        "verify": False,
        "headers": {"User-Agent": FETCH_USER_AGENT},
    }


def _asset_from_response(url: str, response: httpx.Response) -> ImageAsset:
    if response.status_code >= httpx.codes.BAD_REQUEST:
        msg = f"Unable to access URL: {url} - HTTP {response.status_code}"
        raise NetworkError(msg, status_code=response.status_code)
    logger.debug(
        "image_url_fetched",
        url=url,
        status=response.status_code,
        size=len(response.content),
        redirects=len(response.history),
    )
    return _make_asset(filename_from_url(url), response.content)


def fetch_image(url: str, *, transport: httpx.BaseTransport | None = None) -> ImageAsset:
    """
    Download an image over HTTP(S), blocking until done.

    Redirects are followed (up to 5), the request times out after 30 seconds and TLS
    certificates are not verified.

    Raises:
        NetworkError: On transport failure, too many redirects or an HTTP status >= 400.

    """
    try:
        with httpx.Client(transport=transport, **_fetch_client_options()) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        msg = f"Unable to access URL: {url} - {exc}"
        raise NetworkError(msg) from exc
    return _asset_from_response(url, response)


async def afetch_image(
    url: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ImageAsset:
    """Asynchronous counterpart of :func:`fetch_image` with the same options and errors."""
    try:
        async with httpx.AsyncClient(
            transport=transport,
            **_fetch_client_options(),
        ) as client:
            response = await client.get(url)
    except httpx.HTTPError as exc:
        msg = f"Unable to access URL: {url} - {exc}"
        raise NetworkError(msg) from exc
    return _asset_from_response(url, response)


class ImageEncoder:
    """
    Turn raw image bytes into a base64 payload that fits a size budget when possible.

    Args:
        max_bytes: Size budget for the raw bytes behind the payload (default 5 MiB)

    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> None:
        self.max_bytes = max_bytes

    def encode_file(self, image_path: Path) -> EncodedImage:
        asset = read_image_file(image_path)
        return self.encode(asset.data, asset.extension)

    def encode(self, data: bytes, extension: str) -> EncodedImage:
        """
        Base64-encode image bytes, shrinking them first when they exceed the budget.

        Args:
            data: Raw image file content
            extension: File extension (without dot) selecting the decoder and encoder

        Returns:
            EncodedImage with the payload and the parameters used to produce it.

        Raises:
            UnsupportedFormatError: If reduction is needed and the extension is not
                jpg/jpeg/png/gif/webp.
            FileAccessError: If the bytes cannot be decoded as an image.

        """
        size = len(data)
        if size <= self.max_bytes:
            logger.info("image_within_budget", size=size, budget=self.max_bytes)
            return EncodedImage(data=_b64(data), size=size)

        logger.info("image_over_budget_resizing", size=size, budget=self.max_bytes)
        extension = extension.lower()
        pil_format = PIL_FORMATS.get(extension)
        if pil_format is None:
            msg = f"Unsupported image format: {extension}"
            raise UnsupportedFormatError(msg)

        resized = _resize(_decode(data), pil_format)

        quality: int | None = None
        compress_level: int | None = None
        if pil_format in LOSSY_FORMATS:
            quality = LOSSY_QUALITY
        elif pil_format == "PNG":
            compress_level = PNG_COMPRESS_LEVEL
        encoded = _render(resized, pil_format, quality=quality, compress_level=compress_level)

        if len(encoded) > self.max_bytes and pil_format in LOSSY_FORMATS:
            logger.info(
                "applying_aggressive_compression",
                size=len(encoded),
                quality=LOSSY_FALLBACK_QUALITY,
            )
            quality = LOSSY_FALLBACK_QUALITY
            encoded = _render(resized, pil_format, quality=quality)

        if len(encoded) > self.max_bytes:
            logger.warning("image_still_over_budget", size=len(encoded), budget=self.max_bytes)

        logger.info(
            "image_resized",
            original_size=size,
            size=len(encoded),
            width=resized.width,
            height=resized.height,
        )
        return EncodedImage(
            data=_b64(encoded),
            size=len(encoded),
            resized=True,
            quality=quality,
            compress_level=compress_level,
        )


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _decode(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        msg = f"Failed to load image: {exc}"
        raise FileAccessError(msg) from exc
    return img


def _resize(img: Image.Image, pil_format: str) -> Image.Image:
    """Scale both sides by SCALE_FACTOR (rounded down), keeping alpha for PNG and WebP."""
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )
    if pil_format in ("PNG", "WEBP") and has_alpha:
        img = img.convert("RGBA")
    else:
        img = img.convert("RGB")

    width = max(1, int(img.width * SCALE_FACTOR))
    height = max(1, int(img.height * SCALE_FACTOR))
    return img.resize((width, height), Image.Resampling.LANCZOS)


def _render(
    img: Image.Image,
    pil_format: str,
    *,
    quality: int | None = None,
    compress_level: int | None = None,
) -> bytes:
    params: dict[str, int] = {}
    if quality is not None:
        params["quality"] = quality
    if compress_level is not None:
        params["compress_level"] = compress_level
    buf = BytesIO()
    img.save(buf, format=pil_format, **params)
    return buf.getvalue()
