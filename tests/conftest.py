"""Shared fixtures: chat-completion bodies, generated images and a loguru capture sink."""

import json
import random
from collections.abc import Iterator
from io import BytesIO

import pytest
from loguru import logger
from PIL import Image


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def chat_body(content: object) -> str:
    """Wrap model content in an OpenAI-style chat-completion response body."""
    return json.dumps(
        {
            "id": "gen-123",
            "model": "test/vision",
            "choices": [
                {
                    "index": 0,
                    "finish_reason": "stop",
                    "message": {"role": "assistant", "content": content},
                },
            ],
        },
    )


def noise_image_bytes(
    size: tuple[int, int],
    *,
    mode: str = "RGB",
    image_format: str = "PNG",
    seed: int = 7,
    **save_params: int,
) -> bytes:
    """Random-noise image; noise barely compresses, so sizes stay predictable."""
    channels = len(mode)
    data = random.Random(seed).randbytes(size[0] * size[1] * channels)
    img = Image.frombytes(mode, size, data)
    buf = BytesIO()
    img.save(buf, format=image_format, **save_params)
    return buf.getvalue()


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    """Collect 'LEVEL event' strings emitted through loguru during the test."""
    messages: list[str] = []

    def sink(message: object) -> None:
        record = message.record  # type: ignore[attr-defined]
        messages.append(f"{record['level'].name} {record['message']}")

    handler_id = logger.add(sink, level="DEBUG")
    yield messages
    logger.remove(handler_id)

