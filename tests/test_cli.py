"""Tests for the command-line entry point and startup wiring."""

import json
import sys
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
from conftest import chat_body
from loguru import logger

import photo_describer.main as m
from photo_describer.config import AppConfig
from photo_describer.images import ImageEncoder
from photo_describer.library import PhotoLibrary
from photo_describer.openrouter import AsyncOpenRouterClient, OpenRouterClient
from photo_describer.processor import AsyncPhotoProcessor, PhotoProcessor


REPLY = '{"description": "A lighthouse at https://example.com/dusk", "tags": ["lighthouse"]}'


@pytest.fixture(autouse=True)
def _isolated_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[None]:
    """Keep .env files and the developer's environment out of CLI runs."""
    monkeypatch.setattr("photo_describer.config.load_dotenv", lambda **_kwargs: False)
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    monkeypatch.setenv("INPUT_FOLDER", str(tmp_path / "input"))
    monkeypatch.setenv("OUTPUT_FOLDER", str(tmp_path / "output"))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    yield
    # setup_logging replaced every loguru sink; restore the defaults for the following tests
    logger.configure(handlers=[{"sink": sys.stderr}], extra={})


def _mock_processor(config: AppConfig) -> PhotoProcessor:
    transport = httpx.MockTransport(lambda _request: httpx.Response(200, text=chat_body(REPLY)))
    return PhotoProcessor(
        PhotoLibrary(config.input_folder, config.output_folder, config.supported_extensions),
        ImageEncoder(config.max_image_bytes),
        OpenRouterClient(
            config.api_key,
            config.model,
            http_client=httpx.Client(transport=transport),
        ),
        pause_seconds=0,
    )


def test_missing_api_key_exits_before_any_io(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY")

    with pytest.raises(SystemExit) as exc_info:
        m.describe()

    assert exc_info.value.code == 1
    assert "OPENROUTER_API_KEY" in capsys.readouterr().err
    assert not (tmp_path / "input").exists()
    assert not (tmp_path / "output").exists()


def test_single_image_prints_json_only(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    image = tmp_path / "lighthouse.jpg"
    image.write_bytes(b"\xff\xd8jpeg")
    monkeypatch.setattr(m, "build_processor", _mock_processor)

    m.describe(str(image))

    out = capsys.readouterr().out
    assert json.loads(out) == json.loads(REPLY)
    assert "https://example.com/dusk" in out
    assert out.startswith('{\n    "description"')


def test_single_image_failure_exits_with_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(m, "build_processor", _mock_processor)

    with pytest.raises(SystemExit) as exc_info:
        m.describe(str(tmp_path / "missing.jpg"))

    assert exc_info.value.code == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Failed to process image" in captured.err


def test_batch_run_writes_metadata(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(m, "build_processor", _mock_processor)
    (tmp_path / "input").mkdir()
    (tmp_path / "input" / "lighthouse.png").write_bytes(b"png")
    (tmp_path / "input" / "notes.txt").write_text("not an image")

    m.describe()

    written = sorted(p.name for p in (tmp_path / "output").iterdir())
    assert written == ["lighthouse.json"]


def test_build_processors_wire_configuration(tmp_path: Path) -> None:
    config = AppConfig(
        input_folder=tmp_path / "in",
        output_folder=tmp_path / "out",
        api_key="sk-test",
        model="test/vision",
        max_image_bytes=1234,
    )

    processor = m.build_processor(config)
    async_processor = m.build_async_processor(config)

    for built in (processor, async_processor):
        assert built.library.input_folder == tmp_path / "in"
        assert built.library.output_folder == tmp_path / "out"
        assert built.encoder.max_bytes == 1234
        assert built.client.model == "test/vision"
    processor.client.close()


def test_help_exits_cleanly(capsys: pytest.CaptureFixture[str]) -> None:
    try:
        m.app(["--help"])
    except SystemExit as exc:
        assert exc.code in (0, None)

    assert "photo-describer" in capsys.readouterr().out


def test_single_image_with_async_transport(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def mock_async_processor(config: AppConfig) -> AsyncPhotoProcessor:
        reply = httpx.Response(200, text=chat_body(f"```json\n{REPLY}\n```"))
        transport = httpx.MockTransport(lambda _request: reply)
        return AsyncPhotoProcessor(
            PhotoLibrary(config.input_folder, config.output_folder, config.supported_extensions),
            ImageEncoder(config.max_image_bytes),
            AsyncOpenRouterClient(
                config.api_key,
                config.model,
                http_client=httpx.AsyncClient(transport=transport),
            ),
            pause_seconds=0,
        )

    image = tmp_path / "lighthouse.webp"
    image.write_bytes(b"RIFFwebp")
    monkeypatch.setattr(m, "build_async_processor", mock_async_processor)

    m.describe(str(image), use_async=True)

    assert json.loads(capsys.readouterr().out) == json.loads(REPLY)


def test_setup_logging_writes_json_lines_with_image_context(tmp_path: Path) -> None:
    log_folder = tmp_path / "logs"
    m.setup_logging(console_log_level="OFF", file_log_level="INFO", log_folder=log_folder)

    logger.debug("too_verbose")
    with logger.contextualize(file="cat.jpg"):
        logger.info("processing_image")
    logger.info("processing_summary", successful=1)
    logger.remove()

    (log_file,) = log_folder.glob("photo_describer_*.jsonl")
    records = [json.loads(line)["record"] for line in log_file.read_text().splitlines()]
    assert [r["message"] for r in records] == ["processing_image", "processing_summary"]
    assert records[0]["extra"]["file"] == "cat.jpg"
    assert records[1]["extra"] == {"file": "-", "successful": 1}


def test_setup_logging_console_shows_current_image(capsys: pytest.CaptureFixture[str]) -> None:
    m.setup_logging(console_log_level="INFO")

    with logger.contextualize(file="dog.png"):
        logger.info("processing_image")
    logger.info("starting_photo_processing")

    lines = capsys.readouterr().err.splitlines()
    assert "dog.png" in lines[0]
    assert "processing_image" in lines[0]
    assert "starting_photo_processing" in lines[1]


def test_setup_logging_off_disables_every_sink(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    m.setup_logging(console_log_level="OFF", log_folder=tmp_path / "logs")

    logger.error("unexpected_error")

    assert capsys.readouterr().err == ""
    assert not (tmp_path / "logs").exists()
