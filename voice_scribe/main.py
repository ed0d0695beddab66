"""Typer CLI entrypoint for voice-scribe."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from voice_scribe.config import (
    Config,
    ConfigError,
    discover_audio_devices,
    load_config,
    validate_persistence_config,
)
from voice_scribe.errors import PersistenceFailed
from voice_scribe.orchestrator import PipelineSnapshot, VoicePipelineController
from voice_scribe.persistence import PersistenceClient
from voice_scribe.recorder import AudioCaptureController
from voice_scribe.transcriber import TranscriptionClient

app = typer.Typer(help="Turn speech or typed text into stored notes")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _build_pipeline(cfg: Config) -> VoicePipelineController:
    """Wire components from configuration."""
    capture = AudioCaptureController(
        sample_rate=cfg.audio.sample_rate,
        channels=cfg.audio.channels,
        chunk_size=cfg.audio.chunk_size,
        min_duration=cfg.audio.min_duration,
        device=cfg.audio.device,
    )
    transcriber = TranscriptionClient(
        endpoint=cfg.recognizer.endpoint,
        token=cfg.recognizer.token or "",
        timeout=cfg.recognizer.timeout,
        api_version=cfg.recognizer.api_version,
    )
    persistence = None
    if cfg.persistence.enabled:
        persistence = PersistenceClient(
            base_url=cfg.persistence.base_url,
            timeout=cfg.persistence.timeout,
        )
    return VoicePipelineController(capture, transcriber, persistence)


def _print_snapshot(snapshot: PipelineSnapshot) -> None:
    typer.echo(f"[{snapshot.state.value}] {snapshot.status}")


async def _prompt(message: str) -> str:
    return await asyncio.get_running_loop().run_in_executor(None, input, message)


async def _record_loop(pipeline: VoicePipelineController, once: bool) -> None:
    pipeline.add_listener(_print_snapshot)
    try:
        while True:
            answer = await _prompt("Press Enter to record (q to quit): ")
            if answer.strip().lower() == "q":
                break
            await pipeline.start_recording()
            await _prompt("Recording... press Enter to stop: ")
            await pipeline.stop_recording()
            await pipeline.wait_until_idle()
            if pipeline.transcript_text:
                typer.echo(pipeline.transcript_text)
            if once:
                break
    finally:
        await pipeline.shutdown()


async def _submit(pipeline: VoicePipelineController, text: str) -> bool:
    try:
        return await pipeline.submit_text(text) is not None
    finally:
        await pipeline.shutdown()


async def _history(cfg: Config) -> list[dict]:
    client = PersistenceClient(
        base_url=cfg.persistence.base_url, timeout=cfg.persistence.timeout
    )
    try:
        return await client.history()
    finally:
        await client.close()


@app.command()
def record(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    audio_device: int | None = typer.Option(
        None, "--audio-device", "-a", help="Override audio device by index"
    ),
    once: bool = typer.Option(False, "--once", help="Stop after one recording"),
) -> None:
    """Record speech from the microphone and transcribe it."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        if audio_device is not None:
            logger.debug("Overriding audio device to index %d", audio_device)
            cfg.audio.device = audio_device
        cfg.validate()
        logger.info("Configuration validated successfully")

        asyncio.run(_record_loop(_build_pipeline(cfg), once))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(0)


@app.command()
def submit(
    text: str = typer.Argument(..., help="Text to store"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Store typed text without recording."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        validate_persistence_config(cfg.persistence)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)

    if not asyncio.run(_submit(_build_pipeline(cfg), text)):
        typer.echo("Text is required", err=True)
        raise typer.Exit(1)
    typer.echo(text.strip())


@app.command()
def history(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """List stored transcripts, most recent first."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        if not cfg.persistence.enabled:
            raise ConfigError("Persistence is disabled; no history to show")
        validate_persistence_config(cfg.persistence)
        records = asyncio.run(_history(cfg))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except PersistenceFailed as e:
        logger.error("Error fetching history: %s", e)
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(records, indent=2))
        return
    if not records:
        typer.echo("No stored transcripts")
        return
    for record_ in records:
        audio = " [audio]" if record_.get("audioPath") else ""
        typer.echo(f"{record_.get('createdAt', '')}  {record_.get('text', '')}{audio}")


@app.command()
def list_audio(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """List available audio devices."""
    _setup_logging(verbose)
    devices = discover_audio_devices()
    if not devices:
        logger.warning("No audio devices found")
        return

    if json_output:
        typer.echo(json.dumps(devices, indent=2))
    else:
        typer.echo("Available audio devices:")
        for dev in devices:
            typer.echo(
                f"  [{dev['index']}] {dev['name']} "
                f"({dev['channels']}ch, {dev['sample_rate']}Hz)"
            )


if __name__ == "__main__":
    app()
