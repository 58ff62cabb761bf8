#!/usr/bin/env python3
"""
Reel Export - Main Entry Point
Assembles generated scene clips into one short-form video from a manifest.
"""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
from dotenv import load_dotenv

from reel_export.utils.config import Config
from reel_export.utils.logger import setup_logging
from reel_export.video_assembly import (
    AudioOverlayInput, ClipInput, ExportError, ExportOptions, OutputFormat,
    TranscodingSession, VideoAssembler
)
from reel_export.video_assembly.sources import SourceLoader

# Load local env (FFMPEG_BINARY and friends)
load_dotenv(dotenv_path=Path(__file__).parent / ".env.local")

console = Console()


class ExportManifest(BaseModel):
    """Clips and options of one export, as read from YAML or JSON"""
    clips: List[ClipInput]
    output_format: OutputFormat = OutputFormat.MP4
    remove_silence: bool = False
    audio_overlay: Optional[AudioOverlayInput] = None

    def options(self) -> ExportOptions:
        return ExportOptions(
            output_format=self.output_format,
            audio_overlay=self.audio_overlay,
            remove_silence=self.remove_silence,
        )


def _resolve_source(source, base_dir: Path):
    """Relative file sources are taken relative to the manifest"""
    if isinstance(source, str) and not source.startswith(('http://', 'https://')):
        path = Path(source)
        return str(path if path.is_absolute() else base_dir / path)
    return source


def load_manifest(manifest_path: str) -> ExportManifest:
    """Load an export manifest from a .yaml/.yml or .json file"""
    path = Path(manifest_path)
    if not path.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest_path}")

    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            data = yaml.safe_load(f) or {}

    base_dir = path.parent
    for clip in data.get('clips', []):
        clip['source'] = _resolve_source(clip.get('source'), base_dir)
    if data.get('audio_overlay'):
        data['audio_overlay']['source'] = _resolve_source(data['audio_overlay'].get('source'), base_dir)

    return ExportManifest(**data)


def load_config(config_path: str) -> Config:
    if Path(config_path).exists():
        config = Config.load(config_path)
    else:
        console.print(f"[yellow]⚠[/yellow] Config {config_path} not found, using defaults")
        config = Config()

    binary = os.getenv('FFMPEG_BINARY')
    if binary:
        config.engine.binary = binary
    probe_binary = os.getenv('FFPROBE_BINARY')
    if probe_binary:
        config.engine.probe_binary = probe_binary
    return config


class ReelExportCLI:
    """Command-line front end for the exporter"""

    def __init__(self, config_path: str = "configs/config.yaml"):
        self.config = load_config(config_path)
        self.logger = setup_logging(self.config)

    async def export(self, manifest_path: str, output_path: Optional[str] = None) -> Path:
        manifest = load_manifest(manifest_path)
        options = manifest.options()
        output = Path(output_path or Path(self.config.paths.output) / f"export.{options.output_format.value}")

        console.print(f"[blue]🎬[/blue] Exporting {len(manifest.clips)} clip(s) as {options.output_format.value}")

        session = TranscodingSession.from_config(self.config)
        try:
            async with SourceLoader() as loader:
                assembler = VideoAssembler(session, self.config, loader)

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                    TimeElapsedColumn(),
                    console=console,
                    refresh_per_second=4,
                    transient=False
                ) as progress:
                    task = progress.add_task("[magenta]🎞️ Starting export...", total=100)

                    def on_progress(event):
                        progress.update(task, completed=event.progress,
                                        description=f"[magenta]🎞️ {event.message}")

                    result = await assembler.export(manifest.clips, options, on_progress)
        finally:
            await session.close()

        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(result.data)

        console.print("\n[bold green]🎉 Export Complete![/bold green]")
        console.print(f"[green]🧩[/green] Plan: {result.plan}" + (" (re-encode fallback)" if result.used_fallback else ""))
        console.print(f"[green]🎬[/green] Duration: {result.duration:.1f}s")
        console.print(f"[green]💾[/green] File size: {result.size_mb:.1f}MB")
        for warning in result.warnings:
            console.print(f"[yellow]⚠[/yellow] {warning}")
        console.print(f"[green]✅[/green] Video saved: {output}")
        return output

    async def last_frame(self, video: str, output_path: str) -> Path:
        session = TranscodingSession.from_config(self.config)
        try:
            async with SourceLoader() as loader:
                assembler = VideoAssembler(session, self.config, loader)
                frame = await assembler.extract_last_frame(video)
        finally:
            await session.close()

        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(frame.image_bytes)
        console.print(f"[green]✅[/green] Last frame ({frame.method}) saved: {output}")
        return output


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Short-form video export")
    parser.add_argument("--config", type=str, default="configs/config.yaml",
                        help="Path to configuration file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Assemble clips from a manifest")
    export_parser.add_argument("manifest", help="YAML or JSON export manifest")
    export_parser.add_argument("-o", "--output", help="Output video path")

    frame_parser = subparsers.add_parser("last-frame", help="Extract the last frame of a video")
    frame_parser.add_argument("video", help="Video path or URL")
    frame_parser.add_argument("-o", "--output", default="last_frame.jpg", help="Output JPEG path")

    args = parser.parse_args()

    try:
        cli = ReelExportCLI(args.config)
        if args.command == "export":
            asyncio.run(cli.export(args.manifest, args.output))
        elif args.command == "last-frame":
            asyncio.run(cli.last_frame(args.video, args.output))
    except KeyboardInterrupt:
        console.print("\n[yellow]⏹️[/yellow] Stopped by user")
    except (ExportError, FileNotFoundError) as e:
        console.print(f"[red]❌[/red] Error: {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]💥[/red] Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
