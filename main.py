#!/usr/bin/env python3
"""
Transcript Studio - Command Line Orchestrator

Drives one TaskOrchestrator against the configured task service.
Handles upload, transcription (file, YouTube, website), summaries and
translation, combining tasks, media removal and exports.
"""

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Optional

import structlog
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from config import config
from core.api import ApiError, TaskApiClient
from core.context import SessionContext
from core.export import ExportError, ExportFormat
from core.models import MediaFile, Task
from core.orchestrator import SUPPORTED_LANGUAGES, TaskOrchestrator, ViewState
from core.recording import format_recording_time
from core.transcript import parse_transcript_segments

# Configure structured logging
logging.basicConfig(format="%(message)s", level=logging.DEBUG if config.debug else logging.INFO)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.dev.ConsoleRenderer(colors=True)
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

TASK_COMMANDS = ("upload", "transcribe", "youtube", "summarize", "remove-media", "export")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tstudio",
        description="Transcribe, summarize and translate tasks on the Transcript Studio service"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Upload a PDF or MP3 to a task")
    upload.add_argument("task_id")
    upload.add_argument("file", type=Path)
    upload.add_argument("--wait", action="store_true", help="Wait until processing finishes")

    transcribe = subparsers.add_parser("transcribe", help="Transcribe the task's attached media and wait")
    transcribe.add_argument("task_id")

    youtube = subparsers.add_parser("youtube", help="Transcribe a YouTube video into a task")
    youtube.add_argument("task_id")
    youtube.add_argument("url")

    scrape = subparsers.add_parser("scrape", help="Scrape a website into a new task")
    scrape.add_argument("url")

    summarize = subparsers.add_parser("summarize", help="Summarize a task, optionally translated")
    summarize.add_argument("task_id")
    summarize.add_argument("--language", default="", choices=("",) + SUPPORTED_LANGUAGES)

    combine = subparsers.add_parser("combine", help="Combine two or more tasks into one")
    combine.add_argument("task_ids", nargs="+")

    remove_media = subparsers.add_parser("remove-media", help="Detach media from a task")
    remove_media.add_argument("task_id")

    export = subparsers.add_parser("export", help="Save a task as SRT or Markdown")
    export.add_argument("task_id")
    export.add_argument("--format", dest="fmt", default=ExportFormat.MARKDOWN.value,
                        choices=[f.value for f in ExportFormat])
    export.add_argument("--output-dir", type=Path, default=Path("."))

    segments = subparsers.add_parser("segments", help="Print the segments of a local SRT file")
    segments.add_argument("file", type=Path)

    return parser


def read_media_file(path: Path) -> MediaFile:
    content_type, _ = mimetypes.guess_type(path.name)
    return MediaFile(
        filename=path.name,
        content_type=content_type or "application/octet-stream",
        data=path.read_bytes()
    )


def show_task(task: Optional[Task]):
    """Print a short task summary"""
    if task is None:
        print("📭 No active task")
        return

    print(f"📋 Task: {task.id}")
    if task.name:
        print(f"📺 Name: {task.name}")
    print(f"📊 Status: {task.transcription_status.value}")
    if task.media and task.media.name:
        print(f"🎵 Media: {task.media.name}")
    if task.transcription_result:
        print(f"📝 Transcript: {len(task.transcription_result):,} characters")
    if task.summary:
        print(f"🤖 Summary: {len(task.summary):,} characters")


def show_segments(text: Optional[str]):
    for segment in parse_transcript_segments(text):
        start = format_recording_time(segment.start_time)
        end = format_recording_time(segment.end_time)
        print(f"[{start} → {end}] {segment.text}")


def report(state: ViewState) -> int:
    """Print the final view state; returns the process exit code"""
    print("=" * 60)
    show_task(state.task)

    if state.show_upgrade_prompt:
        print("\n💳 Out of credits. Upgrade your plan to continue.")
        return 1
    if state.error:
        print(f"\n❌ {state.error}")
        return 1
    return 0


async def run_task_command(args: argparse.Namespace, orchestrator: TaskOrchestrator) -> int:
    task = await orchestrator.api.fetch_task_by_id(orchestrator.context.token, args.task_id)
    orchestrator.init(task)

    if args.command == "upload":
        media = read_media_file(args.file)
        print(f"📤 Uploading {media.filename} ({media.size_bytes / 1024 / 1024:.1f} MB)")
        updated_task = await orchestrator.upload(media)
        if updated_task is not None and args.wait and orchestrator.task.is_in_progress:
            print("⏳ Waiting for processing to finish...")
            await orchestrator.watcher.wait_until_terminal(task.id, orchestrator.generation)

    elif args.command == "transcribe":
        print("🎯 Transcribing attached media...")
        status = await orchestrator.transcribe_now()
        if status is not None:
            print(f"✅ Transcription finished: {status.value}")

    elif args.command == "youtube":
        if await orchestrator.transcribe_youtube(args.url):
            print("🎬 YouTube transcription started")

    elif args.command == "summarize":
        label = f" in {args.language}" if args.language else ""
        if await orchestrator.summarize(args.language):
            print(f"🤖 Summary{label} requested")

    elif args.command == "remove-media":
        await orchestrator.remove_media()

    elif args.command == "export":
        try:
            filepath = orchestrator.export(ExportFormat(args.fmt), args.output_dir)
        except ExportError as e:
            print(f"❌ {e}")
            return 1
        if filepath is None:
            print("⚠️  Nothing to export")
            return 1
        print(f"📄 Exported: {filepath}")
        print(f"📏 File size: {filepath.stat().st_size / 1024:.1f} KB")

    return report(orchestrator.view_state())


async def run(args: argparse.Namespace) -> int:
    context = SessionContext(token=config.auth_token, credits=config.credits)
    if not context.token:
        print("❌ Error: set TSTUDIO_AUTH_TOKEN to your API token")
        return 1

    async with TaskApiClient() as api:
        orchestrator = TaskOrchestrator(context, api)
        try:
            if args.command in TASK_COMMANDS:
                return await run_task_command(args, orchestrator)

            if args.command == "scrape":
                print(f"🔗 Scraping {args.url}")
                await orchestrator.scrape_website(args.url)
            elif args.command == "combine":
                await orchestrator.combine(args.task_ids)
            return report(orchestrator.view_state())

        except ApiError as e:
            logger.error("Task service request failed", command=args.command, error=str(e))
            print(f"\n❌ Task service error: {e}")
            return 1
        finally:
            await orchestrator.teardown()


def main():
    """Main entry point with argument parsing"""
    args = build_parser().parse_args()

    if config.debug:
        print(f"🔧 Debug mode enabled")
        print(f"🌐 API: {config.api.base_url}")
        print()

    if args.command == "segments":
        if not args.file.exists():
            print(f"❌ Error: {args.file} not found")
            sys.exit(1)
        show_segments(args.file.read_text(encoding="utf-8"))
        sys.exit(0)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
