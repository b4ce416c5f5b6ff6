#!/usr/bin/env python3
"""
ClinicScribe session recorder

Records a session from the microphone (or takes an existing audio file),
uploads and transcribes it, then lets you review, edit and save the report
from the terminal.

Usage:
    python scripts/record_report.py --patient-id P1
    python scripts/record_report.py --patient-id P1 --backend local --storage local
    python scripts/record_report.py --patient-id P1 --file consulta.webm
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure project root is on sys.path for ``src`` imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.core.config import get_settings  # noqa: E402
from src.core.exceptions import ClinicScribeError, DeviceError  # noqa: E402
from src.core.models import RecorderState  # noqa: E402
from src.core.utils import format_duration  # noqa: E402
from src.services.backend import create_backend  # noqa: E402
from src.services.pipeline import (  # noqa: E402
    AudioReportPipeline,
    PipelineState,
    RecoveryAction,
    Stage,
    build_pipeline,
)
from src.services.storage.blob_store import create_blob_store  # noqa: E402
from src.services.storage.database import init_db  # noqa: E402

logger = logging.getLogger(__name__)

RECORD_HELP = "[Enter] stop  [p] pause/resume  [r] restart  [d] discard"
REVIEW_HELP = "[s] save  [e] replace text  [a] append text  [t] template  [c] copy  [q] cancel"


async def prompt(text: str) -> str:
    return (await asyncio.to_thread(input, text)).strip()


def show_state(state: PipelineState) -> None:
    if state.stage is Stage.uploading:
        print(f"\r  Uploading... {state.upload_progress:3d}%", end="", flush=True)
        return
    if state.stage is Stage.uploaded:
        print()
    print(f"  -> {state.stage}")


async def start_microphone(pipeline: AudioReportPipeline, restart: bool = False) -> bool:
    """Start (or restart) the take, offering retries while the microphone is unavailable."""
    action = pipeline.restart_recording if restart else pipeline.start_recording
    while True:
        try:
            await action()
            return True
        except DeviceError as exc:
            print(f"Error: {exc.detail}")
        answer = await prompt("Retry starting the microphone? [Y/n] ")
        if answer.lower() == "n":
            return False
        action = pipeline.start_recording


async def record(pipeline: AudioReportPipeline) -> bool:
    """Run the recording loop. Returns False if the take was discarded or never started."""
    if not await start_microphone(pipeline):
        return False
    print(f"Recording. {RECORD_HELP}")
    while True:
        command = (await prompt(f"[{format_duration(pipeline.recorder.elapsed_seconds)}] ")).lower()
        if command == "":
            return True
        if command == "p":
            if pipeline.recorder.state is RecorderState.paused:
                pipeline.resume()
                print("Resumed.")
            else:
                pipeline.pause()
                print("Paused.")
        elif command == "r":
            if not await start_microphone(pipeline, restart=True):
                return False
            print("Restarted.")
        elif command == "d":
            pipeline.discard_recording()
            print("Recording discarded.")
            return False
        else:
            print(RECORD_HELP)


async def recover(pipeline: AudioReportPipeline) -> bool:
    """Offer retries until the pipeline leaves its failed stage."""
    while pipeline.state.failed and pipeline.state.stage is not Stage.save_failed:
        state = pipeline.state
        print(f"\nError: {state.error.detail}")
        if state.recovery_action is RecoveryAction.restart_recording:
            print("This recording cannot be uploaded. Record again.")
            return False
        answer = await prompt(f"{state.recovery_action}? [Y/n] ")
        if answer.lower() == "n":
            return False
        await pipeline.retry()
    return True


async def review(pipeline: AudioReportPipeline) -> int:
    stage = pipeline.review
    print("\nTranscript:\n")
    print(stage.draft.editable_text)
    print(f"\nTemplate: {stage.template.display_name}. {REVIEW_HELP}")
    while True:
        command = (await prompt("> ")).lower()
        if command == "s":
            if not stage.can_save:
                print("The report text is empty.")
                continue
            state = await pipeline.save()
            if state.stage is Stage.saved:
                print(f"Report {state.report.id} saved ({state.report.type}).")
                return 0
            print(f"Error: {state.error.detail}")
            answer = await prompt("Retry saving? [Y/n] ")
            if answer.lower() == "n":
                return 1
            state = await pipeline.retry()
            if state.stage is Stage.saved:
                print(f"Report {state.report.id} saved ({state.report.type}).")
                return 0
        elif command == "e":
            pipeline.edit(await prompt("New text: "))
        elif command == "a":
            pipeline.edit(stage.draft.editable_text + await prompt("Append: "))
        elif command == "t":
            for index, template in enumerate(stage.templates, start=1):
                print(f"  {index}. {template.display_name} ({template.id})")
            choice = await prompt("Template number: ")
            if choice.isdigit() and 1 <= int(choice) <= len(stage.templates):
                pipeline.select_template(stage.templates[int(choice) - 1].id)
                print(f"Template: {stage.template.display_name}")
        elif command == "c":
            try:
                pipeline.copy_to_clipboard()
                print("Copied to clipboard.")
            except ClinicScribeError as exc:
                print(f"Error: {exc.detail}")
        elif command == "q":
            await pipeline.cancel()
            print("Review cancelled; nothing was saved.")
            return 1
        else:
            print(REVIEW_HELP)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    backend_provider = args.backend or settings.backend_provider
    if backend_provider == "local":
        await init_db()

    backend = create_backend(backend_provider)
    store = create_blob_store(args.storage or settings.storage_provider)
    pipeline = await build_pipeline(
        args.patient_id,
        args.appointment_id,
        backend=backend,
        store=store,
        language=args.language,
        default_template_id=args.template,
        notify=show_state,
    )
    async with backend, pipeline:
        try:
            if args.file:
                await pipeline.load_file(args.file)
            elif not await record(pipeline):
                return 1
        except ClinicScribeError as exc:
            print(f"Error: {exc.detail}")
            return 1

        await pipeline.finish()
        if not await recover(pipeline):
            return 1
        if pipeline.state.stage is not Stage.reviewing:
            return 1
        return await review(pipeline)


def main() -> int:
    """Entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Record a clinical session and turn it into a report"
    )
    parser.add_argument("--patient-id", required=True, help="Patient the session belongs to")
    parser.add_argument("--appointment-id", default=None, help="Optional appointment id")
    parser.add_argument("--backend", choices=["http", "local"], default=None)
    parser.add_argument("--storage", choices=["http", "local"], default=None)
    parser.add_argument("--language", default=None, help="Transcription language hint")
    parser.add_argument("--template", default=None, help="Initial report template id")
    parser.add_argument(
        "--file", default=None, help="Use an existing audio file instead of the microphone"
    )
    args = parser.parse_args()

    logging.basicConfig(level=get_settings().log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
