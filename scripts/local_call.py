#!/usr/bin/env python3
"""Practice call from the terminal - talk to a persona using your microphone.

Uses:
- Deepgram (or the configured relay) for speech-to-text
- Groq LLM for the persona's replies
- ElevenLabs or Edge TTS for the persona's voice

Press Ctrl+C to hang up.
"""

import argparse
import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.config import get_settings
from src.core.events import (
    CallEnded,
    ChannelReconnected,
    ChannelReconnecting,
    Diagnostic,
    InterimCaption,
    StateChanged,
    UtteranceAppended,
)
from src.core.models import Speaker
from src.logging_config import setup_logging
from src.prompts.persona import SCENARIOS, resolve_scenario
from src.services.audio.exceptions import CaptureError
from src.services.audio.microphone import SoundDeviceCapture
from src.services.audio.playback import SoundDevicePlayer
from src.services.factory import build_call_services
from src.services.stt.exceptions import ChannelUnrecoverable


def print_event(event) -> None:
    """Print one session event as a transcript line."""
    if isinstance(event, UtteranceAppended):
        u = event.utterance
        label = "You" if u.speaker is Speaker.USER else "Persona"
        suffix = "  (text only)" if u.text_only else ""
        print(f"\r[{u.offset_seconds:6.1f}s] {label}: {u.text}{suffix}")
    elif isinstance(event, InterimCaption):
        if event.text:
            print(f"\r  ... {event.text}", end="", flush=True)
    elif isinstance(event, StateChanged):
        print(f"\r  [{event.current.name.lower()}]")
    elif isinstance(event, ChannelReconnecting):
        print(f"\r  Reconnecting ({event.attempt}/{event.max_attempts}) in {event.delay_seconds:.0f}s")
    elif isinstance(event, ChannelReconnected):
        print("\r  Reconnected")
    elif isinstance(event, Diagnostic):
        print(f"\r  ! {event.kind}: {event.detail}")
    elif isinstance(event, CallEnded):
        print(f"\nCall ended ({event.reason}) after {event.duration_seconds:.0f}s")
        if event.error:
            print(f"Error: {event.error}")


async def main(args: argparse.Namespace) -> int:
    settings = get_settings()
    setup_logging(level="DEBUG" if args.verbose else "WARNING", enable_file=False)

    scenario = resolve_scenario(
        args.scenario,
        personality=args.personality,
        difficulty=args.difficulty,
    )
    print("=" * 60)
    print(f"Practice call: {scenario.title or 'Property Enquiry'}")
    print(f"Client: {scenario.client_name} ({scenario.client_type}), "
          f"DISC {scenario.personality}, {scenario.difficulty}")
    print("=" * 60)
    print("Speak after the persona finishes. Ctrl+C to hang up.\n")

    services = build_call_services(settings)
    controller = services.create_controller(
        SoundDeviceCapture(device=args.device or settings.capture_device),
        SoundDevicePlayer(),
        source="local",
    )
    events = controller.events()

    async def printer() -> None:
        async for event in events:
            print_event(event)

    printer_task = asyncio.create_task(printer())
    exit_code = 0
    try:
        await controller.start(scenario)
        await controller.wait_ended()
    except (CaptureError, ChannelUnrecoverable) as e:
        print(f"\nCould not start the call: {e}")
        exit_code = 1
    except asyncio.CancelledError:
        pass
    finally:
        await controller.end(reason="user_ended")
        await asyncio.wait_for(printer_task, timeout=2.0)
        await services.close()

    return exit_code


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a practice call on this machine")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        help="Scenario from the catalog (default: generic property enquiry)",
    )
    parser.add_argument("--personality", choices=["D", "I", "S", "C"], help="DISC personality")
    parser.add_argument("--difficulty", choices=["easy", "medium", "hard"], help="Difficulty")
    parser.add_argument("--device", help="Input device name or index")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logs")
    return parser.parse_args()


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main(parse_args())))
    except KeyboardInterrupt:
        print("\nHung up.")
