"""Console practice runner: one recording session on the default microphone."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Sequence

from .audio.session import AudioSession
from .audio.types import Segment
from .config import GroundTruthMode
from .services.network import ScoringClient, TranscriptionClient
from .store.settings_store import SettingsStore

DEFAULT_SETTINGS = Path.home() / ".speechcoach" / "settings.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record a pronunciation practice turn and score it.")
    parser.add_argument("--settings", type=Path, default=DEFAULT_SETTINGS, help="Settings JSON path.")
    parser.add_argument("--phrase", help="Score every utterance against this phrase (fixed mode).")
    parser.add_argument("--duration-ms", type=int, help="Total session ceiling in milliseconds.")
    parser.add_argument("--segment-ms", type=int, help="Per-utterance ceiling in milliseconds.")
    parser.add_argument("--threshold", type=float, help="Silence threshold (0-1].")
    parser.add_argument("--delay-ms", type=int, help="Silence needed to end an utterance.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    return parser


def format_segment(segment: Segment) -> str:
    seconds = segment.timestamp_ms / 1000.0
    if segment.score is None:
        return f"[{segment.sequence:02d} @ {seconds:5.1f}s] {segment.ground_truth or '(no text)'}: not scored"
    summary = segment.score.summary()
    overall = summary.get("overall_score")
    overall_text = f"{overall:.0f}" if overall is not None else "n/a"
    line = f"[{segment.sequence:02d} @ {seconds:5.1f}s] {segment.ground_truth}: pronunciation {overall_text}"
    weak = [w.word for w in segment.score.word_scores() if w.quality_score < 70]
    if weak:
        line += f" (practice: {', '.join(weak)})"
    return line


def _overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.phrase:
        overrides["ground_truth_mode"] = GroundTruthMode.FIXED
        overrides["fixed_ground_truth"] = args.phrase
    else:
        overrides["ground_truth_mode"] = GroundTruthMode.TRANSCRIBED
    if args.duration_ms is not None:
        overrides["max_total_duration_ms"] = args.duration_ms
    if args.segment_ms is not None:
        overrides["max_segment_duration_ms"] = args.segment_ms
    if args.threshold is not None:
        overrides["silence_threshold"] = args.threshold
    if args.delay_ms is not None:
        overrides["silence_delay_ms"] = args.delay_ms
    return overrides


async def run_session(args: argparse.Namespace) -> int:
    store = SettingsStore(args.settings)
    config = store.session_config(
        on_segment_processed=lambda segment: print(format_segment(segment), flush=True),
        **_overrides(args),
    )
    scorer = ScoringClient(store)
    transcriber: Optional[TranscriptionClient] = None
    if config.ground_truth_mode is GroundTruthMode.TRANSCRIBED:
        transcriber = TranscriptionClient(store)
    session = AudioSession(config, scorer=scorer, transcriber=transcriber)
    loop = asyncio.get_running_loop()
    try:
        await session.start_recording()
        try:
            loop.add_signal_handler(signal.SIGINT, session.stop_recording)
        except NotImplementedError:
            pass
        print("Listening... press Ctrl+C to stop.", flush=True)
        segments = await session.wait_complete()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass
        await scorer.aclose()
        if transcriber is not None:
            await transcriber.aclose()
    scored = [s for s in segments if s.score is not None]
    print(f"Done: {len(segments)} utterance(s), {len(scored)} scored.")
    if transcriber is not None and session.combined_transcription():
        print(f"Heard: {session.combined_transcription()}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run_session(args))


if __name__ == "__main__":
    raise SystemExit(main())
