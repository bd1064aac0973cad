import asyncio

import pytest

from mobile.speechcoach.audio.microphone import MicrophoneError
from mobile.speechcoach.audio.session import AudioSession, SessionError
from mobile.speechcoach.audio.types import SessionState
from mobile.speechcoach.config import GroundTruthMode, SessionConfig
from mobile.speechcoach.services.schemas import TranscriptionResult

SPEECH = 0.5
QUIET = 0.0


def _config(**overrides) -> SessionConfig:
    values = dict(
        fixed_ground_truth="the quick brown fox",
        silence_threshold=0.01,
        silence_delay_ms=100,
        max_segment_duration_ms=600,
        max_total_duration_ms=1000,
        frame_interval_ms=5,
        restart_delay_ms=20,
        audio_format="raw",
    )
    values.update(overrides)
    return SessionConfig(**values)


def speech_then_quiet(speech_s: float):
    return lambda t: SPEECH if t < speech_s else QUIET


async def _run(session: AudioSession, timeout: float = 5.0):
    await session.start_recording()
    return await asyncio.wait_for(session.wait_complete(), timeout)


@pytest.mark.asyncio
async def test_speech_then_silence_yields_one_fixed_segment(scripted_microphone, stub_scorer, stub_transcriber):
    completions = []
    processed = []
    mic = scripted_microphone(speech_then_quiet(0.3))
    scorer = stub_scorer()
    transcriber = stub_transcriber()
    config = _config(on_complete=completions.append, on_segment_processed=processed.append)
    session = AudioSession(config, scorer=scorer, transcriber=transcriber, stream_factory=mic)

    segments = await _run(session)

    assert len(segments) == 1
    segment = segments[0]
    assert segment.has_speech is True
    assert segment.timestamp_ms < 50
    assert segment.score is not None
    assert [call["text"] for call in scorer.calls] == ["the quick brown fox"]
    assert transcriber.calls == []
    assert processed == segments
    assert completions == [segments]
    assert session.state is SessionState.FINISHED
    # Segment was cut by silence, well before its own ceiling.
    assert 0.3 <= segment.audio.duration_s < 0.55


@pytest.mark.asyncio
async def test_segment_ceiling_forces_cut_and_next_segment_starts(scripted_microphone, stub_scorer):
    mic = scripted_microphone(lambda t: SPEECH)
    config = _config(max_segment_duration_ms=300, max_total_duration_ms=800)
    session = AudioSession(config, scorer=stub_scorer(), stream_factory=mic)
    overlaps = []

    async def watch_streams():
        while not session.completed:
            overlaps.append(mic.live_streams)
            await asyncio.sleep(0.003)

    await session.start_recording()
    watcher = asyncio.create_task(watch_streams())
    segments = await asyncio.wait_for(session.wait_complete(), 5)
    await watcher

    assert len(mic.opened) >= 2
    assert 0.3 <= mic.open_times[1] < 0.5
    assert all(opened_at < 0.8 for opened_at in mic.open_times)
    ordered = session.get_segments(chronological=True)
    assert len(ordered) >= 2
    assert ordered[0].timestamp_ms < 50
    assert 300 <= ordered[1].timestamp_ms < 500
    assert ordered[0].audio.duration_s <= 0.4
    assert max(overlaps) <= 1
    assert mic.live_streams == 0


@pytest.mark.asyncio
async def test_silence_only_session_produces_no_segments(scripted_microphone, stub_scorer):
    completions = []
    mic = scripted_microphone(lambda t: QUIET)
    scorer = stub_scorer()
    config = _config(max_total_duration_ms=500, on_complete=completions.append)
    session = AudioSession(config, scorer=scorer, stream_factory=mic)

    segments = await _run(session)

    assert segments == []
    assert completions == [[]]
    assert scorer.calls == []
    assert len(mic.opened) >= 2


@pytest.mark.asyncio
async def test_scoring_failure_keeps_segment(scripted_microphone, stub_scorer):
    mic = scripted_microphone(speech_then_quiet(0.2))
    session = AudioSession(_config(max_total_duration_ms=600), scorer=stub_scorer(fail=True), stream_factory=mic)

    segments = await _run(session)

    assert len(segments) == 1
    assert segments[0].score is None
    assert segments[0].ground_truth == "the quick brown fox"


@pytest.mark.asyncio
async def test_stop_waits_for_slow_scoring(scripted_microphone, stub_scorer):
    pending_at_completion = []
    scorer = stub_scorer(delay=0.5)
    mic = scripted_microphone(lambda t: SPEECH)
    config = _config(
        max_total_duration_ms=5000,
        on_complete=lambda segments: pending_at_completion.append(scorer.pending),
    )
    session = AudioSession(config, scorer=scorer, stream_factory=mic)
    loop = asyncio.get_running_loop()

    await session.start_recording()
    await asyncio.sleep(0.2)
    session.stop_recording()
    stopped_at = loop.time()
    assert session.state is SessionState.FINISHED
    assert session.completed is False

    await asyncio.sleep(0.25)
    assert session.completed is False

    segments = await asyncio.wait_for(session.wait_complete(), 5)
    assert loop.time() - stopped_at >= 0.45
    assert len(segments) == 1
    assert segments[0].score is not None
    assert pending_at_completion == [0]
    assert len(mic.opened) == 1


@pytest.mark.asyncio
async def test_results_are_appended_in_completion_order(scripted_microphone, stub_scorer):
    class SlowFirstTranscriber:
        def __init__(self):
            self.calls = 0

        async def transcribe(self, audio, *, language="en"):
            self.calls += 1
            text = f"utterance {self.calls}"
            if self.calls == 1:
                await asyncio.sleep(0.5)
            return TranscriptionResult(text=text)

    def script(t):
        if t < 0.15:
            return SPEECH
        if 0.35 <= t < 0.5:
            return SPEECH
        return QUIET

    mic = scripted_microphone(script)
    config = _config(
        ground_truth_mode=GroundTruthMode.TRANSCRIBED,
        fixed_ground_truth=None,
        max_total_duration_ms=1000,
    )
    session = AudioSession(config, scorer=stub_scorer(), transcriber=SlowFirstTranscriber(), stream_factory=mic)

    segments = await _run(session)

    assert len(segments) == 2
    assert segments[0].sequence > segments[1].sequence
    assert segments[0].transcription == "utterance 2"
    chronological = session.get_segments(chronological=True)
    assert [s.transcription for s in chronological] == ["utterance 1", "utterance 2"]
    assert session.combined_transcription() == "utterance 2 utterance 1"
    combined = session.combined_audio()
    assert combined is not None
    assert combined.sample_count == sum(s.audio.sample_count for s in segments)


@pytest.mark.asyncio
async def test_microphone_failure_at_start_propagates(scripted_microphone, stub_scorer):
    mic = scripted_microphone(lambda t: SPEECH, fail_from=0)
    session = AudioSession(_config(), scorer=stub_scorer(), stream_factory=mic)
    with pytest.raises(MicrophoneError):
        await session.start_recording()
    assert session.state is SessionState.IDLE
    with pytest.raises(SessionError):
        await session.wait_complete()


@pytest.mark.asyncio
async def test_reacquire_failure_ends_session_early(scripted_microphone, stub_scorer):
    mic = scripted_microphone(speech_then_quiet(0.15), fail_from=1)
    session = AudioSession(_config(max_total_duration_ms=3000), scorer=stub_scorer(), stream_factory=mic)

    segments = await _run(session)

    assert len(segments) == 1
    assert len(mic.opened) == 1
    assert session.elapsed_ms < 1000


@pytest.mark.asyncio
async def test_callback_errors_do_not_break_session(scripted_microphone, stub_scorer):
    def explode(segment):
        raise RuntimeError("ui went away")

    mic = scripted_microphone(speech_then_quiet(0.2))
    config = _config(max_total_duration_ms=600, on_segment_processed=explode)
    session = AudioSession(config, scorer=stub_scorer(), stream_factory=mic)

    segments = await _run(session)
    assert len(segments) == 1


@pytest.mark.asyncio
async def test_session_cannot_start_twice(scripted_microphone, stub_scorer):
    mic = scripted_microphone(lambda t: SPEECH)
    session = AudioSession(_config(), scorer=stub_scorer(), stream_factory=mic)
    await session.start_recording()
    with pytest.raises(SessionError):
        await session.start_recording()
    session.stop_recording()
    session.stop_recording()
    await asyncio.wait_for(session.wait_complete(), 5)


def test_transcription_mode_requires_transcriber(stub_scorer):
    config = _config(ground_truth_mode=GroundTruthMode.TRANSCRIBED)
    with pytest.raises(SessionError):
        AudioSession(config, scorer=stub_scorer())


def test_stop_before_start_is_a_no_op(stub_scorer):
    session = AudioSession(_config(), scorer=stub_scorer())
    session.stop_recording()
    assert session.state is SessionState.IDLE
    assert session.current_volume() == 0.0
    assert session.get_segments() == []


@pytest.mark.asyncio
async def test_is_speaking_follows_active_segment(scripted_microphone, stub_scorer):
    mic = scripted_microphone(speech_then_quiet(0.15))
    session = AudioSession(_config(silence_delay_ms=300, max_total_duration_ms=3000), scorer=stub_scorer(), stream_factory=mic)
    assert session.is_speaking() is False

    await session.start_recording()
    await asyncio.sleep(0.05)
    assert session.is_speaking() is True
    await asyncio.sleep(0.15)
    assert session.state is SessionState.RECORDING
    assert session.is_speaking() is False

    session.stop_recording()
    await asyncio.wait_for(session.wait_complete(), 5)
    assert session.is_speaking() is False
