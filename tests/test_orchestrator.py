"""Pipeline orchestrator: sequencing, single-flight, error containment, cancellation."""
import asyncio
from array import array

import pytest

from observability.event_store import event_store
from voice_agent.buffer import RollingAudioBuffer
from voice_agent.capture import AudioIngest
from voice_agent.config import Voice
from voice_agent.conversation import ConversationHistory, Role
from voice_agent.errors import GenerationError, PlaybackError, SynthesisError, TranscriptionError
from voice_agent.orchestrator import PipelineOrchestrator
from voice_agent.state import AgentState
from voice_agent.telemetry import StatsTracker


class FakeTranscriber:
    def __init__(self, text="hello", error=None, gate=None):
        self.text = text
        self.error = error
        self.gate = gate
        self.calls = []

    async def transcribe(self, wav):
        self.calls.append(wav)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.text


class FakeGenerator:
    def __init__(self, reply="Hi! How can I help?", error=None, gate=None):
        self.reply = reply
        self.error = error
        self.gate = gate
        self.calls = []

    async def generate(self, messages):
        self.calls.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class FakeSynthesizer:
    sample_rate = 24000

    def __init__(self, audio=b"\x00\x00" * 2400, error=None):
        self.audio = audio
        self.error = error
        self.calls = []

    async def synthesize(self, text, voice):
        self.calls.append((text, voice))
        if self.error is not None:
            raise self.error
        return self.audio


class FakePublisher:
    def __init__(self, played=0.1, error=None, gate=None):
        self.played = played
        self.error = error
        self.gate = gate
        self.calls = []

    async def publish(self, pcm, sample_rate):
        self.calls.append((pcm, sample_rate))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.played


class Harness:
    def __init__(self, transcriber=None, generator=None, synthesizer=None, publisher=None, window=10):
        self.history = ConversationHistory("You are helpful.", window=window)
        self.stats = StatsTracker()
        self.transcriber = transcriber or FakeTranscriber()
        self.generator = generator or FakeGenerator()
        self.synthesizer = synthesizer or FakeSynthesizer()
        self.publisher = publisher or FakePublisher()
        self.orchestrator = PipelineOrchestrator(
            history=self.history,
            stats=self.stats,
            transcriber=self.transcriber,
            generator=self.generator,
            synthesizer=self.synthesizer,
            publisher=self.publisher,
            voice=Voice.NOVA,
            session_id="room-test",
        )

    def listening(self):
        self.orchestrator.mark_ready()
        self.orchestrator.mark_listening()
        return self.orchestrator


def pcm(seconds=3.0, rate=16000):
    return array("h", [0] * int(seconds * rate))


@pytest.fixture(autouse=True)
def clear_events():
    event_store.clear()
    yield
    event_store.clear()


@pytest.mark.asyncio
async def test_full_success_cycle():
    h = Harness(publisher=FakePublisher(played=1.25))
    orch = h.listening()

    assert orch.submit(pcm()) is True
    assert orch.state == AgentState.PROCESSING
    await orch.join()

    stats = h.stats.snapshot()
    assert stats.messages_processed == 1
    assert stats.total_speech_time == pytest.approx(1.25)
    assert stats.errors == 0
    assert orch.state == AgentState.LISTENING
    assert not orch.busy

    messages = h.history.snapshot()
    assert [m.role for m in messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
    assert messages[1].content == "hello"
    assert messages[2].content == "Hi! How can I help?"
    assert h.synthesizer.calls == [("Hi! How can I help?", Voice.NOVA)]
    assert h.publisher.calls[0][1] == 24000


@pytest.mark.asyncio
async def test_wav_payload_sent_to_transcriber():
    h = Harness()
    orch = h.listening()
    orch.submit(pcm(3.5))
    await orch.join()
    assert len(h.transcriber.calls[0]) == 44 + 2 * 56000


@pytest.mark.asyncio
async def test_state_passes_through_speaking():
    gate = asyncio.Event()
    h = Harness(publisher=FakePublisher(gate=gate))
    orch = h.listening()
    orch.submit(pcm())
    for _ in range(10):
        await asyncio.sleep(0)

    assert orch.state == AgentState.SPEAKING
    gate.set()
    await orch.join()
    assert orch.state == AgentState.LISTENING


@pytest.mark.asyncio
async def test_blank_transcription_is_skipped():
    h = Harness(transcriber=FakeTranscriber(text="   "))
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    assert len(h.history) == 1
    assert h.stats.snapshot().messages_processed == 0
    assert h.generator.calls == []
    assert orch.state == AgentState.LISTENING


@pytest.mark.asyncio
async def test_generation_error_counts_once_and_recovers():
    h = Harness(generator=FakeGenerator(error=GenerationError("OpenAI API error", status=500)))
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    stats = h.stats.snapshot()
    assert stats.errors == 1
    assert stats.messages_processed == 0
    assert orch.state == AgentState.LISTENING
    assert not orch.busy
    assert all(m.role != Role.ASSISTANT for m in h.history.snapshot())
    assert h.synthesizer.calls == []

    errors = event_store.query(session_id="room-test", event_type="pipeline.error")
    assert len(errors) == 1
    assert errors[0]["stage"] == "generate"
    assert errors[0]["category"] == "provider.server_error"
    assert errors[0]["status"] == 500


@pytest.mark.asyncio
async def test_error_state_is_observed_before_recovery():
    h = Harness(transcriber=FakeTranscriber(error=TranscriptionError("timed out")))
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    transitions = [
        (e["from_state"], e["to_state"])
        for e in event_store.query(session_id="room-test", event_type="agent.state_changed")
    ]
    assert transitions[-2:] == [("processing", "error"), ("error", "listening")]


@pytest.mark.asyncio
async def test_synthesis_error_keeps_assistant_message():
    h = Harness(synthesizer=FakeSynthesizer(error=SynthesisError("no audio")))
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    stats = h.stats.snapshot()
    assert stats.messages_processed == 1
    assert stats.errors == 1
    assert stats.total_speech_time == 0.0
    assert orch.state == AgentState.LISTENING


@pytest.mark.asyncio
async def test_playback_error_from_speaking():
    h = Harness(publisher=FakePublisher(error=PlaybackError("Playback timed out")))
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    assert h.stats.snapshot().errors == 1
    assert orch.state == AgentState.LISTENING


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained():
    h = Harness(generator=FakeGenerator(error=KeyError("choices")))
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    assert h.stats.snapshot().errors == 1
    assert orch.state == AgentState.LISTENING


@pytest.mark.asyncio
async def test_single_flight():
    gate = asyncio.Event()
    h = Harness(transcriber=FakeTranscriber(gate=gate))
    orch = h.listening()

    assert orch.submit(pcm()) is True
    assert orch.submit(pcm()) is False
    assert not orch.accepting
    gate.set()
    await orch.join()

    assert len(h.transcriber.calls) == 1
    assert orch.accepting


@pytest.mark.asyncio
async def test_submit_rejected_unless_listening():
    h = Harness()
    assert h.orchestrator.submit(pcm()) is False
    h.orchestrator.mark_ready()
    assert h.orchestrator.submit(pcm()) is False


@pytest.mark.asyncio
async def test_context_window_and_system_identity():
    h = Harness(window=4)
    orch = h.listening()
    system = h.history.system_message
    for _ in range(5):
        orch.submit(pcm())
        await orch.join()

    last_context = h.generator.calls[-1]
    assert len(last_context) == 5
    assert last_context[0] is system
    assert h.history.snapshot()[0] is system
    assert h.stats.snapshot().messages_processed == 5


@pytest.mark.asyncio
async def test_cancel_mid_generation_leaves_history_and_stats_untouched():
    gate = asyncio.Event()
    h = Harness(generator=FakeGenerator(gate=gate))
    orch = h.listening()
    orch.submit(pcm())
    for _ in range(10):
        await asyncio.sleep(0)
    assert len(h.generator.calls) == 1

    await orch.cancel()

    stats = h.stats.snapshot()
    assert stats.messages_processed == 0
    assert stats.errors == 0
    assert all(m.role != Role.ASSISTANT for m in h.history.snapshot())
    assert h.synthesizer.calls == []
    assert not orch.busy
    assert not orch.accepting


@pytest.mark.asyncio
async def test_cancel_mid_playback_records_no_speech():
    gate = asyncio.Event()
    h = Harness(publisher=FakePublisher(gate=gate, played=2.0))
    orch = h.listening()
    orch.submit(pcm())
    for _ in range(10):
        await asyncio.sleep(0)

    await orch.cancel()
    orch.mark_disconnected()

    assert h.stats.snapshot().total_speech_time == 0.0
    assert orch.state == AgentState.DISCONNECTED


@pytest.mark.asyncio
async def test_events_emitted_for_success():
    h = Harness()
    orch = h.listening()
    orch.submit(pcm())
    await orch.join()

    types = [e["event_type"] for e in event_store.query(session_id="room-test")]
    for expected in ("audio.flushed", "stt.final", "llm.response", "tts.completed", "playback.completed"):
        assert expected in types
    stt = event_store.query(session_id="room-test", event_type="stt.final")[0]
    assert stt["correlation_id"] == "run_1"
    assert stt["pii"]["contains_pii"] is True


@pytest.mark.asyncio
async def test_greeting_plays_while_ready():
    h = Harness(publisher=FakePublisher(played=0.8))
    orch = h.orchestrator
    orch.mark_ready()

    assert await orch.play_greeting("Hello!") is True
    assert orch.state == AgentState.READY
    assert h.synthesizer.calls == [("Hello!", Voice.NOVA)]
    assert h.stats.snapshot().total_speech_time == pytest.approx(0.8)
    assert len(h.history) == 1


@pytest.mark.asyncio
async def test_greeting_failure_is_best_effort():
    h = Harness(synthesizer=FakeSynthesizer(error=SynthesisError("down", status=503)))
    orch = h.orchestrator
    orch.mark_ready()

    assert await orch.play_greeting("Hello!") is False
    assert h.stats.snapshot().errors == 1
    assert orch.state == AgentState.READY
    assert not orch.busy


@pytest.mark.asyncio
async def test_three_and_a_half_seconds_of_frames_reach_transcriber():
    """Capture through ingest: one flush, one WAV of 44 + 2 * 56000 bytes."""
    h = Harness()
    orch = h.listening()
    ingest = AudioIngest(RollingAudioBuffer(sample_rate=16000, threshold_seconds=3.0), orch)
    ingest.start()
    try:
        for _ in range(35):
            ingest.push_frame([0.0] * 1600)
        for _ in range(5):
            await asyncio.sleep(0)
        await orch.join()
    finally:
        await ingest.aclose()

    assert ingest.flushes == 1
    assert [len(w) for w in h.transcriber.calls] == [112044]


@pytest.mark.asyncio
async def test_abort_interrupts_greeting():
    gate = asyncio.Event()
    h = Harness(publisher=FakePublisher(gate=gate, played=0.8))
    orch = h.orchestrator
    orch.mark_ready()

    greeting = asyncio.create_task(orch.play_greeting("Hello!"))
    for _ in range(10):
        await asyncio.sleep(0)
    assert len(h.publisher.calls) == 1

    await orch.cancel()

    assert await greeting is False
    assert h.stats.snapshot().errors == 0
    assert h.stats.snapshot().total_speech_time == 0.0
    assert not orch.busy


@pytest.mark.asyncio
async def test_stop_between_stages_ends_run_without_cancelling_task():
    h = Harness()
    orch = h.listening()

    async def transcribe_then_stop(wav):
        # stop requested while the provider call was finishing
        orch._stopping = True
        return "hello"

    h.transcriber.transcribe = transcribe_then_stop
    orch.submit(pcm())
    task = orch._task
    await orch.join()

    assert not task.cancelled()
    assert task.exception() is None
    assert len(h.history) == 1
    assert h.stats.snapshot().errors == 0
    assert not orch.busy


@pytest.mark.asyncio
async def test_on_idle_called_after_run():
    h = Harness()
    orch = h.listening()
    idle = []
    orch.on_idle = lambda: idle.append(orch.state)

    orch.submit(pcm())
    await orch.join()
    await asyncio.sleep(0)

    assert idle == [AgentState.LISTENING]


@pytest.mark.asyncio
async def test_audio_retained_while_busy_flushes_when_run_ends():
    """A buffer that filled up during a run is handed over without waiting for new frames."""
    gate = asyncio.Event()
    h = Harness(transcriber=FakeTranscriber(gate=gate))
    orch = h.listening()
    ingest = AudioIngest(RollingAudioBuffer(sample_rate=16000, threshold_seconds=3.0), orch)
    orch.on_idle = ingest.check_flush
    ingest.start()
    try:
        for _ in range(30):
            ingest.push_frame([0.0] * 1600)
        for _ in range(5):
            await asyncio.sleep(0)
        assert ingest.flushes == 1

        # Capture keeps going while the first run is busy, then goes silent.
        for _ in range(30):
            ingest.push_frame([0.0] * 1600)
        for _ in range(5):
            await asyncio.sleep(0)
        assert ingest.flushes == 1
        assert ingest.buffer.ready

        gate.set()
        for _ in range(20):
            await asyncio.sleep(0)
        await orch.join()
        await asyncio.sleep(0)
        await orch.join()
    finally:
        await ingest.aclose()

    assert ingest.flushes == 2
    assert len(h.transcriber.calls) == 2
