"""
Pipeline orchestrator.

Single-flight sequencer for one agent session:

    encode WAV -> transcribe -> generate -> synthesize -> publish

It owns the AgentState (no other component writes it), the only busy flag
guarding the ConversationHistory and AgentStats, and the error boundary for
provider and playback failures.
"""
from __future__ import annotations

import asyncio
import time
from array import array
from typing import Callable, Optional, Protocol, Sequence

from logging_setup import get_logger, Component
from observability.events import EventEmitter, Severity, voice_agent_emitter
from .audio import encode_wav
from .config import Voice
from .conversation import ConversationHistory, ConversationMessage, Role
from .errors import PipelineError, classify_error
from .state import AgentState, StateMachine
from .telemetry import StatsTracker


class TranscribeFn(Protocol):
    async def transcribe(self, wav: bytes) -> str: ...


class GenerateFn(Protocol):
    async def generate(self, messages: Sequence[ConversationMessage]) -> str: ...


class SynthesizeFn(Protocol):
    sample_rate: int

    async def synthesize(self, text: str, voice: Voice) -> bytes: ...


class Publisher(Protocol):
    async def publish(self, pcm: bytes, sample_rate: int) -> float: ...


class _Stopped(Exception):
    """Raised inside a run once stop was requested; the run unwinds quietly."""


class PipelineOrchestrator:
    """
    Drives one pipeline run per buffer flush and owns the agent state.

    submit() is synchronous: it either claims the busy flag and schedules a run
    or returns False, leaving the audio with the caller.
    """

    def __init__(
        self,
        *,
        history: ConversationHistory,
        stats: StatsTracker,
        transcriber: TranscribeFn,
        generator: GenerateFn,
        synthesizer: SynthesizeFn,
        publisher: Publisher,
        voice: Voice = Voice.ALLOY,
        sample_rate: int = 16000,
        session_id: str = "unknown",
        emitter: EventEmitter = voice_agent_emitter,
        debug: bool = False,
    ):
        self.session_id = session_id
        self._history = history
        self._stats = stats
        self._transcriber = transcriber
        self._generator = generator
        self._synthesizer = synthesizer
        self._publisher = publisher
        self._voice = voice
        self._sample_rate = sample_rate
        self._emitter = emitter
        self._debug = debug

        self._machine = StateMachine(AgentState.INITIALIZING)
        self._busy = False
        self._stopping = False
        self._task: Optional[asyncio.Task] = None
        self._greeting_task: Optional[asyncio.Task] = None
        self._run_seq = 0
        # Called after every run that leaves the session listening.
        self.on_idle: Optional[Callable[[], None]] = None
        self.logger = get_logger(Component.ORCHESTRATOR, session_id=session_id)

    # --- State ---

    @property
    def state(self) -> AgentState:
        return self._machine.state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def accepting(self) -> bool:
        """True when a flush would start a run right now."""
        return not self._busy and not self._stopping and self.state == AgentState.LISTENING

    def _set_state(self, new_state: AgentState) -> None:
        old_state = self._machine.transition_to(new_state)
        if old_state == new_state:
            return
        self._stats.on_state_change(old_state, new_state)
        self.logger.debug("State changed", from_state=old_state.value, to_state=new_state.value)
        self._emitter.state_changed(self.session_id, old_state.value, new_state.value)

    def mark_ready(self) -> None:
        self._set_state(AgentState.READY)

    def mark_listening(self) -> None:
        self._set_state(AgentState.LISTENING)

    def mark_failed(self) -> None:
        """start() could not bring the session up."""
        self._set_state(AgentState.ERROR)

    def mark_disconnected(self) -> None:
        self._set_state(AgentState.DISCONNECTED)

    # --- Pipeline ---

    def submit(self, pcm: array) -> bool:
        """Start a pipeline run for a flushed buffer snapshot unless one is in flight."""
        if not self.accepting:
            return False
        self._busy = True
        self._run_seq += 1
        run_id = f"run_{self._run_seq}"
        self._set_state(AgentState.PROCESSING)
        self._task = asyncio.create_task(self._run(pcm, run_id), name=f"pipeline-{self.session_id}-{run_id}")
        self._task.add_done_callback(self._run_done)
        return True

    def _guard(self) -> None:
        """No history/stats mutation once cancellation was requested."""
        if self._stopping:
            raise _Stopped()

    async def _run(self, pcm: array, run_id: str) -> None:
        log = self.logger
        stage = "encode"
        self._stats.touch()
        try:
            wav = encode_wav(pcm, self._sample_rate)
            log.debug("Processing audio buffer", correlation_id=run_id, samples=len(pcm), wav_bytes=len(wav))
            self._emitter.emit(
                "audio.flushed",
                self.session_id,
                severity=Severity.DEBUG,
                correlation_id=run_id,
                samples=len(pcm),
                duration_ms=int(len(pcm) * 1000 / self._sample_rate),
            )

            stage = "transcribe"
            t_start = time.perf_counter()
            transcription = await self._transcriber.transcribe(wav)
            self._guard()
            self._emitter.transcript(
                self.session_id,
                run_id,
                transcription.strip(),
                latency_ms=int((time.perf_counter() - t_start) * 1000),
            )
            if not transcription.strip():
                log.debug("Empty transcription, skipping", correlation_id=run_id)
                return

            log.debug_pii("Transcription", transcript=transcription)
            self._history.append(Role.USER, transcription)
            self._stats.touch()

            stage = "generate"
            t_start = time.perf_counter()
            reply = await self._generator.generate(self._history.context())
            self._guard()
            self._history.append(Role.ASSISTANT, reply)
            self._stats.record_message()
            self._emitter.emit(
                "llm.response",
                self.session_id,
                correlation_id=run_id,
                reply_length=len(reply),
                latency_ms=int((time.perf_counter() - t_start) * 1000),
            )
            log.debug_pii("Assistant reply", reply=reply)

            await self._say(reply, run_id)
            stage = "done"
        except _Stopped:
            log.debug("Pipeline run stopped", correlation_id=run_id, stage=stage)
        except asyncio.CancelledError:
            log.debug("Pipeline run cancelled", correlation_id=run_id, stage=stage)
            raise
        except Exception as e:
            if isinstance(e, PipelineError):
                stage = e.stage
            self._handle_error(stage, e, run_id)
        finally:
            self._busy = False
            if not self._stopping and not self._machine.is_terminal():
                # Also resets ERROR -> LISTENING right after a failed run.
                self._set_state(AgentState.LISTENING)

    def _run_done(self, task: asyncio.Task) -> None:
        if self.on_idle is not None and self.accepting:
            self.on_idle()

    async def _say(self, text: str, run_id: str) -> float:
        """Synthesize and publish one utterance; returns the measured playback time."""
        t_start = time.perf_counter()
        audio = await self._synthesizer.synthesize(text, self._voice)
        self._guard()
        self._emitter.emit(
            "tts.completed",
            self.session_id,
            correlation_id=run_id,
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )

        if self.state == AgentState.PROCESSING:
            self._set_state(AgentState.SPEAKING)
        played = await self._publisher.publish(audio, self._synthesizer.sample_rate)
        self._guard()
        self._stats.record_speech(played)
        self._emitter.emit(
            "playback.completed",
            self.session_id,
            correlation_id=run_id,
            playback_ms=int(played * 1000),
        )
        return played

    def _handle_error(self, stage: str, error: Exception, run_id: str) -> None:
        category = classify_error(error)
        if not self._stopping:
            self._stats.record_error()
        self.logger.error(
            "Pipeline run failed",
            correlation_id=run_id,
            stage=stage,
            category=category,
            error=str(error),
            error_type=type(error).__name__,
            status=getattr(error, "status", None),
            exc_info=self._debug or not isinstance(error, PipelineError),
        )
        self._emitter.pipeline_error(
            self.session_id,
            run_id,
            stage=stage,
            category=category,
            status=getattr(error, "status", None),
        )
        if self.state in (AgentState.PROCESSING, AgentState.SPEAKING):
            self._set_state(AgentState.ERROR)

    async def play_greeting(self, text: str) -> bool:
        """
        Speak the greeting while READY, holding the busy flag so no flush starts.

        Best-effort: a failure is logged and counted, never raised. abort()
        interrupts it like a pipeline run; it then returns False.
        """
        if self._busy or self._stopping or not text:
            return False
        self._busy = True
        task = asyncio.create_task(self._say(text, "greeting"), name=f"greeting-{self.session_id}")
        self._greeting_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._busy = False
            self._greeting_task = None

        if task.cancelled():
            self.logger.debug("Greeting interrupted")
            return False
        error = task.exception()
        if error is None:
            return True
        if isinstance(error, _Stopped):
            self.logger.debug("Greeting interrupted")
            return False
        if not self._stopping:
            self._stats.record_error()
        self.logger.warning(
            "Greeting not played",
            category=classify_error(error),
            error=str(error),
            error_type=type(error).__name__,
            exc_info=error if self._debug else None,
        )
        return False

    # --- Cancellation ---

    def abort(self) -> None:
        """Request cancellation of the in-flight run and greeting (non-blocking)."""
        self._stopping = True
        for task in (self._task, self._greeting_task):
            if task is not None and not task.done():
                task.cancel()

    async def cancel(self) -> None:
        """Abort in-flight work and wait until it has unwound."""
        self.abort()
        await self.join()

    async def join(self) -> None:
        """Wait for the in-flight run and greeting, if any, to finish."""
        pending = [t for t in (self._task, self._greeting_task) if t is not None and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
