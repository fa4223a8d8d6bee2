"""
Voice agent worker: one live conversation in one LiveKit room.

Owns the room connection, conversation history, rolling buffer, agent state
(via the orchestrator) and stats. start() joins the room and greets; stop()
aborts the in-flight pipeline run, releases every track subscription and
leaves the room.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Dict, List, Optional

from logging_setup import get_logger, Component
from .buffer import RollingAudioBuffer
from .capture import AudioCaptureTap, AudioIngest
from .config import AgentConfig
from .conversation import ConversationHistory, ConversationMessage
from .errors import ConfigError, RoomConnectionError
from .openai_client import OpenAIClients
from .orchestrator import PipelineOrchestrator
from .room import Disconnected, RoomConnector, RoomEvent, TrackSubscribed, TrackUnsubscribed
from .state import AgentState
from .telemetry import AgentStats, StatsTracker

logger = get_logger(Component.VOICE_AGENT)


class VoiceAgentWorker:
    """
    Manages the lifecycle of an AI voice agent in a LiveKit room.

    The provider clients and the room connector are built in start() unless
    injected, so a missing API key fails before any network activity.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        session_id: Optional[str] = None,
        connector: Optional[RoomConnector] = None,
        clients: Optional[OpenAIClients] = None,
        tap_factory=AudioCaptureTap,
    ):
        self.config = config
        self.session_id = session_id or f"agent-{uuid.uuid4().hex[:8]}"
        self.logger = logger.with_session(self.session_id)
        if config.debug:
            self.logger.set_debug(True)

        self._connector = connector
        self._clients = clients
        self._tap_factory = tap_factory
        self._taps: Dict[str, AudioCaptureTap] = {}

        self._history = ConversationHistory(config.system_prompt, window=config.history_window)
        self._stats = StatsTracker()
        self._buffer = RollingAudioBuffer(
            sample_rate=config.sample_rate,
            threshold_seconds=config.flush_threshold_seconds,
            max_seconds=config.max_buffer_seconds,
        )
        self._orchestrator: Optional[PipelineOrchestrator] = None
        self._ingest: Optional[AudioIngest] = None
        self._started = False
        self._stopped = False
        self._closed = asyncio.Event()

        self.logger.debug("Voice agent worker initialized", voice=config.voice.value)

    # --- Observability surface ---

    def get_state(self) -> AgentState:
        if self._orchestrator is None:
            return AgentState.DISCONNECTED if self._stopped else AgentState.INITIALIZING
        return self._orchestrator.state

    def get_stats(self) -> AgentStats:
        return self._stats.snapshot()

    def get_conversation_history(self) -> List[ConversationMessage]:
        return self._history.snapshot()

    @property
    def active_tracks(self) -> List[str]:
        return list(self._taps)

    # --- Lifecycle ---

    async def start(self) -> None:
        """
        Join the room and play the greeting.

        Raises ConfigError (before any connection attempt) when no API key is
        available, RoomConnectionError when the room cannot be joined.
        """
        if self._started:
            raise RuntimeError("Voice agent worker already started")
        self.logger.info("Starting voice agent")

        api_key = self.config.resolve_api_key()
        if not api_key and self._clients is None:
            raise ConfigError(
                "OpenAI API key is required. Set OPENAI_API_KEY or pass api_key in the config."
            )
        if not self.config.server_url or not self.config.session_token:
            raise ConfigError("LiveKit server URL and session token are required")

        self._started = True
        if self._clients is None:
            self._clients = OpenAIClients(self.config, api_key)
        if self._connector is None:
            self._connector = RoomConnector(
                session_id=self.session_id,
                playback_timeout_seconds=self.config.playback_timeout_seconds,
            )

        orchestrator = PipelineOrchestrator(
            history=self._history,
            stats=self._stats,
            transcriber=self._clients.transcriber,
            generator=self._clients.generator,
            synthesizer=self._clients.synthesizer,
            publisher=self._connector,
            voice=self.config.voice,
            sample_rate=self.config.sample_rate,
            session_id=self.session_id,
            debug=self.config.debug,
        )
        self._orchestrator = orchestrator
        self._ingest = AudioIngest(
            self._buffer,
            orchestrator,
            max_queue=self.config.ingest_queue_size,
            on_drop=self._stats.record_dropped_frame,
            session_id=self.session_id,
        )
        orchestrator.on_idle = self._ingest.check_flush

        try:
            await self._connector.connect(
                self.config.server_url,
                self.config.session_token,
                self._on_room_event,
            )
        except RoomConnectionError:
            orchestrator.mark_failed()
            self._stats.record_error()
            await self._clients.aclose()
            raise

        self._stats.mark_connected()
        orchestrator.mark_ready()
        self._ingest.start()
        self.logger.info("Connected to LiveKit room", room=self._connector.room_name)

        await orchestrator.play_greeting(self.config.greeting_text)
        if not self._stopped and orchestrator.state == AgentState.READY:
            orchestrator.mark_listening()
            # Audio captured during the greeting may already be over the threshold.
            self._ingest.check_flush()

    async def stop(self) -> None:
        """Abort in-flight work, release all tracks and leave the room."""
        if self._stopped:
            return
        self._stopped = True
        self.logger.info("Stopping voice agent")

        if self._orchestrator is not None:
            await self._orchestrator.cancel()

        for sid in list(self._taps):
            await self._close_tap(sid)
        if self._ingest is not None:
            await self._ingest.aclose()

        try:
            if self._connector is not None:
                await self._connector.disconnect()
        except RoomConnectionError as e:
            self.logger.error("Error leaving room", error=str(e), error_type=type(e).__name__)
        finally:
            if self._clients is not None:
                await self._clients.aclose()
            if self._orchestrator is not None:
                self._orchestrator.mark_disconnected()

        self.logger.info("Voice agent stopped", **self._stats.snapshot().to_dict())
        self._closed.set()

    async def wait_closed(self) -> None:
        """Wait until the worker has stopped, by stop() or because the room went away."""
        await self._closed.wait()

    # --- Room events ---

    def _on_room_event(self, event: RoomEvent) -> None:
        if isinstance(event, TrackSubscribed):
            self._open_tap(event)
        elif isinstance(event, TrackUnsubscribed):
            tap = self._taps.pop(event.track_sid, None)
            if tap is not None:
                self._spawn(tap.aclose())
        elif isinstance(event, Disconnected):
            self.logger.warning("Room connection lost", reason=event.reason)
            if self._orchestrator is not None:
                self._orchestrator.mark_disconnected()
                self._orchestrator.abort()
            self._spawn(self.stop())

    def _open_tap(self, event: TrackSubscribed) -> None:
        if self._stopped or event.track_sid in self._taps or self._ingest is None:
            return
        tap = self._tap_factory(
            event.track,
            self._ingest,
            participant_identity=event.participant_identity,
            sample_rate=self.config.sample_rate,
        )
        self._taps[event.track_sid] = tap
        tap.start()

    async def _close_tap(self, track_sid: str) -> None:
        tap = self._taps.pop(track_sid, None)
        if tap is not None:
            await tap.aclose()

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        task.add_done_callback(self._log_task_failure)

    def _log_task_failure(self, task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(
                "Background cleanup failed",
                error=str(task.exception()),
                error_type=type(task.exception()).__name__,
            )


async def spawn_voice_agent_worker(config: AgentConfig, **kwargs) -> VoiceAgentWorker:
    """Create a worker and start it."""
    worker = VoiceAgentWorker(config, **kwargs)
    await worker.start()
    return worker
