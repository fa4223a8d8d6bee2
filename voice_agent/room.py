"""
LiveKit room connector.

Owns the realtime transport for one agent session: connecting, translating
room callbacks into RoomEvent variants for a single handler, and publishing
synthesized PCM back into the room as the agent's microphone track.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from livekit import rtc

from logging_setup import get_logger, Component
from .audio import iter_pcm_frames, pcm16_duration
from .errors import PlaybackError, RoomConnectionError

PUBLISH_SAMPLE_RATE = 24000
FRAME_MS = 20


@dataclass(frozen=True)
class TrackSubscribed:
    track: Any  # rtc.RemoteAudioTrack
    track_sid: str
    participant_identity: str


@dataclass(frozen=True)
class TrackUnsubscribed:
    track_sid: str
    participant_identity: str


@dataclass(frozen=True)
class Disconnected:
    reason: Optional[str] = None


RoomEvent = Union[TrackSubscribed, TrackUnsubscribed, Disconnected]
RoomEventHandler = Callable[[RoomEvent], None]


def _is_audio(track: Any) -> bool:
    return getattr(track, "kind", None) == rtc.TrackKind.KIND_AUDIO


class RoomConnector:
    """
    LiveKit transport for one agent session.

    publish() resolves only after the audio has been played out, which makes
    the agent half-duplex: the orchestrator holds its busy flag until then.
    """

    def __init__(
        self,
        *,
        session_id: str = "unknown",
        sample_rate: int = PUBLISH_SAMPLE_RATE,
        playback_timeout_seconds: float = 60.0,
        room_factory: Callable[[], Any] = rtc.Room,
    ):
        self.sample_rate = sample_rate
        self.playback_timeout_seconds = playback_timeout_seconds
        self._room_factory = room_factory
        self._room: Optional[Any] = None
        self._source: Optional[rtc.AudioSource] = None
        self._local_track: Optional[rtc.LocalAudioTrack] = None
        self._handler: Optional[RoomEventHandler] = None
        self.logger = get_logger(Component.ROOM, session_id=session_id)

    @property
    def connected(self) -> bool:
        return self._room is not None

    @property
    def room_name(self) -> Optional[str]:
        return getattr(self._room, "name", None) if self._room else None

    async def connect(self, server_url: str, token: str, on_event: RoomEventHandler) -> None:
        if self._room is not None:
            raise RoomConnectionError("Room already connected")
        self._handler = on_event
        room = self._room_factory()
        room.on("track_subscribed", self._on_track_subscribed)
        room.on("track_unsubscribed", self._on_track_unsubscribed)
        room.on("participant_connected", self._on_participant_connected)
        room.on("participant_disconnected", self._on_participant_disconnected)
        room.on("disconnected", self._on_disconnected)

        try:
            await room.connect(server_url, token, options=rtc.RoomOptions(auto_subscribe=True))
        except Exception as e:
            self._handler = None
            raise RoomConnectionError(f"Failed to connect to LiveKit room: {e}") from e

        self._room = room
        self.logger.info("Connected to LiveKit room", room=getattr(room, "name", None))

        try:
            await self._publish_local_track()
        except Exception as e:
            await self.disconnect()
            raise RoomConnectionError(f"Failed to publish agent audio track: {e}") from e

    async def _publish_local_track(self) -> None:
        self._source = rtc.AudioSource(self.sample_rate, 1)
        self._local_track = rtc.LocalAudioTrack.create_audio_track("agent-voice", self._source)
        options = rtc.TrackPublishOptions()
        options.source = rtc.TrackSource.SOURCE_MICROPHONE
        await self._room.local_participant.publish_track(self._local_track, options)
        self.logger.debug("Agent audio track published", sample_rate=self.sample_rate)

    # --- Room callbacks ---

    def _dispatch(self, event: RoomEvent) -> None:
        if self._handler is None:
            return
        try:
            self._handler(event)
        except Exception as e:
            # Callbacks run inside the LiveKit event loop; never let them raise there.
            self.logger.error(
                "Room event handler failed",
                event=type(event).__name__,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def _on_track_subscribed(self, track: Any, publication: Any, participant: Any) -> None:
        if not _is_audio(track):
            return
        self.logger.debug("Audio track subscribed", participant_identity=participant.identity)
        self._dispatch(TrackSubscribed(
            track=track,
            track_sid=track.sid,
            participant_identity=participant.identity,
        ))

    def _on_track_unsubscribed(self, track: Any, publication: Any, participant: Any) -> None:
        if not _is_audio(track):
            return
        self.logger.debug("Audio track unsubscribed", participant_identity=participant.identity)
        self._dispatch(TrackUnsubscribed(track_sid=track.sid, participant_identity=participant.identity))

    def _on_participant_connected(self, participant: Any) -> None:
        self.logger.debug("Participant connected", participant_identity=participant.identity)

    def _on_participant_disconnected(self, participant: Any) -> None:
        self.logger.debug("Participant disconnected", participant_identity=participant.identity)

    def _on_disconnected(self, *args: Any) -> None:
        reason = str(args[0]) if args else None
        self.logger.info("Room disconnected", reason=reason)
        self._dispatch(Disconnected(reason=reason))

    # --- Outbound audio ---

    async def publish(self, pcm: bytes, sample_rate: int = PUBLISH_SAMPLE_RATE) -> float:
        """
        Play mono 16-bit PCM into the room and wait for playout.

        Returns the measured playback duration in seconds.
        """
        if self._source is None:
            raise PlaybackError("Room not connected")
        if sample_rate != self.sample_rate:
            raise PlaybackError(
                f"Unsupported sample rate {sample_rate}; agent track runs at {self.sample_rate}"
            )

        t_start = time.perf_counter()
        try:
            await asyncio.wait_for(
                self._play(self._source, pcm, sample_rate),
                timeout=self.playback_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PlaybackError("Playback timed out") from e
        except PlaybackError:
            raise
        except Exception as e:
            raise PlaybackError(f"Playback failed: {type(e).__name__}: {e}") from e

        duration = time.perf_counter() - t_start
        self.logger.debug(
            "Playback completed",
            audio_seconds=round(pcm16_duration(len(pcm), sample_rate), 3),
            latency_ms=int(duration * 1000),
        )
        return duration

    @staticmethod
    async def _play(source: Any, pcm: bytes, sample_rate: int) -> None:
        samples_per_frame = sample_rate * FRAME_MS // 1000
        for chunk in iter_pcm_frames(pcm, sample_rate, FRAME_MS):
            frame = rtc.AudioFrame(
                data=chunk,
                sample_rate=sample_rate,
                num_channels=1,
                samples_per_channel=samples_per_frame,
            )
            await source.capture_frame(frame)
        await source.wait_for_playout()

    async def disconnect(self) -> None:
        room, self._room = self._room, None
        self._handler = None
        if room is None:
            return
        try:
            if self._local_track is not None:
                await room.local_participant.unpublish_track(self._local_track.sid)
        except Exception as e:
            self.logger.warning("Failed to unpublish agent track", error=str(e), error_type=type(e).__name__)
        finally:
            self._local_track = None

        if self._source is not None:
            await self._source.aclose()
            self._source = None

        try:
            await room.disconnect()
        except Exception as e:
            raise RoomConnectionError(f"Failed to disconnect from LiveKit room: {e}") from e
        self.logger.info("Left LiveKit room")
