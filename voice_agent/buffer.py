"""
Rolling audio buffer.

Decouples the realtime capture cadence from the network-bound pipeline cadence:
PCM16 chunks accumulate until their total duration crosses a threshold, then
the orchestrator takes a concatenated snapshot and the buffer starts over.
"""
from array import array
from typing import List, Optional

from logging_setup import get_logger, Component

logger = get_logger(Component.CAPTURE)


class RollingAudioBuffer:
    """Ordered list of PCM16 chunks with a duration-based flush condition."""

    def __init__(
        self,
        sample_rate: int = 16000,
        threshold_seconds: float = 3.0,
        max_seconds: Optional[float] = None,
    ):
        if max_seconds is not None and max_seconds < threshold_seconds:
            raise ValueError("max_seconds must be >= threshold_seconds")
        self.sample_rate = sample_rate
        self.threshold_seconds = threshold_seconds
        self.max_seconds = max_seconds
        self._chunks: List[array] = []
        self._samples = 0

    def __len__(self) -> int:
        """Number of buffered samples."""
        return self._samples

    @property
    def duration(self) -> float:
        return self._samples / self.sample_rate

    @property
    def ready(self) -> bool:
        return self.duration >= self.threshold_seconds

    def append(self, chunk: array) -> None:
        if not chunk:
            return
        self._chunks.append(chunk)
        self._samples += len(chunk)
        if self.max_seconds is not None:
            self._trim()

    def _trim(self) -> None:
        limit = int(self.max_seconds * self.sample_rate)
        dropped = 0
        # Keep at least the newest chunk even if it alone exceeds the cap.
        while self._samples > limit and len(self._chunks) > 1:
            oldest = self._chunks.pop(0)
            self._samples -= len(oldest)
            dropped += len(oldest)
        if dropped:
            logger.warning(
                "Audio buffer over capacity, dropped oldest audio",
                dropped_samples=dropped,
                max_seconds=self.max_seconds,
            )

    def flush(self) -> array:
        """Concatenate all chunks into one snapshot and clear the buffer."""
        chunks, self._chunks = self._chunks, []
        self._samples = 0
        snapshot = array("h")
        for chunk in chunks:
            snapshot.extend(chunk)
        return snapshot

    def clear(self) -> None:
        self._chunks = []
        self._samples = 0
