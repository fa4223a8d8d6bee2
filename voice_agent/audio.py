"""
PCM/WAV codec helpers.

Inbound audio is 16 kHz mono; outbound (synthesized) audio is raw 16-bit
little-endian PCM pushed to LiveKit in fixed frames.
"""
import struct
import sys
from array import array
from typing import Iterable, Iterator

WAV_HEADER_SIZE = 44
BYTES_PER_SAMPLE = 2


def float_to_pcm16(samples: Iterable[float]) -> array:
    """
    Convert float samples to signed 16-bit PCM.

    Each sample is clamped to [-1, 1]; negative values scale by 32768 and
    non-negative values by 32767, then truncate toward zero.
    """
    out = array("h")
    for s in samples:
        s = max(-1.0, min(1.0, s))
        out.append(int(s * 32768) if s < 0 else int(s * 32767))
    return out


def encode_wav(samples: array, sample_rate: int) -> bytes:
    """Wrap mono 16-bit PCM samples in a minimal RIFF/WAVE container."""
    data_size = len(samples) * BYTES_PER_SAMPLE
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,               # fmt chunk size
        1,                # PCM
        1,                # mono
        sample_rate,
        sample_rate * BYTES_PER_SAMPLE,
        BYTES_PER_SAMPLE,  # block align
        16,               # bits per sample
        b"data",
        data_size,
    )
    payload = array("h", samples)
    if sys.byteorder != "little":
        payload.byteswap()
    return header + payload.tobytes()


def pcm16_duration(num_bytes: int, sample_rate: int) -> float:
    """Duration in seconds of mono 16-bit PCM of the given byte length."""
    return (num_bytes // BYTES_PER_SAMPLE) / sample_rate


def iter_pcm_frames(pcm: bytes, sample_rate: int, frame_ms: int = 20) -> Iterator[bytes]:
    """
    Split mono 16-bit PCM into fixed-duration frames.

    The last frame is zero-padded so every frame has the same size.
    """
    frame_bytes = (sample_rate * frame_ms // 1000) * BYTES_PER_SAMPLE
    # Drop a dangling odd byte; it cannot form a sample.
    usable = len(pcm) - (len(pcm) % BYTES_PER_SAMPLE)
    for offset in range(0, usable, frame_bytes):
        chunk = pcm[offset:min(offset + frame_bytes, usable)]
        if len(chunk) < frame_bytes:
            chunk = chunk + b"\x00" * (frame_bytes - len(chunk))
        yield chunk
