"""
G.711 mu-law codec and sample-rate conversion between telephony and model audio.

Telephony side: 8 kHz mu-law bytes. Model side: 16 kHz (input) and 24 kHz
(output) little-endian int16 PCM. Every function here is pure; the only shared
state is the read-only lookup tables built at import time.
"""

import base64
import binascii
from dataclasses import dataclass
from enum import Enum

import numpy as np

from voice_bridge.config.constants import (
    MODEL_INPUT_SAMPLE_RATE,
    MODEL_OUTPUT_SAMPLE_RATE,
    TELEPHONY_SAMPLE_RATE,
)
from voice_bridge.exceptions import CodecError

MULAW_BIAS = 0x84
MULAW_CLIP = 32635

PRE_EMPHASIS = 0.4
LOWPASS_TAPS = np.array(
    [0.0595, 0.099, 0.1571, 0.203, 0.2218, 0.203, 0.1571, 0.099, 0.0595],
    dtype=np.float64,
)
DECIMATION_FACTOR = MODEL_OUTPUT_SAMPLE_RATE // TELEPHONY_SAMPLE_RATE


class AudioEncoding(str, Enum):
    """Encoding tag carried by every audio frame."""
    MULAW_8K = "mulaw-8k"
    PCM_16K = "pcm-16k"
    PCM_24K = "pcm-24k"


@dataclass(frozen=True)
class AudioFrame:
    """A chunk of encoded audio travelling through the bridge."""
    encoding: AudioEncoding
    data: bytes

    def __len__(self):
        return len(self.data)


def _build_decode_table() -> np.ndarray:
    table = np.zeros(256, dtype=np.int16)
    for byte in range(256):
        value = ~byte & 0xFF
        sign = value & 0x80
        exponent = (value >> 4) & 0x07
        mantissa = value & 0x0F
        sample = (((mantissa << 3) + MULAW_BIAS) << exponent) - MULAW_BIAS
        table[byte] = -sample if sign else sample
    return table


def _build_exponent_table() -> np.ndarray:
    # Position of the highest set bit of (biased sample >> 7)
    return np.array([max(i.bit_length() - 1, 0) for i in range(256)], dtype=np.int32)


DECODE_TABLE = _build_decode_table()
EXPONENT_TABLE = _build_exponent_table()
DECODE_TABLE.flags.writeable = False
EXPONENT_TABLE.flags.writeable = False


def decode_mulaw(byte: int) -> int:
    """Expand one mu-law byte to a signed 16-bit sample."""
    return int(DECODE_TABLE[byte & 0xFF])


def encode_mulaw(sample: int) -> int:
    """Compress one signed 16-bit sample to a mu-law byte."""
    return int(_encode(np.array([sample], dtype=np.int32))[0])


def _encode(samples: np.ndarray) -> np.ndarray:
    samples = samples.astype(np.int32)
    sign = np.where(samples < 0, 0x80, 0)
    magnitude = np.minimum(np.abs(samples), MULAW_CLIP) + MULAW_BIAS
    exponent = EXPONENT_TABLE[(magnitude >> 7) & 0xFF]
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return (~(sign | (exponent << 4) | mantissa) & 0xFF).astype(np.uint8)


def mulaw_to_pcm16(data: bytes) -> np.ndarray:
    """Decode a buffer of mu-law bytes into int16 samples."""
    return DECODE_TABLE[np.frombuffer(data, dtype=np.uint8)]


def pcm16_to_mulaw(samples: np.ndarray) -> bytes:
    """Encode int16 samples into a buffer of mu-law bytes."""
    return _encode(np.asarray(samples)).tobytes()


def pcm16_from_bytes(data: bytes) -> np.ndarray:
    """View little-endian int16 PCM bytes as samples."""
    if len(data) % 2:
        raise CodecError(f"PCM16 payload has odd length {len(data)}")
    return np.frombuffer(data, dtype="<i2")


def upsample_8k_to_16k(samples: np.ndarray) -> np.ndarray:
    """
    Double the sample rate by linear interpolation.

    Each sample is followed by the half-up rounded average of itself and its
    successor. The last sample has no successor and is repeated.
    """
    samples = np.asarray(samples, dtype=np.int32)
    if samples.size == 0:
        return np.zeros(0, dtype=np.int16)
    out = np.empty(samples.size * 2, dtype=np.int32)
    out[0::2] = samples
    out[1:-1:2] = (samples[:-1] + samples[1:] + 1) >> 1
    out[-1] = samples[-1]
    return out.astype(np.int16)


def downsample_24k_to_8k(samples: np.ndarray) -> np.ndarray:
    """
    Reduce the sample rate by three.

    Applies pre-emphasis, then a 9-tap low-pass FIR centred on each sample
    (taps outside the buffer count as zero), then keeps every third sample.
    Returns floor(n / 3) int16 samples.
    """
    x = np.asarray(samples, dtype=np.float64)
    n = x.size
    keep = n // DECIMATION_FACTOR
    if keep == 0:
        return np.zeros(0, dtype=np.int16)

    emphasized = x.copy()
    emphasized[1:] -= PRE_EMPHASIS * x[:-1]

    half = LOWPASS_TAPS.size // 2
    filtered = np.convolve(emphasized, LOWPASS_TAPS)[half:half + n]

    decimated = filtered[0:keep * DECIMATION_FACTOR:DECIMATION_FACTOR]
    return np.clip(np.rint(decimated), -32768, 32767).astype(np.int16)


def mulaw8k_to_pcm16k(data: bytes) -> bytes:
    """Telephony payload to model input: mu-law 8 kHz -> PCM16 16 kHz."""
    return upsample_8k_to_16k(mulaw_to_pcm16(data)).astype("<i2").tobytes()


def pcm24k_to_mulaw8k(data: bytes) -> bytes:
    """Model output to telephony payload: PCM16 24 kHz -> mu-law 8 kHz."""
    return pcm16_to_mulaw(downsample_24k_to_8k(pcm16_from_bytes(data)))


def decode_base64_audio(payload: str) -> bytes:
    """Decode a base64 audio payload, raising CodecError when malformed."""
    if not isinstance(payload, str):
        raise CodecError("Audio payload must be a base64 string")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CodecError(f"Invalid base64 audio payload: {e}") from e


def encode_base64_audio(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def silence(encoding: AudioEncoding, duration_ms: int) -> AudioFrame:
    """Build a frame of digital silence in the given encoding."""
    if encoding is AudioEncoding.MULAW_8K:
        return AudioFrame(encoding, b"\xff" * (TELEPHONY_SAMPLE_RATE * duration_ms // 1000))
    rate = MODEL_INPUT_SAMPLE_RATE if encoding is AudioEncoding.PCM_16K else MODEL_OUTPUT_SAMPLE_RATE
    return AudioFrame(encoding, b"\x00\x00" * (rate * duration_ms // 1000))
