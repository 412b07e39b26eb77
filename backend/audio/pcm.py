"""PCM conversion utilities."""
import numpy as np

from constants import AUDIO_SAMPLE_WIDTH_BYTES
from orchestrator.errors import SynthesisProviderError


def pcm16le_to_int16(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to an int16 sample array.

    Strict: an odd byte count is a truncated sample and the whole
    payload is rejected as malformed. No resampling. No channel mixing.
    """
    if len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise SynthesisProviderError(
            "malformed_payload",
            f"odd PCM16 byte count {len(pcm_bytes)}",
        )
    return np.frombuffer(pcm_bytes, dtype="<i2")
