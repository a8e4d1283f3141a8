"""
Utility functions for event ids and PCM16 / base64 audio conversion.
"""

import base64
import logging
import secrets
import string
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_letters + string.digits

AudioLike = Union[bytes, bytearray, np.ndarray]


def generate_id(prefix: str, length: int = 21) -> str:
    """
    Generate a random id such as ``evt_Xy12...``.

    Args:
        prefix (str): Prefix to prepend to the id.
        length (int): Total length of the id, prefix included.

    Returns:
        str: Generated id.
    """
    body_length = max(length - len(prefix), 1)
    return prefix + "".join(secrets.choice(ID_ALPHABET) for _ in range(body_length))


def empty_audio() -> np.ndarray:
    return np.zeros(0, dtype=np.int16)


def float_to_16bit_pcm(float32_array: np.ndarray) -> np.ndarray:
    """
    Convert a float32 numpy array to int16 PCM format.

    Args:
        float32_array (np.ndarray): Input array of dtype float32.

    Returns:
        np.ndarray: Output array of dtype int16.
    """
    if float32_array.dtype != np.float32:
        logger.warning("Input array is not float32, attempting conversion.")
        float32_array = float32_array.astype(np.float32)

    int16_array = np.clip(float32_array, -1, 1) * 32767
    return int16_array.astype(np.int16)


def to_int16_array(audio: AudioLike) -> np.ndarray:
    """
    Normalize raw PCM16 bytes, an int16 array or a float array to int16 samples.

    Raises:
        TypeError: If the input is none of the supported shapes.
    """
    if isinstance(audio, (bytes, bytearray)):
        if len(audio) % 2:
            raise ValueError("PCM16 audio must contain an even number of bytes.")
        return np.frombuffer(bytes(audio), dtype=np.int16).copy()
    if isinstance(audio, np.ndarray):
        if audio.dtype == np.int16:
            return audio
        if np.issubdtype(audio.dtype, np.floating):
            return float_to_16bit_pcm(audio)
        return audio.astype(np.int16)
    raise TypeError(f"Unsupported audio type: {type(audio).__name__}")


def base64_to_int16(base64_string: str) -> np.ndarray:
    """
    Decode a base64 string of little-endian PCM16 into int16 samples.

    Args:
        base64_string (str): Base64-encoded input string.

    Returns:
        np.ndarray: Decoded samples as an int16 array.
    """
    try:
        binary_data = base64.b64decode(base64_string)
        return np.frombuffer(binary_data, dtype=np.int16).copy()
    except Exception as e:
        logger.error(f"Failed to decode base64 audio: {e}")
        raise


def array_buffer_to_base64(array_buffer: AudioLike) -> str:
    """
    Encode audio into a base64 string of PCM16 bytes.

    Args:
        array_buffer: Raw bytes or a numpy array (float32 is converted to int16 first).

    Returns:
        str: Base64-encoded string.
    """
    if isinstance(array_buffer, (bytes, bytearray)):
        return base64.b64encode(bytes(array_buffer)).decode("utf-8")
    if array_buffer.dtype == np.float32:
        logger.debug("Converting float32 array to int16 PCM before encoding.")
        array_buffer = float_to_16bit_pcm(array_buffer)
    return base64.b64encode(array_buffer.tobytes()).decode("utf-8")


def merge_int16_arrays(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """
    Merge two int16 numpy arrays into a single array.

    Raises:
        ValueError: If input arrays are not both int16.
    """
    if left.dtype != np.int16 or right.dtype != np.int16:
        logger.error("Attempted to merge arrays that are not int16.")
        raise ValueError("Both arrays must have dtype int16.")
    return np.concatenate((left, right))
