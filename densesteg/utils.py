# -*- coding: utf-8 -*-
"""
Payload codec and image quality metrics

Messages are raw-DEFLATE compressed, cut into 5 byte chunks and each chunk is
Reed-Solomon encoded into a 30 byte codeword. Bits are laid out least
significant bit first.
"""

import logging
import zlib
from math import exp, log10
from typing import List

import torch
from reedsolo import ReedSolomonError, RSCodec
from torch.nn.functional import conv2d

from densesteg.config import CHUNK_SIZE, ENCODED_SIZE, MESSAGE_DELIMITER

logger = logging.getLogger(__name__)

rs = RSCodec(ENCODED_SIZE - CHUNK_SIZE)


class PayloadError(ValueError):
    """Raised when recovered bytes cannot be turned back into a message."""


def bytes_to_bits(data: bytes) -> List[int]:
    result = []
    for byte in data:
        result.extend((byte >> i) & 1 for i in range(8))
    return result


def bits_to_bytes(bits: List[int]) -> bytearray:
    out = bytearray()
    for b in range(0, len(bits), 8):
        out.append(sum(int(bit) << i for i, bit in enumerate(bits[b:b + 8])))
    return out


def compress(data: bytes) -> bytes:
    """Raw DEFLATE stream, no zlib header."""
    compressor = zlib.compressobj(level=6, wbits=-zlib.MAX_WBITS)
    return compressor.compress(bytes(data)) + compressor.flush()


def decompress(data: bytes) -> bytes:
    """Inflate a raw DEFLATE stream; a truncated stream yields what was inflated so far."""
    try:
        return zlib.decompressobj(wbits=-zlib.MAX_WBITS).decompress(bytes(data))
    except zlib.error as e:
        raise PayloadError(f'corrupt deflate stream: {e}') from e


def encode_bytes(data: bytes) -> bytearray:
    """Compress and Reed-Solomon encode chunk by chunk."""
    compressed = compress(data)
    out = bytearray()
    for i in range(0, len(compressed), CHUNK_SIZE):
        out.extend(rs.encode(bytearray(compressed[i:i + CHUNK_SIZE])))
    return out


def decode_bytes(data: bytes) -> bytes:
    """Correct every codeword and inflate the result.

    A codeword that cannot be corrected contributes its first ``CHUNK_SIZE``
    bytes unchanged.
    """
    corrected = bytearray()
    for i in range(0, len(data), ENCODED_SIZE):
        chunk = bytearray(data[i:i + ENCODED_SIZE])
        if len(chunk) > rs.nsym:
            try:
                corrected.extend(rs.decode(chunk)[0][:CHUNK_SIZE])
                continue
            except ReedSolomonError:
                logger.debug('uncorrectable codeword at offset %d', i)
        corrected.extend(chunk[:CHUNK_SIZE])

    return decompress(corrected)


def bytes_to_encoded_bits(data: bytes) -> List[int]:
    return bytes_to_bits(encode_bytes(data))


def encoded_bytes_to_data(data: bytes) -> bytes:
    return decode_bytes(data)


def text_to_bits(text: str) -> List[int]:
    if not isinstance(text, str):
        raise PayloadError(f'expected a string, got {type(text).__name__}')
    return bytes_to_encoded_bits(text.encode('utf-8'))


def bits_to_text(bits: List[int]) -> str:
    return bytes_to_text(bits_to_bytes(bits))


def bytes_to_text(data: bytes) -> str:
    raw = decode_bytes(data)
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise PayloadError(f'payload is not valid UTF-8: {e}') from e


def split_payload(data: bytes, delimiter: bytes = MESSAGE_DELIMITER) -> List[bytes]:
    """Split a recovered byte stream on the message delimiter, dropping empty parts.

    Leading zero bytes are stripped from each part: a message ending in a zero
    byte shifts the delimiter by one and would otherwise misalign the
    codewords of the next repetition.
    """
    parts = (part.lstrip(b'\x00') for part in bytes(data).split(delimiter))
    return [part for part in parts if part]


def gaussian(window_size: int, sigma: float) -> torch.Tensor:
    _exp = [exp(-(x - window_size // 2) ** 2 / float(2 * sigma ** 2)) for x in range(window_size)]
    gauss = torch.tensor(_exp, dtype=torch.float32)
    return gauss / gauss.sum()


def create_window(window_size: int, channel: int) -> torch.Tensor:
    _1D_window = gaussian(window_size, 1.5).unsqueeze(1)
    _2D_window = _1D_window.mm(_1D_window.t()).float().unsqueeze(0).unsqueeze(0)
    window = _2D_window.expand(channel, 1, window_size, window_size).contiguous()
    return window


def _ssim(img1: torch.Tensor, img2: torch.Tensor, window: torch.Tensor,
          window_size: int, channel: int, size_average: bool = True) -> torch.Tensor:
    padding_size = window_size // 2

    mu1 = conv2d(img1, window, padding=padding_size, groups=channel)
    mu2 = conv2d(img2, window, padding=padding_size, groups=channel)

    mu1_sq = mu1.pow(2)
    mu2_sq = mu2.pow(2)
    mu1_mu2 = mu1 * mu2

    sigma1_sq = conv2d(img1 * img1, window, padding=padding_size, groups=channel) - mu1_sq
    sigma2_sq = conv2d(img2 * img2, window, padding=padding_size, groups=channel) - mu2_sq
    sigma12 = conv2d(img1 * img2, window, padding=padding_size, groups=channel) - mu1_mu2

    C1 = 0.01**2
    C2 = 0.03**2

    ssim_map = ((2 * mu1_mu2 + C1) * (2 * sigma12 + C2)) / \
               ((mu1_sq + mu2_sq + C1) * (sigma1_sq + sigma2_sq + C2))

    if size_average:
        return ssim_map.mean()
    return ssim_map.mean(1).mean(1).mean(1)


def ssim(img1: torch.Tensor, img2: torch.Tensor, window_size: int = 11,
         size_average: bool = True) -> torch.Tensor:
    """Structural similarity of two (N, C, H, W) images."""
    (_, channel, _, _) = img1.size()
    window = create_window(window_size, channel)
    window = window.to(device=img1.device, dtype=img1.dtype)
    return _ssim(img1, img2, window, window_size, channel, size_average)


def psnr(cover: torch.Tensor, generated: torch.Tensor) -> float:
    """Peak signal-to-noise ratio for images scaled to [-1, 1]."""
    mse = torch.mean((cover - generated) ** 2).item()
    if mse == 0:
        return float('inf')
    return 10 * log10(4 / mse)
