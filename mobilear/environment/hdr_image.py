"""
hdr_image.py - HDR 바이너리 블롭 (envmap.hdr)

형식 (리틀 엔디안):
    int32 width, int32 height, uint64 stride
    stride * height 바이트의 행 우선 float32 픽셀 데이터

stride는 행당 바이트 수이며 패딩을 포함할 수 있습니다.

Version: 1.0
Author: FurSys AI Team
"""

import struct
import numpy as np
from pathlib import Path
from dataclasses import dataclass
from typing import Union
import logging

from ..exceptions import HDRFormatError

logger = logging.getLogger(__name__)

HEADER = struct.Struct('<iiQ')


@dataclass(frozen=True)
class HDRImage:
    """
    HDR 이미지 블롭

    Attributes:
        width: 가로 픽셀
        height: 세로 픽셀
        stride: 행당 바이트 수
        data: stride * height 바이트
    """
    width: int
    height: int
    stride: int
    data: bytes

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise HDRFormatError(f"Invalid size {self.width}x{self.height}")
        if len(self.data) != self.stride * self.height:
            raise HDRFormatError(
                f"Data size {len(self.data)} does not match stride*height {self.stride * self.height}"
            )

    @property
    def channels(self) -> int:
        """행 패딩이 없다고 가정한 채널 수"""
        if self.width == 0:
            return 0
        return self.stride // (self.width * 4)

    @classmethod
    def from_array(cls, img: np.ndarray) -> 'HDRImage':
        """(H, W) 또는 (H, W, C) float 배열에서 생성"""
        arr = np.ascontiguousarray(img, dtype='<f4')
        if arr.ndim == 2:
            arr = arr[:, :, None]
        height, width, channels = arr.shape
        return cls(width=width, height=height, stride=width * channels * 4, data=arr.tobytes())

    def to_array(self, channels: int = 0) -> np.ndarray:
        """
        (H, W, C) float32 배열로 변환

        Args:
            channels: 채널 수 (0이면 stride에서 추정)
        """
        channels = channels or self.channels
        row_bytes = self.width * channels * 4
        if channels <= 0 or row_bytes > self.stride:
            raise HDRFormatError(f"Cannot view {channels} channels with stride {self.stride}")
        rows = np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.stride)
        pixels = np.ascontiguousarray(rows[:, :row_bytes]).view('<f4')
        return pixels.reshape(self.height, self.width, channels).astype(np.float32)

    def to_bytes(self) -> bytes:
        """헤더 + 픽셀 데이터 직렬화"""
        return HEADER.pack(self.width, self.height, self.stride) + self.data

    @classmethod
    def from_bytes(cls, blob: bytes) -> 'HDRImage':
        """블롭 역직렬화"""
        if len(blob) < HEADER.size:
            raise HDRFormatError("HDR blob shorter than header")
        width, height, stride = HEADER.unpack_from(blob, 0)
        size = stride * height
        data = blob[HEADER.size:HEADER.size + size]
        if len(data) != size:
            raise HDRFormatError(f"Truncated HDR blob: expected {size} bytes, got {len(data)}")
        return cls(width=width, height=height, stride=stride, data=bytes(data))

    def save(self, filepath: Union[str, Path]):
        with open(filepath, 'wb') as f:
            f.write(self.to_bytes())
        logger.debug(f"HDR image saved: {filepath} ({self.width}x{self.height})")

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> 'HDRImage':
        with open(filepath, 'rb') as f:
            return cls.from_bytes(f.read())
