"""
hdr_builder.py - 다중 노출 HDR 병합 (Debevec & Malik)

채널별로 카메라 응답 곡선 g(z)를 복원한 뒤,
가중 평균 ln E = Σ w(z)(g(z) - ln Δt) / Σ w(z) 로 방사도를 계산합니다.

가중치는 중간 밝기를 신뢰하고 포화/검은 픽셀을 낮추는 삼각 함수:
    w(z) = (z > 127 ? 255 - z : z) / 127

Version: 1.0
Author: FurSys AI Team
"""

import cv2
import numpy as np
from typing import List, Sequence, Tuple
import logging

logger = logging.getLogger(__name__)

LEVELS = 256
WEIGHTS = np.array([(255 - z if z > 127 else z) / 127.0 for z in range(LEVELS)])


class HDRBuilder:
    """
    Debevec 방사도 병합

    Example:
        >>> builder = HDRBuilder()
        >>> hdr = builder.build([(img_short, 1 / 50), (img_long, 1 / 25)])
    """

    def __init__(self, samples: int = 256, smoothness: float = 50.0, seed: int = 0):
        """
        Args:
            samples: 응답 곡선 복원용 샘플 픽셀 수
            smoothness: 곡률 정규화 가중치 λ
            seed: 샘플 위치 난수 시드
        """
        self.samples = samples
        self.smoothness = smoothness
        self.seed = seed

    def build(self, images: Sequence[Tuple[np.ndarray, float]]) -> np.ndarray:
        """
        노출이 다른 8비트 BGR 이미지들을 HDR로 병합

        Args:
            images: (이미지, 노출 시간 초) 목록

        Returns:
            float32 BGR 방사도 이미지
        """
        if len(images) == 0:
            raise ValueError("At least one exposure is required")

        rows, cols = images[0][0].shape[:2]
        channels: List[List[Tuple[np.ndarray, float]]] = [[], [], []]
        for img, exposure in images:
            if img.shape[:2] != (rows, cols):
                raise ValueError("All exposures must be of the same size")
            if img.ndim != 3 or img.shape[2] < 3:
                raise ValueError("BGR or BGRA images expected")
            if exposure <= 0:
                raise ValueError(f"Exposure must be positive, got {exposure}")
            for c in range(3):
                channels[c].append((img[:, :, c], float(exposure)))

        merged = []
        for channel in channels:
            g = self.recover(channel)
            merged.append(self.map(channel, g))

        logger.debug(f"HDR built from {len(images)} exposures ({cols}x{rows})")
        return cv2.merge(merged)

    def recover(self, channel: Sequence[Tuple[np.ndarray, float]]) -> np.ndarray:
        """
        단일 채널 응답 곡선 g(0..255) 복원

        최소제곱 시스템:
        - w(z)·g(z) - w(z)·ln E_i = w(z)·ln Δt_j   (샘플 i, 노출 j)
        - g(127) = 0
        - λ·w(z)·(g(z-1) - 2g(z) + g(z+1)) = 0     (z = 1..254)
        """
        rows, cols = channel[0][0].shape[:2]
        n_pts = min(self.samples, rows * cols)
        rng = np.random.default_rng(self.seed)
        flat_idx = rng.choice(rows * cols, size=n_pts, replace=False)

        n_rows = len(channel) * n_pts + 1 + (LEVELS - 2)
        A = np.zeros((n_rows, LEVELS + n_pts))
        b = np.zeros(n_rows)

        k = 0
        for img, exposure in channel:
            z = img.reshape(-1)[flat_idx].astype(np.int64)
            wz = WEIGHTS[z]
            idx = np.arange(n_pts)
            A[k + idx, z] = wz
            A[k + idx, LEVELS + idx] = -wz
            b[k + idx] = wz * np.log(exposure)
            k += n_pts

        A[k, 127] = 1.0
        k += 1

        for z in range(1, LEVELS - 1):
            wz = self.smoothness * WEIGHTS[z]
            A[k, z - 1] = wz
            A[k, z] = -2.0 * wz
            A[k, z + 1] = wz
            k += 1

        x, *_ = np.linalg.lstsq(A, b, rcond=None)
        return x[:LEVELS]

    def map(self, channel: Sequence[Tuple[np.ndarray, float]], g: np.ndarray) -> np.ndarray:
        """
        응답 곡선으로 채널 방사도 계산

        모든 노출에서 가중치 합이 1e-5 미만인 픽셀(전부 포화/검정)은
        가중치 없는 평균으로 대체합니다.
        """
        rows, cols = channel[0][0].shape[:2]
        s = np.zeros((rows, cols))
        w = np.zeros((rows, cols))
        s_plain = np.zeros((rows, cols))
        for img, exposure in channel:
            z = img.astype(np.int64)
            wz = WEIGHTS[z]
            lz = g[z] - np.log(exposure)
            s += wz * lz
            w += wz
            s_plain += lz

        log_e = np.where(w >= 1e-5, s / np.maximum(w, 1e-5), s_plain / len(channel))
        return np.exp(log_e).astype(np.float32)
