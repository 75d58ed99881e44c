"""
blur_detector.py - Haar 웨이블릿 기반 흐림 검출

Tong et al., "Blur Detection for Digital Images Using Wavelet Transform" 방식.

1. 3단계 Haar 변환 (LL = 합 × 0.5, 상세 계수 = 차 × 0.5)
2. 단계별 에지 맵 EMap = HH² + HL² + LH²
3. 단계별 지역 최대 (창 4 / 2 / 1) → 같은 해상도의 E1, E2, E3
4. 에지 유형 분류:
   - E1, E2, E3 모두 임계값 미만: 에지 아님
   - E1 > E2 > E3: Dirac / A-step (선명)
   - 그 외 E2가 E1보다 큰 경우: Roof / G-step, E1 < 임계값이면 흐린 에지

per = N_da / N_edge 가 작을수록 흐린 이미지입니다.

Version: 1.0
Author: FurSys AI Team
"""

import cv2
import numpy as np
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)


def _haar(LL: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """단일 단계 2D Haar 변환 → (LL, HH, HL, LH)"""
    p00 = LL[0::2, 0::2]
    p01 = LL[0::2, 1::2]
    p10 = LL[1::2, 0::2]
    p11 = LL[1::2, 1::2]

    HH = (p00 + p11 - p10 - p01) * 0.5
    HL = (p00 + p10 - p11 - p01) * 0.5
    LH = (p00 + p01 - p10 - p11) * 0.5
    LL1 = (p00 + p01 + p10 + p11) * 0.5
    return LL1, HH, HL, LH


def _local_maxima(emap: np.ndarray, window: int) -> np.ndarray:
    """겹치지 않는 window x window 블록 최대값"""
    if window == 1:
        return emap
    h, w = emap.shape
    return emap.reshape(h // window, window, w // window, window).max(axis=(1, 3))


class BlurDetector:
    """
    웨이블릿 에지 분석 흐림 검출기

    Example:
        >>> detector = BlurDetector()
        >>> result = detector(gray)
        >>> if result is not None and result[0] < 0.01:
        ...     print("blurry")
    """

    def __init__(self, rows: int = 360, cols: int = 640, threshold: float = 35.0):
        """
        Args:
            rows, cols: 작업 해상도 (16의 배수로 잘림)
            threshold: 에지 판정 임계값
        """
        self.rows = (rows >> 4) << 4
        self.cols = (cols >> 4) << 4
        self.threshold = threshold

    def __call__(self, gray: np.ndarray) -> Optional[Tuple[float, float]]:
        """
        Args:
            gray: 그레이스케일 이미지 (uint8 또는 float)

        Returns:
            (per, blur_extent) 또는 에지가 하나도 없으면 None
        """
        if gray.ndim == 3:
            gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)
        if gray.shape[0] < self.rows or gray.shape[1] < self.cols:
            gray = cv2.resize(gray, (self.cols, self.rows), interpolation=cv2.INTER_AREA)

        LL = gray[:self.rows, :self.cols].astype(np.float32)

        emax = []
        for window in (4, 2, 1):
            LL, HH, HL, LH = _haar(LL)
            emap = HH * HH + HL * HL + LH * LH
            emax.append(_local_maxima(emap, window))
        E1, E2, E3 = emax

        t = self.threshold
        edge = (E1 >= t) | (E2 >= t) | (E3 >= t)
        n_edge = int(np.count_nonzero(edge))
        if n_edge == 0:
            return None

        dirac = edge & (E1 > E2) & (E2 > E3)
        roof = edge & ~dirac & (E1 < E2)
        n_da = int(np.count_nonzero(dirac))
        n_rg = int(np.count_nonzero(roof))
        n_brg = int(np.count_nonzero(roof & (E1 < t)))

        per = n_da / n_edge
        blur_extent = n_brg / n_rg if n_rg > 0 else 0.0
        logger.debug(f"Blur: edges={n_edge}, per={per:.4f}, extent={blur_extent:.4f}")
        return per, blur_extent
