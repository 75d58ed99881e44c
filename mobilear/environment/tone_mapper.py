"""
tone_mapper.py - Reinhard 전역 톤 매핑

HDR 방사도 이미지를 8비트 미리보기로 변환합니다.

Version: 1.0
Author: FurSys AI Team
"""

import cv2
import numpy as np
import logging

logger = logging.getLogger(__name__)


class ToneMapper:
    """
    Reinhard 전역 연산자

        L_m = exp(mean(ln(L_w + ε)))
        L = key / L_m · L_w
        L_d = L (1 + L / L_white²) / (1 + L)   (L_white = 0 이면 L / (1 + L))

    색상은 채널마다 L_d / L_w 비율로 스케일합니다.
    """

    def __init__(self, key: float = 0.36, white: float = 0.0):
        self.key = key
        self.white = white

    def map(self, img: np.ndarray) -> np.ndarray:
        """
        Args:
            img: float32 1/3/4 채널 HDR 이미지

        Returns:
            같은 채널 수의 uint8 이미지
        """
        img = np.nan_to_num(np.asarray(img, dtype=np.float32), nan=0.0, posinf=0.0, neginf=0.0)
        img = np.maximum(img, 0.0)

        if img.ndim == 2:
            lw = img
        elif img.shape[2] == 3:
            lw = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        elif img.shape[2] == 4:
            lw = cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
        else:
            raise ValueError("Image must be either BGR, BGRA or grayscale")

        lm = float(np.exp(np.mean(np.log(lw + 1e-10))))
        ll = self.key / lm * lw
        if self.white > 1e-3:
            ld = ll * (1 + ll / (self.white * self.white)) / (1 + ll)
        else:
            ld = ll / (1 + ll)

        if img.ndim == 2:
            out = ld
        else:
            ratio = np.where(lw > 0, ld / np.maximum(lw, 1e-20), 0.0)
            out = img[:, :, :3] * ratio[:, :, None]

        ldr = np.clip(out * 255.0, 0, 255).astype(np.uint8)
        if img.ndim == 3 and img.shape[2] == 4:
            ldr = cv2.cvtColor(ldr, cv2.COLOR_BGR2BGRA)

        logger.debug(f"Tone mapped: log-average luminance={lm:.4f}")
        return ldr
