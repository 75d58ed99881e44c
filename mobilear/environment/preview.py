"""
preview.py - 실시간 파노라마 미리보기

특징점/오류 검사 없이 한 프레임씩 파노라마에 투영하는 저정밀 빌더.
각 화면 픽셀의 광선을 역 view/projection 행렬로 역투영하여 단위 구에 올리고,
(θ, φ) → (u, v) 매핑(경도 순환)으로 equirectangular 버퍼에 기록합니다.

정확도 보장은 없으며 촬영 중 피드백 표시용입니다.

Version: 1.0
Author: FurSys AI Team
"""

import threading
import numpy as np
from typing import Optional
import logging

from ..geometry import Pose, world_to_panorama, direction_to_equirect

logger = logging.getLogger(__name__)


class PanoramaPreview:
    """
    단일 프레임 역투영 파노라마

    Example:
        >>> preview = PanoramaPreview(1024, 512)
        >>> preview.update(frame_bgr, tracker.get_pose())
        >>> cv2.imshow("preview", preview.image)
    """

    def __init__(self, width: int = 2048, height: int = 1024, step: int = 1):
        """
        Args:
            width, height: 파노라마 크기
            step: 원본 픽셀 간격 (1이면 모든 픽셀)
        """
        self.width = width
        self.height = height
        self.step = max(1, int(step))
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        with self._lock:
            self._image = np.zeros((self.height, self.width, 3), dtype=np.uint8)
            self._coverage = np.zeros((self.height, self.width), dtype=bool)

    @property
    def image(self) -> np.ndarray:
        with self._lock:
            return self._image.copy()

    @property
    def coverage(self) -> float:
        """채워진 픽셀 비율"""
        with self._lock:
            return float(self._coverage.mean())

    def update(self, frame: np.ndarray, pose: Pose) -> int:
        """
        프레임 하나를 파노라마에 기록

        Args:
            frame: (H, W, 3) 또는 (H, W) uint8 이미지
            pose: 프레임의 자세 (view + projection)

        Returns:
            기록된 파노라마 픽셀 수
        """
        if frame.ndim == 2:
            frame = np.repeat(frame[:, :, None], 3, axis=2)
        h, w = frame.shape[:2]

        rows = np.arange(0, h, self.step)
        cols = np.arange(0, w, self.step)
        cc, rr = np.meshgrid(cols, rows)

        ndc_x = 2.0 * (cc + 0.5) / w - 1.0
        ndc_y = 1.0 - 2.0 * (rr + 0.5) / h
        n = ndc_x.size
        near = np.stack([ndc_x.ravel(), ndc_y.ravel(), np.full(n, -1.0)], axis=1)
        far = np.stack([ndc_x.ravel(), ndc_y.ravel(), np.full(n, 1.0)], axis=1)

        rays = pose.unproject(far) - pose.unproject(near)
        u, v = direction_to_equirect(world_to_panorama(rays), self.width, self.height)
        ui = np.mod(u.astype(np.int64), self.width)
        vi = np.clip(v.astype(np.int64), 0, self.height - 1)

        colors = frame[rr.ravel(), cc.ravel(), :3]
        with self._lock:
            self._image[vi, ui] = colors
            self._coverage[vi, ui] = True

        logger.debug(f"Preview updated: {n} rays")
        return int(len(np.unique(vi * self.width + ui)))
