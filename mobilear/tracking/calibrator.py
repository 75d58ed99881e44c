"""
calibrator.py - 원형 격자 기반 카메라 보정

비대칭 원형 격자가 보이는 프레임을 정해진 수만큼 모은 뒤
OpenCV calibrateCamera로 내부 파라미터와 왜곡 계수를 추정합니다.
결과는 추적기가 사용하는 CameraParameters 레코드입니다.

흐름:
1. add_view(image): 격자 검출 성공 시 이미지 점 저장, 진행률 갱신
2. is_complete: required_views 개가 모이면 True (이후 프레임은 무시)
3. calibrate(): (CameraParameters, RMS 재투영 오차) 반환

Version: 1.0
Author: FurSys AI Team
"""

import cv2
import numpy as np
from typing import Optional, Tuple, List, Sequence
import logging

from ..config.calibration import CameraParameters
from ..config.system_config import TrackerConfig
from ..exceptions import CalibrationError
from .marker_detector import PatternDetector, CircleGridDetector, asymmetric_grid_points

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_VIEWS = 32


class Calibrator:
    """
    카메라 보정기

    CameraParameters는 왜곡 계수 4개만 보관하므로 k3는 0으로 고정합니다.

    Example:
        >>> calibrator = Calibrator(required_views=32)
        >>> for frame in frames:
        ...     calibrator.add_view(frame)
        ...     if calibrator.is_complete:
        ...         break
        >>> params, rms = calibrator.calibrate()
        >>> params.save("calibration.json")
    """

    def __init__(
        self,
        pattern_size: Sequence[int] = (4, 11),
        spacing: float = 4.0,
        required_views: int = DEFAULT_REQUIRED_VIEWS,
        detector: Optional[PatternDetector] = None,
        focus: float = 0.0,
        flags: int = cv2.CALIB_FIX_K3
    ):
        """
        Args:
            pattern_size: (행당 점 수, 행 수)
            spacing: 격자 간격 (cm)
            required_views: 보정에 사용할 뷰 수
            detector: 격자 검출기 (None이면 OpenCV 원형 격자)
            focus: 보정 중 고정한 렌즈 위치 (결과의 f 필드)
            flags: cv2.calibrateCamera 플래그
        """
        if required_views < 3:
            raise ValueError(f"required_views must be at least 3, got {required_views}")

        self.pattern_size = tuple(int(v) for v in pattern_size)
        self.grid_points = asymmetric_grid_points(self.pattern_size, spacing)
        self.required_views = required_views
        self.detector = detector or CircleGridDetector()
        self.focus = focus
        self.flags = flags

        self._image_points: List[np.ndarray] = []
        self._image_size: Optional[Tuple[int, int]] = None

    @classmethod
    def from_config(cls, config: TrackerConfig, **kwargs) -> 'Calibrator':
        """추적기와 같은 격자 설정으로 생성"""
        return cls(pattern_size=config.grid_pattern, spacing=config.grid_spacing, **kwargs)

    @property
    def num_views(self) -> int:
        return len(self._image_points)

    @property
    def progress(self) -> float:
        """수집 진행률 (0-1)"""
        return min(1.0, self.num_views / self.required_views)

    @property
    def is_complete(self) -> bool:
        return self.num_views >= self.required_views

    def add_view(self, image: np.ndarray) -> bool:
        """
        프레임에서 격자를 검출하여 뷰 추가

        Returns:
            뷰가 추가되었으면 True. 미검출이거나 이미 다 모았으면 False
        """
        if self.is_complete:
            return False

        gray = image
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        size = (gray.shape[1], gray.shape[0])
        if self._image_size is not None and size != self._image_size:
            raise ValueError(f"image size changed from {self._image_size} to {size}")

        centers = self.detector.detect(gray, self.pattern_size)
        if centers is None:
            return False

        self._image_points.append(np.asarray(centers, dtype=np.float32).reshape(-1, 1, 2))
        self._image_size = size
        logger.info(f"Calibration view {self.num_views}/{self.required_views}")
        return True

    def calibrate(self, image_size: Optional[Tuple[int, int]] = None) -> Tuple[CameraParameters, float]:
        """
        수집한 뷰로 보정 수행

        Args:
            image_size: (폭, 높이). None이면 수집한 프레임 크기

        Returns:
            (카메라 파라미터, RMS 재투영 오차 [픽셀])

        Raises:
            CalibrationError: 뷰 부족 또는 OpenCV 보정 실패
        """
        if not self.is_complete:
            raise CalibrationError(
                f"Not enough calibration views: {self.num_views}/{self.required_views}"
            )
        size = image_size or self._image_size

        object_points = [self.grid_points] * self.num_views
        try:
            rms, K, dist, _, _ = cv2.calibrateCamera(
                object_points, self._image_points, tuple(size), None, None, flags=self.flags
            )
        except cv2.error as e:
            raise CalibrationError(f"calibrateCamera failed: {e}") from e

        dist = np.asarray(dist, dtype=float).reshape(-1)
        params = CameraParameters(
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
            k1=float(dist[0]),
            k2=float(dist[1]),
            r1=float(dist[2]),
            r2=float(dist[3]),
            f=self.focus
        )
        logger.info(f"Calibration complete: rms={rms:.4f}, fx={params.fx:.1f}, fy={params.fy:.1f}")
        return params, float(rms)

    def reset(self):
        """수집한 뷰 초기화 (초점 변경 시)"""
        self._image_points.clear()
        self._image_size = None
