"""
marker_detector.py - 마커 검출 및 PnP 협력 객체

추적기는 두 개의 외부 협력 객체를 사용합니다:
- PatternDetector: 그레이스케일 이미지에서 격자 점 검출
- PerspectiveSolver: 3D-2D 대응점으로 카메라 외부 파라미터 계산

기본 구현은 OpenCV의 비대칭 원형 격자 검출과 EPnP입니다.

Version: 1.0
Author: FurSys AI Team
"""

import cv2
import numpy as np
from typing import Optional, Tuple, Sequence, Protocol
import logging

logger = logging.getLogger(__name__)


def asymmetric_grid_points(pattern_size: Sequence[int], spacing: float) -> np.ndarray:
    """
    비대칭 원형 격자의 3D 기준점

    행 i, 열 j의 점은 ((2j + i mod 2)·s, i·s, 0).

    Args:
        pattern_size: (행당 점 수, 행 수)
        spacing: 격자 간격

    Returns:
        (N, 3) float32
    """
    per_row, rows = int(pattern_size[0]), int(pattern_size[1])
    points = [
        ((2 * j + i % 2) * spacing, i * spacing, 0.0)
        for i in range(rows)
        for j in range(per_row)
    ]
    return np.array(points, dtype=np.float32)


class PatternDetector(Protocol):
    """격자 패턴 검출기"""

    def detect(self, gray: np.ndarray, pattern_size: Tuple[int, int]) -> Optional[np.ndarray]:
        """성공 시 (N, 2) 이미지 점, 실패 시 None"""
        ...


class PerspectiveSolver(Protocol):
    """PnP 솔버"""

    def solve(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        camera_matrix: np.ndarray,
        distortion: np.ndarray
    ) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """성공 시 (rvec, tvec) vision 좌표계, 실패 시 None"""
        ...


class CircleGridDetector:
    """OpenCV 비대칭 원형 격자 검출기"""

    def __init__(self, use_clustering: bool = True):
        self.flags = cv2.CALIB_CB_ASYMMETRIC_GRID
        if use_clustering:
            self.flags |= cv2.CALIB_CB_CLUSTERING

    def detect(self, gray: np.ndarray, pattern_size: Tuple[int, int]) -> Optional[np.ndarray]:
        if gray.ndim == 3:
            gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)

        found, centers = cv2.findCirclesGrid(gray, tuple(pattern_size), flags=self.flags)
        if not found or centers is None:
            return None
        return centers.reshape(-1, 2)


class PnPSolver:
    """OpenCV solvePnP (기본 EPnP)"""

    def __init__(self, method: int = cv2.SOLVEPNP_EPNP):
        self.method = method

    def solve(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        camera_matrix: np.ndarray,
        distortion: np.ndarray
    ) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        ok, rvec, tvec = cv2.solvePnP(
            np.asarray(object_points, dtype=np.float32),
            np.asarray(image_points, dtype=np.float32),
            np.asarray(camera_matrix, dtype=np.float64),
            np.asarray(distortion, dtype=np.float64),
            flags=self.method
        )
        if not ok:
            return None
        return rvec.reshape(3), tvec.reshape(3)
