"""
calibration.py - 카메라 보정 파라미터

{fx, fy, cx, cy, k1, k2, r1, r2, f} 키를 가진 JSON 레코드로 저장/로드합니다.

Version: 1.0
Author: FurSys AI Team
"""

import json
import numpy as np
from pathlib import Path
from dataclasses import dataclass, asdict
from typing import Dict, Any, Union
import logging

from ..exceptions import CalibrationError

logger = logging.getLogger(__name__)

CALIBRATION_KEYS = ('fx', 'fy', 'cx', 'cy', 'k1', 'k2', 'r1', 'r2', 'f')


@dataclass
class CameraParameters:
    """
    카메라 내부 파라미터

    Attributes:
        fx, fy: 초점 거리 (픽셀)
        cx, cy: 주점 (픽셀)
        k1, k2: 방사 왜곡
        r1, r2: 접선 왜곡
        f: 고정 초점 거리 (렌즈 위치, 0-1)
    """
    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    r1: float = 0.0
    r2: float = 0.0
    f: float = 0.0

    def camera_matrix(self) -> np.ndarray:
        """3x3 카메라 행렬"""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ])

    def distortion(self) -> np.ndarray:
        """OpenCV 왜곡 계수 [k1, k2, p1, p2]"""
        return np.array([self.k1, self.k2, self.r1, self.r2])

    def to_dict(self) -> Dict[str, float]:
        """딕셔너리로 변환"""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CameraParameters':
        """딕셔너리에서 생성 (모든 키 필수)"""
        missing = [k for k in CALIBRATION_KEYS if k not in d]
        if missing:
            raise CalibrationError(f"Missing calibration fields: {missing}")
        try:
            return cls(**{k: float(d[k]) for k in CALIBRATION_KEYS})
        except (TypeError, ValueError) as e:
            raise CalibrationError(f"Invalid calibration value: {e}") from e

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> 'CameraParameters':
        """
        JSON 파일에서 로드

        Raises:
            CalibrationError: 파일 없음 또는 형식 오류
        """
        path = Path(filepath)
        if not path.exists():
            raise CalibrationError(f"Calibration file not found: {filepath}")

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise CalibrationError(f"Malformed calibration JSON: {filepath}") from e

        if not isinstance(data, dict):
            raise CalibrationError(f"Calibration JSON must be an object: {filepath}")

        params = cls.from_dict(data)
        logger.info(f"Calibration loaded from {filepath}")
        return params

    def save(self, filepath: Union[str, Path]):
        """JSON 파일로 저장"""
        try:
            with open(filepath, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            raise CalibrationError(f"Failed to save calibration: {filepath}") from e

        logger.info(f"Calibration saved to {filepath}")
