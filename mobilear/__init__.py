"""
mobilear - 모바일 AR 자세 추정 및 환경 재구성

주요 특징:
- EKF 기반 관성/마커 융합 6DoF 자세 추적
- 다중 노출 프레임의 HDR 파노라마 합성
- 환경 맵 광원 샘플링 (median cut / variance cut)

Version: 1.0
Author: FurSys AI Team
"""

__version__ = "1.0.0"
__author__ = "FurSys AI Team"

from .exceptions import (
    MobileARError,
    CaptureFailure,
    CaptureQualityError,
    NumericalDegeneracyError,
    CalibrationError,
    CompositeCancelledError
)

from .geometry import Quaternion, Pose

from .config import SystemConfig, CameraParameters, load_config

from .filtering import KalmanFilterEngine

from .tracking import PoseTracker, TrackerMode, FrameDispatcher, Calibrator

from .environment import (
    EnvironmentBuilder,
    FrameObservation,
    PanoramaPreview,
    Environment
)

from .lighting import LightSource, LightProbeSampler

__all__ = [
    # Exceptions
    'MobileARError',
    'CaptureFailure',
    'CaptureQualityError',
    'NumericalDegeneracyError',
    'CalibrationError',
    'CompositeCancelledError',
    # Geometry
    'Quaternion',
    'Pose',
    # Config
    'SystemConfig',
    'CameraParameters',
    'load_config',
    # Filtering
    'KalmanFilterEngine',
    # Tracking
    'PoseTracker',
    'TrackerMode',
    'FrameDispatcher',
    'Calibrator',
    # Environment
    'EnvironmentBuilder',
    'FrameObservation',
    'PanoramaPreview',
    'Environment',
    # Lighting
    'LightSource',
    'LightProbeSampler',
]
