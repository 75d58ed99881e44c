"""
tracking 모듈 - 관성/마커 융합 자세 추적

주요 기능:
- EKF 기반 자세 추적기 (7/10/10+9/19 상태 변형)
- 마커 상대 회전 FIFO 버퍼
- OpenCV 원형 격자 검출 및 PnP
- 원형 격자 카메라 보정
- 백프레셔 프레임 디스패처
"""

from .pose_tracker import (
    PoseTracker,
    TrackerMode,
    TrackerState,
    RelativePoseBuffer,
    MarkerObservation
)

from .marker_detector import (
    PatternDetector,
    PerspectiveSolver,
    CircleGridDetector,
    PnPSolver,
    asymmetric_grid_points
)

from .calibrator import Calibrator

from .dispatcher import FrameDispatcher

__all__ = [
    'PoseTracker',
    'TrackerMode',
    'TrackerState',
    'RelativePoseBuffer',
    'MarkerObservation',
    'PatternDetector',
    'PerspectiveSolver',
    'CircleGridDetector',
    'PnPSolver',
    'asymmetric_grid_points',
    'Calibrator',
    'FrameDispatcher',
]
