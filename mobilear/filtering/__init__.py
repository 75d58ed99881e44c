"""
filtering 모듈 - EKF 엔진 및 상태 모델

주요 기능:
- filterpy 기반 범용 EKF (수치 야코비안, 퇴화 검사)
- 7/10/9/19 차원 프로세스 모델
- 관성/마커 측정 모델
"""

from .kalman_filter import (
    KalmanFilterEngine,
    ProcessModel,
    MeasurementModel,
    numerical_jacobian
)

from .models import (
    PoseProcessModel,
    OrientationProcessModel,
    PositionProcessModel,
    KinematicProcessModel,
    PoseInertialMeasurement,
    PoseMarkerMeasurement,
    OrientationInertialMeasurement,
    OrientationMarkerMeasurement,
    PositionInertialMeasurement,
    PositionMarkerMeasurement,
    KinematicInertialMeasurement,
    KinematicMarkerMeasurement
)

__all__ = [
    # Engine
    'KalmanFilterEngine',
    'ProcessModel',
    'MeasurementModel',
    'numerical_jacobian',
    # Process models
    'PoseProcessModel',
    'OrientationProcessModel',
    'PositionProcessModel',
    'KinematicProcessModel',
    # Measurement models
    'PoseInertialMeasurement',
    'PoseMarkerMeasurement',
    'OrientationInertialMeasurement',
    'OrientationMarkerMeasurement',
    'PositionInertialMeasurement',
    'PositionMarkerMeasurement',
    'KinematicInertialMeasurement',
    'KinematicMarkerMeasurement',
]
