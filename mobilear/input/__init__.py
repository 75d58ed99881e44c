"""
input 모듈 - 녹화 세션 입력

주요 기능:
- motion.csv / frames.csv 로드
- 시각 순 이벤트 병합 및 추적기 재생
"""

from .capture_session import CaptureSession, InertialSample, CameraFrame, replay

__all__ = [
    'CaptureSession',
    'InertialSample',
    'CameraFrame',
    'replay',
]
