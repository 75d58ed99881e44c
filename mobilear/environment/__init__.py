"""
environment 모듈 - HDR 환경 맵 구축

주요 기능:
- 흐림 검출 및 특징점 기반 프레임 수락
- 전역 회전 정렬과 HDR 파노라마 합성
- 실시간 미리보기 파노라마
- 환경 데이터 저장/로드
"""

from .blur_detector import BlurDetector
from .hdr_builder import HDRBuilder
from .tone_mapper import ToneMapper
from .hdr_image import HDRImage
from .preview import PanoramaPreview
from .environment_builder import (
    EnvironmentBuilder,
    FrameObservation,
    PairwiseMatch,
    CompositeJob,
    CompositeResult
)
from .environment import Environment, Location, list_environments

__all__ = [
    'BlurDetector',
    'HDRBuilder',
    'ToneMapper',
    'HDRImage',
    'PanoramaPreview',
    'EnvironmentBuilder',
    'FrameObservation',
    'PairwiseMatch',
    'CompositeJob',
    'CompositeResult',
    'Environment',
    'Location',
    'list_environments',
]
