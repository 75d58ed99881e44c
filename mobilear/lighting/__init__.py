"""
lighting 모듈 - 환경 맵 광원 샘플링

주요 기능:
- median cut / variance cut 영역 분할
- 영역별 방향성 광원 (ambient, diffuse, specular)
"""

from .light_probe_sampler import (
    LightSource,
    LightProbeSampler,
    sample_median_cut,
    sample_variance_cut
)

__all__ = [
    'LightSource',
    'LightProbeSampler',
    'sample_median_cut',
    'sample_variance_cut',
]
