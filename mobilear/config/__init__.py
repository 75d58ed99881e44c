"""
config 모듈 - 설정 관리
"""

from .system_config import (
    SystemConfig,
    TrackerConfig,
    EnvironmentConfig,
    LightProbeConfig,
    OutputConfig,
    load_config,
    create_default_config,
    configure_logging
)
from .calibration import CameraParameters

__all__ = [
    'SystemConfig',
    'TrackerConfig',
    'EnvironmentConfig',
    'LightProbeConfig',
    'OutputConfig',
    'load_config',
    'create_default_config',
    'configure_logging',
    'CameraParameters',
]
