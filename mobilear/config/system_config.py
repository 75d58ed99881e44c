"""
system_config.py - 시스템 설정 관리

mobilear 추적기/환경 빌더/광원 샘플러의 모든 설정을 통합 관리합니다.

Version: 1.0
Author: FurSys AI Team
"""

import yaml
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional, List
import logging

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class TrackerConfig:
    """자세 추적기 설정"""
    # "pose" (7), "orientation" (10), "orientation_position" (10 + 9), "kinematic" (19)
    mode: str = "kinematic"

    # 마커 상대 자세 버퍼
    relative_pose_capacity: int = 50

    # 중력 가속도 (cm/s², 마커 격자 단위와 동일)
    gravity: float = 980.665

    # dt 상한 (초). 백그라운드 전환 등으로 생긴 큰 간격을 제한
    max_dt: float = 0.5

    # 비대칭 원형 격자 (행당 점 수, 행 수) 및 간격 (cm)
    grid_pattern: List[int] = field(default_factory=lambda: [4, 11])
    grid_spacing: float = 4.0

    # 마커 미검출 시 기본 위치
    default_position: List[float] = field(default_factory=lambda: [0.0, 0.0, -50.0])

    # 프로세스 노이즈
    process_noise_orientation: float = 5e-2
    process_noise_angular: float = 1e-4
    process_noise_position: float = 5e-2
    process_noise_velocity: float = 2e-1
    process_noise_acceleration: float = 5e-2

    # 측정 노이즈
    measurement_noise_orientation: float = 1e-2
    measurement_noise_gyro: float = 1e-2
    measurement_noise_position: float = 5e-2
    measurement_noise_acceleration: float = 5e-2

    # 초기 공분산 배율
    initial_covariance: float = 10.0

    # 투영 클리핑 평면
    near: float = 0.1
    far: float = 500.0

    # 시각 추적 동시 처리 한도
    max_frames_in_flight: int = 2


@dataclass
class EnvironmentConfig:
    """환경 빌더 설정"""
    blur_threshold: float = 0.01
    edge_threshold: float = 35.0
    min_features: int = 100
    min_matches: int = 25
    max_hamming_distance: int = 30
    max_reprojection_distance: float = 75.0
    max_rotation_deg: float = 30.0

    # 전역 정렬 후 허용 회전 오차 (도)
    max_alignment_error_deg: float = 5.0
    alignment_prior_weight: float = 0.1

    # 파노라마 크기
    panorama_width: int = 2048
    panorama_height: int = 1024

    # 합성 작업 스레드 수
    composite_workers: int = 1


@dataclass
class LightProbeConfig:
    """광원 샘플러 설정"""
    algorithm: str = "median_cut"  # "median_cut" or "variance_cut"
    levels: int = 4
    ambient_ratio: float = 0.2


@dataclass
class OutputConfig:
    """출력 설정"""
    environments_dir: str = "environments"

    # 로깅
    log_level: str = "INFO"
    log_to_file: bool = False
    log_file: str = "mobilear.log"


@dataclass
class SystemConfig:
    """mobilear 시스템 전체 설정"""
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    light_probe: LightProbeConfig = field(default_factory=LightProbeConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # 카메라 보정 파일
    calibration_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return asdict(self)

    def save(self, filepath: str):
        """설정을 YAML 파일로 저장"""
        with open(filepath, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

        logger.info(f"Config saved to {filepath}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SystemConfig':
        """딕셔너리에서 설정 생성"""
        return cls(
            tracker=TrackerConfig(**(d.get('tracker') or {})),
            environment=EnvironmentConfig(**(d.get('environment') or {})),
            light_probe=LightProbeConfig(**(d.get('light_probe') or {})),
            output=OutputConfig(**(d.get('output') or {})),
            calibration_path=d.get('calibration_path')
        )


def load_config(filepath: str) -> SystemConfig:
    """
    YAML 파일에서 설정 로드

    Args:
        filepath: 설정 파일 경로

    Returns:
        SystemConfig: 로드된 설정
    """
    path = Path(filepath)

    if not path.exists():
        logger.warning(f"Config file not found: {filepath}, using defaults")
        return SystemConfig()

    with open(path, 'r') as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        return SystemConfig()

    return SystemConfig.from_dict(config_dict)


def create_default_config(save_path: Optional[str] = None) -> SystemConfig:
    """
    기본 설정 생성

    Args:
        save_path: 저장 경로 (None이면 저장 안함)

    Returns:
        SystemConfig: 기본 설정
    """
    config = SystemConfig()

    if save_path:
        config.save(save_path)

    return config


def configure_logging(output: OutputConfig):
    """출력 설정에 따라 루트 로거 구성"""
    handlers = [logging.StreamHandler()]
    if output.log_to_file:
        handlers.append(logging.FileHandler(output.log_file))

    logging.basicConfig(
        level=getattr(logging, output.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )
