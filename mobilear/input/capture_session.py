"""
capture_session.py - 녹화된 촬영 세션 로더

디렉토리 구조:
    session/
    ├── motion.csv   # timestamp, qx, qy, qz, qw, ax, ay, az, gx, gy, gz
    ├── frames.csv   # timestamp, file[, exposure]
    └── *.png        # frames.csv가 가리키는 이미지

motion.csv의 attitude/가속도(g)/회전 속도(rad/s)는 센서 좌표계 값입니다.
이미지는 이벤트를 소비할 때 지연 로드합니다.

Version: 1.0
Author: FurSys AI Team
"""

import cv2
import numpy as np
import pandas as pd
from pathlib import Path
from dataclasses import dataclass
from typing import List, Iterator, Optional, Tuple, Union
import logging

from ..geometry import Quaternion, Pose

logger = logging.getLogger(__name__)

MOTION_COLUMNS = ['timestamp', 'qx', 'qy', 'qz', 'qw', 'ax', 'ay', 'az', 'gx', 'gy', 'gz']
FRAME_COLUMNS = ['timestamp', 'file']


@dataclass(frozen=True)
class InertialSample:
    """관성 측정 한 건"""
    timestamp: float
    attitude: Quaternion
    acceleration: np.ndarray
    angular_velocity: np.ndarray


@dataclass(frozen=True)
class CameraFrame:
    """카메라 프레임 한 건 (이미지는 지연 로드)"""
    timestamp: float
    path: Path
    exposure: Optional[float] = None

    def load(self) -> np.ndarray:
        """BGR 이미지 로드"""
        image = cv2.imread(str(self.path), cv2.IMREAD_COLOR)
        if image is None:
            raise FileNotFoundError(f"Cannot read frame image: {self.path}")
        return image


class CaptureSession:
    """
    녹화 세션 로더

    Example:
        >>> session = CaptureSession("./sessions/room_01")
        >>> for event in session.events():
        ...     if isinstance(event, CameraFrame):
        ...         image = event.load()
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Session directory not found: {directory}")

        self.motion_df = self._read_table('motion.csv', MOTION_COLUMNS)
        self.frames_df = self._read_table('frames.csv', FRAME_COLUMNS)

        logger.info(
            f"CaptureSession: {len(self.motion_df)} inertial samples, "
            f"{len(self.frames_df)} frames"
        )

    def _read_table(self, name: str, required: List[str]) -> pd.DataFrame:
        path = self.directory / name
        if not path.exists():
            logger.warning(f"{name} not found in {self.directory}")
            return pd.DataFrame(columns=required)

        df = pd.read_csv(path)
        df.columns = [c.strip() for c in df.columns]
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise ValueError(f"{name} is missing columns: {missing}")

        return df.sort_values('timestamp', kind='stable').reset_index(drop=True)

    @property
    def num_frames(self) -> int:
        return len(self.frames_df)

    @property
    def num_inertial_samples(self) -> int:
        return len(self.motion_df)

    def inertial_samples(self) -> List[InertialSample]:
        samples = []
        for row in self.motion_df.itertuples(index=False):
            samples.append(InertialSample(
                timestamp=float(row.timestamp),
                attitude=Quaternion(float(row.qx), float(row.qy), float(row.qz), float(row.qw)),
                acceleration=np.array([row.ax, row.ay, row.az], dtype=float),
                angular_velocity=np.array([row.gx, row.gy, row.gz], dtype=float)
            ))
        return samples

    def frames(self) -> List[CameraFrame]:
        has_exposure = 'exposure' in self.frames_df.columns
        frames = []
        for row in self.frames_df.itertuples(index=False):
            exposure = None
            if has_exposure and not pd.isna(row.exposure):
                exposure = float(row.exposure)
            frames.append(CameraFrame(
                timestamp=float(row.timestamp),
                path=self.directory / str(row.file),
                exposure=exposure
            ))
        return frames

    def events(self) -> Iterator[Union[InertialSample, CameraFrame]]:
        """두 스트림을 시각 순으로 병합 (같은 시각이면 관성 먼저)"""
        inertial = self.inertial_samples()
        frames = self.frames()
        i = j = 0
        while i < len(inertial) or j < len(frames):
            if j >= len(frames) or (i < len(inertial) and inertial[i].timestamp <= frames[j].timestamp):
                yield inertial[i]
                i += 1
            else:
                yield frames[j]
                j += 1


def replay(session: CaptureSession, tracker) -> List[Tuple[float, Pose]]:
    """
    세션으로 추적기 구동

    녹화 시각을 필터 시계로 사용합니다.

    Returns:
        시각 프레임마다 (timestamp, Pose)
    """
    poses = []
    for event in session.events():
        if isinstance(event, InertialSample):
            tracker.track_inertial_sample(
                event.attitude,
                event.acceleration,
                event.angular_velocity,
                timestamp=event.timestamp
            )
        else:
            tracker.track_visual_frame(event.load(), timestamp=event.timestamp)
            poses.append((event.timestamp, tracker.get_pose()))

    logger.info(f"Replayed session: {len(poses)} visual frames")
    return poses
