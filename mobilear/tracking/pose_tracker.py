"""
pose_tracker.py - 관성 + 마커 융합 자세 추적기

카메라 프레임의 마커 관측과 관성 센서 샘플을 EKF로 융합하여
드리프트가 보정된 6DoF 자세를 제공합니다.

추적 변형 (TrackerMode):
┌──────────────────────┬────────────────────────────────────────┐
│ POSE                 │ 7-상태 [q, p] 단일 필터                  │
│ ORIENTATION          │ 10-상태 [q, ω, α], 위치는 마커 값 그대로   │
│ ORIENTATION_POSITION │ 10-상태 + 9-상태 [p, v, a] 독립 필터 2개   │
│ KINEMATIC            │ 19-상태 결합 운동학 필터 (기본값)          │
└──────────────────────┴────────────────────────────────────────┘

마커 처리:
1. 격자 검출 → PnP → vision 규약을 world 규약으로 변환
2. 상대 회전 q_markerᵀ ⊗ q_inertial 을 버퍼에 추가
   (관성 샘플이 아직 없으면 단위 회전, 즉 마커 회전 자체가 측정)
3. 버퍼 평균으로 드리프트 안정화된 회전 가설 q_marker ⊗ avg 계산
4. 가설 회전 + 마커 이동으로 마커 측정 업데이트

dt는 연속 호출 사이의 실제 시간 차이이며 [0, max_dt]로 제한됩니다.
한 인스턴스에 대한 모든 호출은 내부 잠금으로 직렬화됩니다.

Version: 1.0
Author: FurSys AI Team
"""

import time
import threading
import numpy as np
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable, Iterator, Dict, Any
import logging

import cv2

from ..config.calibration import CameraParameters
from ..config.system_config import TrackerConfig
from ..exceptions import NumericalDegeneracyError
from ..filtering import (
    KalmanFilterEngine,
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
from ..geometry import (
    Quaternion,
    Pose,
    average,
    vision_to_world,
    inertial_to_world_attitude,
    inertial_to_world_vector,
    projection_from_intrinsics
)
from .marker_detector import (
    PatternDetector,
    PerspectiveSolver,
    CircleGridDetector,
    PnPSolver,
    asymmetric_grid_points
)

logger = logging.getLogger(__name__)


class TrackerMode(Enum):
    """추적 필터 구성"""
    POSE = "pose"
    ORIENTATION = "orientation"
    ORIENTATION_POSITION = "orientation_position"
    KINEMATIC = "kinematic"


class TrackerState(Enum):
    """추적기 상태"""
    INITIALIZED = "initialized"  # 아직 측정 없음
    TRACKING = "tracking"        # 측정 반영 중 (종료 상태 없음)


class RelativePoseBuffer:
    """
    마커-world 상대 회전의 고정 크기 FIFO 버퍼

    용량을 넘으면 가장 오래된 항목부터 제거합니다.

    Example:
        >>> buf = RelativePoseBuffer(capacity=3)
        >>> for q in samples:
        ...     buf.push(q)
        >>> avg = buf.average()
    """

    def __init__(self, capacity: int = 50):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items = deque(maxlen=capacity)

    def push(self, q: Quaternion):
        self._items.append(q)

    def average(self) -> Quaternion:
        """버퍼의 회전 평균 (비어 있으면 단위 회전)"""
        return average(list(self._items))

    def clear(self):
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Quaternion]:
        return iter(list(self._items))


@dataclass
class MarkerObservation:
    """world 규약으로 변환된 마커 관측"""
    rotation: Quaternion
    translation: np.ndarray


class PoseTracker:
    """
    EKF 기반 자세 추적기

    Example:
        >>> params = CameraParameters.load("calibration.json")
        >>> tracker = PoseTracker(params, TrackerConfig(mode="kinematic"))
        >>> tracker.track_inertial_sample(attitude, accel, gyro)
        >>> if tracker.track_visual_frame(gray):
        ...     pose = tracker.get_pose()
    """

    def __init__(
        self,
        camera_parameters: CameraParameters,
        config: Optional[TrackerConfig] = None,
        detector: Optional[PatternDetector] = None,
        solver: Optional[PerspectiveSolver] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            camera_parameters: 보정된 카메라 내부 파라미터
            config: 추적기 설정 (None이면 기본값)
            detector: 격자 검출기 (None이면 OpenCV 원형 격자)
            solver: PnP 솔버 (None이면 OpenCV EPnP)
            clock: 초 단위 시계 (dt 계산용)
        """
        self.camera_parameters = camera_parameters
        self.config = config or TrackerConfig()
        self.mode = TrackerMode(self.config.mode)
        self.detector = detector or CircleGridDetector()
        self.solver = solver or PnPSolver()
        self._clock = clock

        self.pattern_size = tuple(int(v) for v in self.config.grid_pattern)
        self.grid_points = asymmetric_grid_points(self.pattern_size, self.config.grid_spacing)
        self.projection = projection_from_intrinsics(
            camera_parameters.fx, camera_parameters.fy,
            camera_parameters.cx, camera_parameters.cy,
            near=self.config.near, far=self.config.far
        )

        self.relative_poses = RelativePoseBuffer(self.config.relative_pose_capacity)
        self._lock = threading.RLock()
        self._build_filters()

        logger.info(f"PoseTracker initialized: mode={self.mode.value}")

    # ------------------------------------------------------------------
    # 필터 구성
    # ------------------------------------------------------------------

    def _build_filters(self):
        """모드별 필터 및 노이즈 행렬 생성"""
        c = self.config
        q_rot = [c.process_noise_orientation] * 4
        q_ang = [c.process_noise_angular] * 6
        q_pos = ([c.process_noise_position] * 3 + [c.process_noise_velocity] * 3
                 + [c.process_noise_acceleration] * 3)
        r_q = [c.measurement_noise_orientation] * 4
        r_w = [c.measurement_noise_gyro] * 3
        r_p = [c.measurement_noise_position] * 3
        r_a = [c.measurement_noise_acceleration] * 3
        default_p = np.asarray(c.default_position, dtype=float)

        self._position_filter = None
        self._fixed_position = default_p.copy()

        if self.mode == TrackerMode.POSE:
            model = PoseProcessModel()
            x0 = model.initial_state()
            x0[4:7] = default_p
            self._filter = self._make_engine(model, q_rot + [c.process_noise_position] * 3, x0)
            self._inertial = (PoseInertialMeasurement(), np.diag(r_q))
            self._marker = (PoseMarkerMeasurement(), np.diag(r_q + r_p))
            self._position_slice = slice(4, 7)

        elif self.mode == TrackerMode.KINEMATIC:
            model = KinematicProcessModel()
            x0 = model.initial_state()
            x0[10:13] = default_p
            self._filter = self._make_engine(model, q_rot + q_ang + q_pos, x0)
            self._inertial = (KinematicInertialMeasurement(), np.diag(r_q + r_w + r_a))
            self._marker = (KinematicMarkerMeasurement(), np.diag(r_q + r_p))
            self._position_slice = slice(10, 13)

        else:
            model = OrientationProcessModel()
            self._filter = self._make_engine(model, q_rot + q_ang, model.initial_state())
            self._inertial = (OrientationInertialMeasurement(), np.diag(r_q + r_w))
            self._marker = (OrientationMarkerMeasurement(), np.diag(r_q))
            self._position_slice = None

            if self.mode == TrackerMode.ORIENTATION_POSITION:
                pmodel = PositionProcessModel()
                x0 = pmodel.initial_state()
                x0[0:3] = default_p
                self._position_filter = self._make_engine(pmodel, q_pos, x0)
                self._position_inertial = (PositionInertialMeasurement(), np.diag(r_a))
                self._position_marker = (PositionMarkerMeasurement(), np.diag(r_p))

        self._last_time: Optional[float] = None
        self._last_inertial_attitude: Optional[Quaternion] = None
        self._state = TrackerState.INITIALIZED

    def _make_engine(self, model, process_diag, x0) -> KalmanFilterEngine:
        return KalmanFilterEngine(
            model,
            process_covariance=np.diag(process_diag),
            initial_state=x0,
            initial_covariance=np.eye(model.dim) * self.config.initial_covariance
        )

    def reset(self):
        """필터와 상대 자세 버퍼 초기화"""
        with self._lock:
            self.relative_poses.clear()
            self._build_filters()
            logger.info("PoseTracker reset")

    # ------------------------------------------------------------------
    # 공개 API
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        return self._state

    def track_visual_frame(self, image: np.ndarray, timestamp: Optional[float] = None) -> bool:
        """
        카메라 프레임에서 마커를 검출하여 필터 업데이트

        Args:
            image: 그레이스케일 또는 BGR 이미지
            timestamp: 측정 시각 (None이면 시계 사용)

        Returns:
            마커 검출 및 필터 반영 성공 여부. 미검출은 오류가 아니며 상태 변화 없음
        """
        observation = self.detect_marker(image)
        if observation is None:
            return False
        return self.track_marker(observation.rotation, observation.translation, timestamp)

    def detect_marker(self, image: np.ndarray) -> Optional[MarkerObservation]:
        """마커 검출 + PnP. 실패 시 None"""
        gray = image
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        centers = self.detector.detect(gray, self.pattern_size)
        if centers is None:
            logger.debug("Marker not detected")
            return None

        solution = self.solver.solve(
            self.grid_points,
            centers,
            self.camera_parameters.camera_matrix(),
            self.camera_parameters.distortion()
        )
        if solution is None:
            logger.debug("PnP failed")
            return None

        rotation, translation = vision_to_world(*solution)
        return MarkerObservation(rotation=rotation, translation=translation)

    def track_marker(
        self,
        rotation: Quaternion,
        translation: np.ndarray,
        timestamp: Optional[float] = None
    ) -> bool:
        """
        world 규약의 마커 자세로 필터 업데이트

        Returns:
            업데이트 반영 여부 (수치 퇴화 시 False)
        """
        translation = np.asarray(translation, dtype=float).reshape(3)
        with self._lock:
            dt = self._advance_clock(timestamp)

            self.relative_poses.push(self._relative_rotation(rotation))
            hypothesis = (rotation * self.relative_poses.average()).normalize()

            try:
                if self.mode in (TrackerMode.POSE, TrackerMode.KINEMATIC):
                    model, r = self._marker
                    z = np.concatenate([hypothesis.to_array(), translation])
                    self._filter.predict_and_update(dt, z, model, r)
                else:
                    model, r = self._marker
                    self._filter.predict_and_update(dt, hypothesis.to_array(), model, r)
                    if self._position_filter is not None:
                        pmodel, pr = self._position_marker
                        self._position_filter.predict_and_update(dt, translation, pmodel, pr)
                    else:
                        self._fixed_position = translation.copy()
            except NumericalDegeneracyError as e:
                logger.warning(f"Marker update rejected: {e}")
                return False

            self._state = TrackerState.TRACKING
            logger.debug(f"Marker update: dt={dt:.4f}, buffer={len(self.relative_poses)}")
            return True

    def track_inertial_sample(
        self,
        attitude: Quaternion,
        acceleration: np.ndarray,
        angular_velocity: np.ndarray,
        timestamp: Optional[float] = None
    ) -> bool:
        """
        관성 샘플로 필터 업데이트

        Args:
            attitude: 디바이스 attitude (센서 좌표계)
            acceleration: 사용자 가속도 (g 단위, 센서 축)
            angular_velocity: 회전 속도 (rad/s, 센서 축)
            timestamp: 측정 시각 (None이면 시계 사용)

        Returns:
            업데이트 반영 여부 (수치 퇴화 시 False)
        """
        q = inertial_to_world_attitude(attitude).normalize()
        omega = inertial_to_world_vector(angular_velocity)
        accel = inertial_to_world_vector(acceleration) * self.config.gravity

        with self._lock:
            dt = self._advance_clock(timestamp)
            try:
                model, r = self._inertial
                if self.mode == TrackerMode.POSE:
                    z = q.to_array()
                elif self.mode == TrackerMode.KINEMATIC:
                    z = np.concatenate([q.to_array(), omega, accel])
                else:
                    z = np.concatenate([q.to_array(), omega])
                self._filter.predict_and_update(dt, z, model, r)

                if self._position_filter is not None:
                    pmodel, pr = self._position_inertial
                    a_world = q.inverse().rotate(accel)
                    self._position_filter.predict_and_update(dt, a_world, pmodel, pr)
            except NumericalDegeneracyError as e:
                logger.warning(f"Inertial update rejected: {e}")
                return False

            self._last_inertial_attitude = q
            self._state = TrackerState.TRACKING
            return True

    def get_pose(self) -> Pose:
        """현재 필터 상태로 자세 생성 (부작용 없음)"""
        with self._lock:
            return Pose(
                rotation=self._current_rotation(),
                translation=self._current_position(),
                projection=self.projection
            )

    def get_state_vector(self) -> np.ndarray:
        """주 필터 상태 벡터 복사본"""
        with self._lock:
            return self._filter.get_state()

    def to_dict(self) -> Dict[str, Any]:
        """상태 요약"""
        with self._lock:
            return {
                'mode': self.mode.value,
                'state': self._state.value,
                'relative_poses': len(self.relative_poses),
                'covariance_trace': self._filter.trace,
                'pose': self.get_pose().to_dict()
            }

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------

    def _advance_clock(self, timestamp: Optional[float]) -> float:
        """연속 호출 간 dt (첫 호출 0, [0, max_dt] 제한)"""
        now = self._clock() if timestamp is None else float(timestamp)
        if self._last_time is None:
            dt = 0.0
        else:
            dt = float(np.clip(now - self._last_time, 0.0, self.config.max_dt))
        self._last_time = now
        return dt

    def _relative_rotation(self, marker: Quaternion) -> Quaternion:
        """마커 회전에서 관성 world 회전까지의 상대 회전"""
        if self._last_inertial_attitude is None:
            return Quaternion.identity()
        return (marker.inverse() * self._last_inertial_attitude).normalize()

    def _current_rotation(self) -> Quaternion:
        return Quaternion.from_array(self._filter.get_state()[0:4]).normalize()

    def _current_position(self) -> np.ndarray:
        if self._position_slice is not None:
            return self._filter.get_state()[self._position_slice]
        if self._position_filter is not None:
            return self._position_filter.get_state()[0:3]
        return self._fixed_position.copy()
