"""
kalman_filter.py - 범용 확장 칼만 필터 (EKF) 엔진

고정 차원 N 상태에 대해 교체 가능한 프로세스 모델과 측정 모델로
예측 + 보정을 수행합니다. filterpy의 ExtendedKalmanFilter 위에 구축되어
공분산 전파와 Joseph 형식 업데이트는 filterpy가 담당합니다.

사이클:
┌────────────────────────────────────────────────────────────┐
│ x⁻ = f(x, 0, dt)          F = ∂f/∂x,  W = ∂f/∂w            │
│ P⁻ = F P Fᵀ + W q Wᵀ                                       │
│ S  = H P⁻ Hᵀ + V r Vᵀ     H = ∂h/∂x,  V = ∂h/∂v            │
│ K  = P⁻ Hᵀ S⁻¹,  x = x⁻ + K (z - h(x⁻)),  P = (I-KH)P⁻     │
└────────────────────────────────────────────────────────────┘

야코비안은 중앙 차분으로 계산합니다 (스텝 1e-6).
해석적 미분 대비 오차는 약 1e-8 수준으로 1e-3 수렴 판정보다 훨씬 작습니다.

수치 안전장치:
- S가 유한하지 않거나 조건수가 1e12를 넘으면 업데이트 실패
- 사후 상태/공분산에 NaN/Inf가 생기면 업데이트 실패
- 실패 시 사이클 이전 상태로 복구 후 NumericalDegeneracyError

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np
from filterpy.kalman import ExtendedKalmanFilter
from abc import ABC, abstractmethod
from typing import Callable, Optional
import logging

from ..exceptions import NumericalDegeneracyError
from ..geometry.rotation import NORMALIZE_EPSILON

logger = logging.getLogger(__name__)

JACOBIAN_STEP = 1e-6
MAX_CONDITION_NUMBER = 1e12


def numerical_jacobian(
    func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    eps: float = JACOBIAN_STEP
) -> np.ndarray:
    """
    중앙 차분 야코비안

    Args:
        func: R^n -> R^m 함수
        x: 선형화 지점 (n,)
        eps: 차분 스텝

    Returns:
        (m, n) 야코비안
    """
    x = np.asarray(x, dtype=float)
    cols = []
    for i in range(len(x)):
        dx = np.zeros_like(x)
        dx[i] = eps
        cols.append((np.asarray(func(x + dx)) - np.asarray(func(x - dx))) / (2 * eps))
    return np.column_stack(cols)


class ProcessModel(ABC):
    """
    프로세스 모델 f(state, noise, dt) -> state'

    Attributes:
        dim: 상태 차원
        noise_dim: 프로세스 노이즈 차원
        quaternion_slice: 상태 내 쿼터니언 위치 (없으면 None)
    """
    dim: int = 0
    noise_dim: int = 0
    quaternion_slice: Optional[slice] = None

    @abstractmethod
    def __call__(self, x: np.ndarray, w: np.ndarray, dt: float) -> np.ndarray:
        ...

    def initial_state(self) -> np.ndarray:
        """기본 초기 상태 (쿼터니언은 단위 회전)"""
        x = np.zeros(self.dim)
        if self.quaternion_slice is not None:
            x[self.quaternion_slice.stop - 1] = 1.0
        return x


class MeasurementModel(ABC):
    """
    측정 모델 h(state, noise) -> measurement

    Attributes:
        dim: 측정 차원
        state_dim: 대상 상태 차원
        quaternion_slice: 측정 내 쿼터니언 위치 (없으면 None)
    """
    dim: int = 0
    state_dim: int = 0
    quaternion_slice: Optional[slice] = None

    @abstractmethod
    def __call__(self, x: np.ndarray, v: np.ndarray) -> np.ndarray:
        ...


class _ModelDrivenEKF(ExtendedKalmanFilter):
    """비선형 프로세스 함수로 상태를 전파하는 filterpy EKF"""

    def __init__(self, dim_x: int, dim_z: int):
        super().__init__(dim_x=dim_x, dim_z=dim_z)
        self.process_fn: Optional[Callable[[np.ndarray], np.ndarray]] = None

    def predict_x(self, u=0):
        self.x = self.process_fn(self.x)


class KalmanFilterEngine:
    """
    교체 가능한 모델 기반 EKF 엔진

    Example:
        >>> engine = KalmanFilterEngine(
        ...     PoseProcessModel(),
        ...     process_covariance=np.eye(7) * 1e-4,
        ...     initial_covariance=np.eye(7) * 10.0
        ... )
        >>> engine.predict_and_update(0.01, z, PoseMarkerMeasurement(), np.eye(7) * 1e-2)
        >>> state = engine.get_state()
    """

    def __init__(
        self,
        process_model: ProcessModel,
        process_covariance: np.ndarray,
        initial_state: Optional[np.ndarray] = None,
        initial_covariance: Optional[np.ndarray] = None
    ):
        """
        Args:
            process_model: 프로세스 모델
            process_covariance: 프로세스 노이즈 공분산 q (noise_dim x noise_dim)
            initial_state: 초기 상태 (None이면 모델 기본값)
            initial_covariance: 초기 공분산 (None이면 단위 행렬)
        """
        self.process_model = process_model
        self.dim = process_model.dim

        q = np.asarray(process_covariance, dtype=float)
        if q.shape != (process_model.noise_dim, process_model.noise_dim):
            raise ValueError(
                f"process_covariance must be {process_model.noise_dim}x{process_model.noise_dim}, got {q.shape}"
            )
        self.process_covariance = q

        self._ekf = _ModelDrivenEKF(dim_x=self.dim, dim_z=1)
        self._initial_state = (
            process_model.initial_state() if initial_state is None
            else np.asarray(initial_state, dtype=float).copy()
        )
        self._initial_covariance = (
            np.eye(self.dim) if initial_covariance is None
            else np.asarray(initial_covariance, dtype=float).copy()
        )
        if self._initial_state.shape != (self.dim,):
            raise ValueError(f"initial_state must have shape ({self.dim},)")
        if self._initial_covariance.shape != (self.dim, self.dim):
            raise ValueError(f"initial_covariance must be {self.dim}x{self.dim}")

        self.reset()
        logger.debug(f"KalmanFilterEngine initialized: {type(process_model).__name__}, dim={self.dim}")

    def reset(self):
        """초기 상태로 리셋"""
        self._ekf.x = self._initial_state.copy()
        self._ekf.P = self._initial_covariance.copy()
        self._normalize_quaternion()

    def predict_and_update(
        self,
        dt: float,
        measurement: np.ndarray,
        measurement_model: MeasurementModel,
        measurement_covariance: np.ndarray
    ):
        """
        EKF 한 사이클 (예측 + 보정)

        Args:
            dt: 시간 간격 (초, 0 허용)
            measurement: 측정 벡터 (M,)
            measurement_model: 측정 모델 h
            measurement_covariance: 측정 노이즈 공분산 r (M x M)

        Raises:
            NumericalDegeneracyError: 혁신 공분산이 특이하거나 결과가 유한하지 않음.
                이 경우 상태는 사이클 이전으로 복구됩니다.
        """
        if measurement_model.state_dim != self.dim:
            raise ValueError(
                f"{type(measurement_model).__name__} expects state dim {measurement_model.state_dim}, "
                f"filter has {self.dim}"
            )
        z = np.asarray(measurement, dtype=float).reshape(-1)
        r = np.asarray(measurement_covariance, dtype=float)
        if z.shape != (measurement_model.dim,):
            raise ValueError(f"measurement must have shape ({measurement_model.dim},), got {z.shape}")
        if r.shape != (measurement_model.dim, measurement_model.dim):
            raise ValueError(f"measurement_covariance must be {measurement_model.dim}x{measurement_model.dim}")

        x_backup = self._ekf.x.copy()
        P_backup = self._ekf.P.copy()

        try:
            self._predict(dt)
            self._update(z, measurement_model, r)
        except NumericalDegeneracyError:
            self._ekf.x = x_backup
            self._ekf.P = P_backup
            raise

    def _predict(self, dt: float):
        """예측 단계"""
        model = self.process_model
        w0 = np.zeros(model.noise_dim)
        x = self._ekf.x.copy()

        F = numerical_jacobian(lambda s: model(s, w0, dt), x)
        W = numerical_jacobian(lambda w: model(x, w, dt), w0)

        self._ekf.F = F
        self._ekf.Q = W @ self.process_covariance @ W.T
        self._ekf.process_fn = lambda s: model(s, w0, dt)
        self._ekf.predict()

        if not (np.all(np.isfinite(self._ekf.x)) and np.all(np.isfinite(self._ekf.P))):
            raise NumericalDegeneracyError("non-finite state after prediction")

    def _update(self, z: np.ndarray, model: MeasurementModel, r: np.ndarray):
        """보정 단계"""
        x = self._ekf.x.copy()
        v0 = np.zeros(model.dim)

        H = numerical_jacobian(lambda s: model(s, v0), x)
        V = numerical_jacobian(lambda v: model(x, v), v0)
        R = V @ r @ V.T

        S = H @ self._ekf.P @ H.T + R
        if not np.all(np.isfinite(S)):
            raise NumericalDegeneracyError("non-finite innovation covariance")
        cond = np.linalg.cond(S)
        if not np.isfinite(cond) or cond > MAX_CONDITION_NUMBER:
            raise NumericalDegeneracyError(f"ill-conditioned innovation covariance (cond={cond:.3e})")

        if model.quaternion_slice is not None:
            z = z.copy()
            predicted = model(x, v0)
            qs = model.quaternion_slice
            if np.dot(z[qs], predicted[qs]) < 0:
                z[qs] = -z[qs]

        self._ekf.update(
            z,
            HJacobian=lambda s: H,
            Hx=lambda s: model(s, v0),
            R=R
        )

        if not (np.all(np.isfinite(self._ekf.x)) and np.all(np.isfinite(self._ekf.P))):
            raise NumericalDegeneracyError("non-finite state after update")

        self._ekf.P = 0.5 * (self._ekf.P + self._ekf.P.T)
        self._normalize_quaternion()

    def _normalize_quaternion(self):
        """상태 벡터의 쿼터니언 정규화"""
        qs = self.process_model.quaternion_slice
        if qs is None:
            return
        q = self._ekf.x[qs]
        norm = np.linalg.norm(q)
        if norm > NORMALIZE_EPSILON:
            self._ekf.x[qs] = q / norm

    def get_state(self) -> np.ndarray:
        """현재 상태 추정값 (복사본)"""
        return self._ekf.x.copy()

    @property
    def covariance(self) -> np.ndarray:
        """현재 공분산 행렬"""
        return self._ekf.P.copy()

    @property
    def trace(self) -> float:
        """공분산 대각합"""
        return float(np.trace(self._ekf.P))

    @property
    def innovation_covariance(self) -> np.ndarray:
        """마지막 업데이트의 혁신 공분산 S"""
        return np.atleast_2d(self._ekf.S).copy()
