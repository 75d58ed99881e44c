"""
models.py - 추적기 변형별 프로세스/측정 모델

상태 벡터 (쿼터니언은 [x, y, z, w], world -> camera 회전):
- Pose (7):        [q(4), p(3)]                          랜덤 워크
- Orientation (10): [q(4), ω(3), α(3)]                   등각가속도
- Position (9):    [p(3), v(3), a(3)]                    등가속도
- Kinematic (19):  [q(4), ω(3), α(3), p(3), v(3), a_b(3)]

회전 전파 (1차 적분):
    r = ½(ω·dt + ½α·dt²),  ω ← ω + α·dt,  q ← q + (r, 0) ⊗ q

Kinematic 모델의 가속도는 카메라(body) 좌표계에서 모델링되며,
Rᵀ(q)로 world 좌표계로 회전한 뒤 위치/속도에 적분합니다.

모든 노이즈는 가법적으로 들어갑니다.

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np

from .kalman_filter import ProcessModel, MeasurementModel
from ..geometry.rotation import quaternion_multiply, quaternion_to_matrix


def _integrate_rotation(q: np.ndarray, omega: np.ndarray, alpha: np.ndarray, dt: float):
    """쿼터니언/각속도 1차 적분"""
    r = 0.5 * (omega * dt + 0.5 * alpha * dt * dt)
    dq = quaternion_multiply(np.array([r[0], r[1], r[2], 0.0]), q)
    return q + dq, omega + alpha * dt


class PoseProcessModel(ProcessModel):
    """7-상태 [q, p] 랜덤 워크"""
    dim = 7
    noise_dim = 7
    quaternion_slice = slice(0, 4)

    def __call__(self, x, w, dt):
        return x + w


class OrientationProcessModel(ProcessModel):
    """10-상태 [q, ω, α] 회전 모델"""
    dim = 10
    noise_dim = 10
    quaternion_slice = slice(0, 4)

    def __call__(self, x, w, dt):
        q, omega = _integrate_rotation(x[0:4], x[4:7], x[7:10], dt)
        return np.concatenate([q, omega, x[7:10]]) + w


class PositionProcessModel(ProcessModel):
    """9-상태 [p, v, a] 등가속도 모델"""
    dim = 9
    noise_dim = 9
    quaternion_slice = None

    def __call__(self, x, w, dt):
        p, v, a = x[0:3], x[3:6], x[6:9]
        return np.concatenate([p + v * dt + 0.5 * a * dt * dt, v + a * dt, a]) + w


class KinematicProcessModel(ProcessModel):
    """
    19-상태 결합 운동학 모델

    [q(0:4), ω(4:7), α(7:10), p(10:13), v(13:16), a_body(16:19)]
    """
    dim = 19
    noise_dim = 19
    quaternion_slice = slice(0, 4)

    def __call__(self, x, w, dt):
        q, omega = _integrate_rotation(x[0:4], x[4:7], x[7:10], dt)
        a_world = quaternion_to_matrix(x[0:4]).T @ x[16:19]
        p, v = x[10:13], x[13:16]
        return np.concatenate([
            q,
            omega,
            x[7:10],
            p + v * dt + 0.5 * a_world * dt * dt,
            v + a_world * dt,
            x[16:19]
        ]) + w


class _SelectionMeasurement(MeasurementModel):
    """상태 성분 선택 측정 h(x, v) = x[indices] + v"""
    indices: tuple = ()

    def __call__(self, x, v):
        return x[list(self.indices)] + v


class PoseInertialMeasurement(_SelectionMeasurement):
    """7-상태: 관성 자세 [q]"""
    dim = 4
    state_dim = 7
    quaternion_slice = slice(0, 4)
    indices = (0, 1, 2, 3)


class PoseMarkerMeasurement(_SelectionMeasurement):
    """7-상태: 마커 자세 [q, p]"""
    dim = 7
    state_dim = 7
    quaternion_slice = slice(0, 4)
    indices = (0, 1, 2, 3, 4, 5, 6)


class OrientationInertialMeasurement(_SelectionMeasurement):
    """10-상태: 관성 자세 + 자이로 [q, ω]"""
    dim = 7
    state_dim = 10
    quaternion_slice = slice(0, 4)
    indices = (0, 1, 2, 3, 4, 5, 6)


class OrientationMarkerMeasurement(_SelectionMeasurement):
    """10-상태: 마커 자세 [q]"""
    dim = 4
    state_dim = 10
    quaternion_slice = slice(0, 4)
    indices = (0, 1, 2, 3)


class PositionInertialMeasurement(_SelectionMeasurement):
    """9-상태: world 가속도 [a]"""
    dim = 3
    state_dim = 9
    indices = (6, 7, 8)


class PositionMarkerMeasurement(_SelectionMeasurement):
    """9-상태: 마커 위치 [p]"""
    dim = 3
    state_dim = 9
    indices = (0, 1, 2)


class KinematicInertialMeasurement(_SelectionMeasurement):
    """19-상태: 관성 [q, ω, a_body]"""
    dim = 10
    state_dim = 19
    quaternion_slice = slice(0, 4)
    indices = (0, 1, 2, 3, 4, 5, 6, 16, 17, 18)


class KinematicMarkerMeasurement(_SelectionMeasurement):
    """19-상태: 마커 [q, p]"""
    dim = 7
    state_dim = 19
    quaternion_slice = slice(0, 4)
    indices = (0, 1, 2, 3, 10, 11, 12)
