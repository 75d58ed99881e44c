"""
EKF 엔진 및 상태 모델 단위 테스트
"""

import numpy as np
import pytest
from mobilear.exceptions import NumericalDegeneracyError
from mobilear.geometry import Quaternion
from mobilear.filtering import (
    KalmanFilterEngine,
    numerical_jacobian,
    PoseProcessModel,
    OrientationProcessModel,
    PositionProcessModel,
    KinematicProcessModel,
    PoseInertialMeasurement,
    PoseMarkerMeasurement,
    OrientationInertialMeasurement,
    PositionInertialMeasurement,
    PositionMarkerMeasurement,
    KinematicInertialMeasurement,
    KinematicMarkerMeasurement
)


def _pose_engine(q_scale=0.0):
    return KalmanFilterEngine(
        PoseProcessModel(),
        process_covariance=np.eye(7) * q_scale,
        initial_covariance=np.eye(7) * 10.0
    )


def _kinematic_engine():
    return KalmanFilterEngine(
        KinematicProcessModel(),
        process_covariance=np.zeros((19, 19)),
        initial_covariance=np.eye(19) * 10.0
    )


class TestNumericalJacobian:
    """수치 야코비안 테스트"""

    def test_linear(self):
        """선형 함수의 야코비안은 행렬 자체"""
        A = np.array([[1.0, 2.0, 0.0], [0.0, -1.0, 3.0]])
        J = numerical_jacobian(lambda x: A @ x, np.array([0.3, -0.2, 1.0]))
        np.testing.assert_allclose(J, A, atol=1e-8)

    def test_nonlinear(self):
        """sin 함수"""
        x = np.array([0.5, 1.0])
        J = numerical_jacobian(lambda s: np.sin(s), x)
        np.testing.assert_allclose(J, np.diag(np.cos(x)), atol=1e-8)


class TestProcessModels:
    """프로세스 모델 테스트"""

    def test_initial_state_has_unit_quaternion(self):
        """초기 상태 쿼터니언은 단위 회전"""
        x = KinematicProcessModel().initial_state()
        assert x.shape == (19,)
        np.testing.assert_array_equal(x[0:4], [0, 0, 0, 1])
        assert np.all(x[4:] == 0)

    def test_position_initial_state(self):
        """쿼터니언이 없는 모델은 0 상태"""
        np.testing.assert_array_equal(PositionProcessModel().initial_state(), np.zeros(9))

    def test_pose_random_walk(self):
        """7-상태 모델은 노이즈만 더함"""
        x = np.arange(7, dtype=float)
        w = np.full(7, 0.5)
        np.testing.assert_allclose(PoseProcessModel()(x, w, 0.1), x + 0.5)

    def test_orientation_integration(self):
        """z축 각속도 적분"""
        x = OrientationProcessModel().initial_state()
        x[4:7] = [0.0, 0.0, 1.0]
        out = OrientationProcessModel()(x, np.zeros(10), 0.01)
        np.testing.assert_allclose(out[0:4], [0.0, 0.0, 0.005, 1.0], atol=1e-12)
        np.testing.assert_allclose(out[4:7], [0.0, 0.0, 1.0])

    def test_angular_acceleration(self):
        """각가속도는 각속도에 누적"""
        x = OrientationProcessModel().initial_state()
        x[7:10] = [2.0, 0.0, 0.0]
        out = OrientationProcessModel()(x, np.zeros(10), 0.5)
        np.testing.assert_allclose(out[4:7], [1.0, 0.0, 0.0])

    def test_position_constant_acceleration(self):
        """등가속도 운동"""
        x = np.zeros(9)
        x[3:6] = [1.0, 0.0, 0.0]
        x[6:9] = [0.0, 2.0, 0.0]
        out = PositionProcessModel()(x, np.zeros(9), 1.0)
        np.testing.assert_allclose(out[0:3], [1.0, 1.0, 0.0])
        np.testing.assert_allclose(out[3:6], [1.0, 2.0, 0.0])

    def test_kinematic_body_acceleration(self):
        """body 가속도는 Rᵀ로 world 변환"""
        model = KinematicProcessModel()
        q = Quaternion.from_axis_angle(np.array([0, 0, 1]), 90.0)
        x = model.initial_state()
        x[0:4] = q.to_array()
        x[16:19] = [1.0, 0.0, 0.0]
        out = model(x, np.zeros(19), 1.0)
        a_world = q.to_rotation_matrix().T @ np.array([1.0, 0.0, 0.0])
        np.testing.assert_allclose(out[13:16], a_world, atol=1e-12)
        np.testing.assert_allclose(out[10:13], 0.5 * a_world, atol=1e-12)


class TestMeasurementModels:
    """측정 모델 테스트"""

    def test_dimensions(self):
        """측정/상태 차원"""
        assert (PoseInertialMeasurement.dim, PoseInertialMeasurement.state_dim) == (4, 7)
        assert (PoseMarkerMeasurement.dim, PoseMarkerMeasurement.state_dim) == (7, 7)
        assert (OrientationInertialMeasurement.dim, OrientationInertialMeasurement.state_dim) == (7, 10)
        assert (KinematicInertialMeasurement.dim, KinematicInertialMeasurement.state_dim) == (10, 19)
        assert (KinematicMarkerMeasurement.dim, KinematicMarkerMeasurement.state_dim) == (7, 19)

    def test_kinematic_selection(self):
        """19-상태에서 [q, ω, a_body] 선택"""
        x = np.arange(19, dtype=float)
        z = KinematicInertialMeasurement()(x, np.zeros(10))
        np.testing.assert_array_equal(z, [0, 1, 2, 3, 4, 5, 6, 16, 17, 18])

    def test_marker_selection(self):
        """19-상태에서 [q, p] 선택"""
        x = np.arange(19, dtype=float)
        z = KinematicMarkerMeasurement()(x, np.zeros(7))
        np.testing.assert_array_equal(z, [0, 1, 2, 3, 10, 11, 12])

    def test_position_models(self):
        """9-상태 선택"""
        x = np.arange(9, dtype=float)
        np.testing.assert_array_equal(PositionInertialMeasurement()(x, np.zeros(3)), [6, 7, 8])
        np.testing.assert_array_equal(PositionMarkerMeasurement()(x, np.zeros(3)), [0, 1, 2])


class TestKalmanFilterEngine:
    """EKF 엔진 테스트"""

    def test_initialization(self):
        """초기 상태/공분산"""
        engine = _pose_engine()
        np.testing.assert_array_equal(engine.get_state(), [0, 0, 0, 1, 0, 0, 0])
        assert engine.trace == pytest.approx(70.0)

    def test_invalid_process_covariance(self):
        """프로세스 공분산 크기 오류"""
        with pytest.raises(ValueError):
            KalmanFilterEngine(PoseProcessModel(), process_covariance=np.eye(3))

    def test_measurement_shape_mismatch(self):
        """측정 크기 오류"""
        engine = _pose_engine()
        with pytest.raises(ValueError):
            engine.predict_and_update(0.01, np.zeros(3), PoseMarkerMeasurement(), np.eye(7))

    def test_model_state_mismatch(self):
        """다른 상태 차원의 측정 모델"""
        engine = _pose_engine()
        with pytest.raises(ValueError):
            engine.predict_and_update(0.01, np.zeros(7), KinematicMarkerMeasurement(), np.eye(7))

    def test_trace_non_increasing(self):
        """Q = 0이면 공분산 대각합이 증가하지 않음"""
        engine = _pose_engine()
        target = Quaternion.from_axis_angle(np.array([0, 1, 0]), 20.0)
        z = np.concatenate([target.to_array(), [1.0, 2.0, -5.0]])
        r = np.eye(7) * 1e-2

        previous = engine.trace
        for _ in range(50):
            engine.predict_and_update(0.01, z, PoseMarkerMeasurement(), r)
            assert engine.trace <= previous + 1e-9
            previous = engine.trace

    def test_convergence_to_constant_measurement(self):
        """일정한 측정으로 수렴"""
        engine = _pose_engine()
        target = Quaternion.from_axis_angle(np.array([0, 1, 0]), 20.0)
        z = np.concatenate([target.to_array(), [1.0, 2.0, -5.0]])
        for _ in range(100):
            engine.predict_and_update(0.01, z, PoseMarkerMeasurement(), np.eye(7) * 1e-2)

        np.testing.assert_allclose(engine.get_state(), z, atol=1e-3)

    def test_quaternion_stays_normalized(self):
        """업데이트 후 쿼터니언 정규화"""
        engine = _pose_engine(1e-3)
        z = np.array([0.3, 0.0, 0.0, 0.5])
        engine.predict_and_update(0.01, z, PoseInertialMeasurement(), np.eye(4) * 1e-2)
        assert np.linalg.norm(engine.get_state()[0:4]) == pytest.approx(1.0)

    def test_hemisphere_flip(self):
        """-q 측정은 q 측정과 같은 결과"""
        target = Quaternion.from_axis_angle(np.array([1, 0, 0]), 15.0)
        a = _pose_engine()
        b = _pose_engine()
        r = np.eye(4) * 1e-2
        for _ in range(20):
            a.predict_and_update(0.01, target.to_array(), PoseInertialMeasurement(), r)
            b.predict_and_update(0.01, (-target).to_array(), PoseInertialMeasurement(), r)

        np.testing.assert_allclose(a.get_state(), b.get_state(), atol=1e-12)
        assert a.get_state()[3] > 0

    def test_degenerate_update_rolls_back(self):
        """NaN 공분산은 실패 후 이전 상태 유지"""
        engine = _pose_engine(1e-3)
        x_before = engine.get_state()
        P_before = engine.covariance

        r = np.eye(4) * 1e-2
        r[0, 0] = np.nan
        with pytest.raises(NumericalDegeneracyError):
            engine.predict_and_update(0.01, np.array([0, 0, 0, 1.0]), PoseInertialMeasurement(), r)

        np.testing.assert_array_equal(engine.get_state(), x_before)
        np.testing.assert_array_equal(engine.covariance, P_before)

    def test_ill_conditioned_update(self):
        """조건수 초과 혁신 공분산"""
        engine = KalmanFilterEngine(
            PoseProcessModel(),
            process_covariance=np.zeros((7, 7)),
            initial_covariance=np.zeros((7, 7))
        )
        r = np.diag([1.0, 1.0, 1.0, 1e-14])
        with pytest.raises(NumericalDegeneracyError):
            engine.predict_and_update(0.0, np.array([0, 0, 0, 1.0]), PoseInertialMeasurement(), r)

    def test_filter_usable_after_failure(self):
        """실패 후 다음 업데이트는 정상 동작"""
        engine = _pose_engine(1e-3)
        bad = np.full((4, 4), np.inf)
        with pytest.raises(NumericalDegeneracyError):
            engine.predict_and_update(0.01, np.array([0, 0, 0, 1.0]), PoseInertialMeasurement(), bad)

        engine.predict_and_update(0.01, np.array([0, 0, 0, 1.0]), PoseInertialMeasurement(), np.eye(4) * 1e-2)
        assert np.all(np.isfinite(engine.get_state()))

    def test_reset(self):
        """리셋"""
        engine = _pose_engine()
        z = np.array([0.0, 0.0, 0.0, 1.0, 3.0, 3.0, 3.0])
        engine.predict_and_update(0.01, z, PoseMarkerMeasurement(), np.eye(7) * 1e-2)
        engine.reset()
        np.testing.assert_array_equal(engine.get_state(), [0, 0, 0, 1, 0, 0, 0])
        assert engine.trace == pytest.approx(70.0)

    def test_kinematic_convergence(self):
        """19-상태 마커 측정: 방향/위치 모두 1e-3 이내 수렴"""
        engine = _kinematic_engine()
        target = Quaternion.from_axis_angle(np.array([0, 1, 0]), 10.0)
        z = np.concatenate([target.to_array(), [1.0, 2.0, -5.0]])
        for _ in range(300):
            engine.predict_and_update(0.01, z, KinematicMarkerMeasurement(), np.eye(7) * 1e-2)

        state = engine.get_state()
        np.testing.assert_allclose(state[0:4], target.to_array(), atol=1e-3)
        np.testing.assert_allclose(state[10:13], [1.0, 2.0, -5.0], atol=1e-3)

    def test_kinematic_trace_non_increasing(self):
        """19-상태도 Q = 0이면 사이클마다 공분산 대각합이 증가하지 않음"""
        engine = _kinematic_engine()
        target = Quaternion.from_axis_angle(np.array([1, 0, 1]), 25.0)
        z = np.concatenate([target.to_array(), [3.0, -1.0, -40.0]])
        r = np.eye(7) * 1e-2

        previous = engine.trace
        for _ in range(150):
            engine.predict_and_update(0.01, z, KinematicMarkerMeasurement(), r)
            assert engine.trace <= previous + 1e-9
            previous = engine.trace

    def test_position_filter_tracks_acceleration(self):
        """9-상태 가속도 측정"""
        engine = KalmanFilterEngine(
            PositionProcessModel(),
            process_covariance=np.eye(9) * 1e-4,
            initial_covariance=np.eye(9)
        )
        for _ in range(50):
            engine.predict_and_update(0.01, np.array([0.0, 1.0, 0.0]), PositionInertialMeasurement(), np.eye(3) * 1e-3)
        assert engine.get_state()[7] == pytest.approx(1.0, abs=0.05)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
