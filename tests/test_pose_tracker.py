"""
자세 추적기 / 마커 검출 / 프레임 디스패처 단위 테스트
"""

import threading
import cv2
import numpy as np
import pytest
from mobilear.config import CameraParameters, TrackerConfig
from mobilear.geometry import Quaternion, vision_to_world
from mobilear.tracking import (
    PoseTracker,
    TrackerMode,
    TrackerState,
    RelativePoseBuffer,
    CircleGridDetector,
    PnPSolver,
    asymmetric_grid_points,
    FrameDispatcher
)


class FakeDetector:
    """항상 같은 결과를 돌려주는 격자 검출기"""

    def __init__(self, found=True, gate=None):
        self.found = found
        self.gate = gate
        self.calls = 0

    def detect(self, gray, pattern_size):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if not self.found:
            return None
        return np.zeros((pattern_size[0] * pattern_size[1], 2), dtype=np.float32)


class FakeSolver:
    """고정 (rvec, tvec) vision 좌표계 해"""

    def __init__(self, rvec=(0.0, 0.0, 0.0), tvec=(0.0, 0.0, 50.0)):
        self.rvec = np.array(rvec, dtype=float)
        self.tvec = np.array(tvec, dtype=float)

    def solve(self, object_points, image_points, camera_matrix, distortion):
        return self.rvec.copy(), self.tvec.copy()


@pytest.fixture
def params():
    return CameraParameters(fx=500.0, fy=500.0, cx=320.0, cy=180.0)


@pytest.fixture
def frame():
    return np.zeros((360, 640), dtype=np.uint8)


def _inertial_attitude(world: Quaternion) -> Quaternion:
    """world attitude를 만드는 센서 attitude"""
    return Quaternion(x=world.y, y=-world.x, z=world.z, w=-world.w)


def _assert_rotation_close(actual: Quaternion, expected: Quaternion, atol: float):
    """부호를 맞춘 뒤 쿼터니언 성분 비교"""
    a = actual.to_array()
    e = expected.to_array()
    if np.dot(a, e) < 0:
        a = -a
    np.testing.assert_allclose(a, e, atol=atol)


def _noise_free_config(**kwargs) -> TrackerConfig:
    """프로세스 노이즈가 없는 추적기 설정"""
    return TrackerConfig(
        process_noise_orientation=0.0,
        process_noise_angular=0.0,
        process_noise_position=0.0,
        process_noise_velocity=0.0,
        process_noise_acceleration=0.0,
        **kwargs
    )


class TestRelativePoseBuffer:
    """상대 회전 버퍼 테스트"""

    def test_empty_average(self):
        """빈 버퍼 평균은 단위 회전"""
        assert RelativePoseBuffer(5).average() == Quaternion.identity()

    def test_eviction(self):
        """용량 초과 시 오래된 항목 제거"""
        buf = RelativePoseBuffer(3)
        qs = [Quaternion.from_axis_angle(np.array([0, 0, 1]), a) for a in (10, 20, 30, 40, 50)]
        for q in qs:
            buf.push(q)
        assert len(buf) == 3
        assert list(buf) == qs[2:]

    def test_average(self):
        """평균"""
        buf = RelativePoseBuffer(10)
        for a in (10.0, 20.0, 30.0):
            buf.push(Quaternion.from_axis_angle(np.array([1, 0, 0]), a))
        expected = Quaternion.from_axis_angle(np.array([1, 0, 0]), 20.0)
        assert buf.average().angle_to(expected) == pytest.approx(0.0, abs=1e-3)

    def test_invalid_capacity(self):
        """용량은 양수"""
        with pytest.raises(ValueError):
            RelativePoseBuffer(0)


class TestMarkerDetector:
    """OpenCV 격자 검출/PnP 테스트"""

    def test_grid_points(self):
        """비대칭 격자 좌표"""
        points = asymmetric_grid_points((4, 11), 4.0)
        assert points.shape == (44, 3)
        assert points.dtype == np.float32
        np.testing.assert_allclose(points[0], [0, 0, 0])
        np.testing.assert_allclose(points[1], [8, 0, 0])
        np.testing.assert_allclose(points[4], [4, 4, 0])
        np.testing.assert_allclose(points[8], [0, 8, 0])

    def test_detector_blank_image(self, frame):
        """빈 이미지에서는 검출 실패"""
        assert CircleGridDetector().detect(frame, (4, 11)) is None

    def test_pnp_recovers_pose(self, params):
        """투영한 격자점에서 자세 복원"""
        points = asymmetric_grid_points((4, 11), 4.0)
        rvec = np.array([0.1, -0.2, 0.05])
        tvec = np.array([-10.0, -20.0, 80.0])
        K = params.camera_matrix()
        dist = params.distortion()
        image_points, _ = cv2.projectPoints(points, rvec, tvec, K, dist)

        solution = PnPSolver().solve(points, image_points.reshape(-1, 2), K, dist)
        assert solution is not None
        np.testing.assert_allclose(solution[0], rvec, atol=1e-2)
        np.testing.assert_allclose(solution[1], tvec, atol=0.5)


class TestPoseTracker:
    """자세 추적기 테스트"""

    def test_initial_pose(self, params):
        """초기 자세: 단위 회전, 기본 위치"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        assert tracker.state == TrackerState.INITIALIZED
        assert tracker.mode == TrackerMode.KINEMATIC
        pose = tracker.get_pose()
        assert pose.rotation.angle_to(Quaternion.identity()) == pytest.approx(0.0, abs=1e-6)
        np.testing.assert_allclose(pose.translation, [0.0, 0.0, -50.0])

    def test_projection_from_calibration(self, params):
        """투영 행렬은 보정값에서 생성"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        assert tracker.get_pose().projection[0, 0] == pytest.approx(500.0 / 320.0)

    def test_no_marker_no_change(self, params, frame):
        """미검출은 오류가 아니며 상태 변화 없음"""
        tracker = PoseTracker(params, detector=FakeDetector(found=False), solver=FakeSolver())
        before = tracker.get_state_vector()
        assert tracker.track_visual_frame(frame, timestamp=0.0) is False
        np.testing.assert_array_equal(tracker.get_state_vector(), before)
        assert tracker.state == TrackerState.INITIALIZED
        assert len(tracker.relative_poses) == 0

    def test_marker_update(self, params, frame):
        """마커 검출 시 업데이트"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        assert tracker.track_visual_frame(frame, timestamp=0.0) is True
        assert tracker.state == TrackerState.TRACKING
        assert len(tracker.relative_poses) == 1

    def test_relative_pose_entry_without_inertial(self, params):
        """관성 샘플이 없으면 버퍼 항목은 단위 회전"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        marker = Quaternion.from_axis_angle(np.array([0, 1, 0]), 25.0)
        tracker.track_marker(marker, np.array([0.0, 0.0, -40.0]), timestamp=0.0)
        entry = list(tracker.relative_poses)[0]
        assert entry.angle_to(Quaternion.identity()) == pytest.approx(0.0, abs=1e-6)

    def test_relative_pose_entry_from_inertial(self, params):
        """버퍼 항목은 마커⁻¹ ⊗ 마지막 관성 회전"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        world = Quaternion.from_axis_angle(np.array([1, 0, 0]), 10.0)
        marker = Quaternion.from_axis_angle(np.array([0, 1, 0]), 25.0)
        tracker.track_inertial_sample(_inertial_attitude(world), np.zeros(3), np.zeros(3), timestamp=0.0)
        tracker.track_marker(marker, np.array([0.0, 0.0, -40.0]), timestamp=0.01)
        entry = list(tracker.relative_poses)[0]
        assert entry.angle_to(marker.inverse() * world) == pytest.approx(0.0, abs=1e-4)

    def test_marker_entry_independent_of_filter(self, params):
        """버퍼 항목은 필터 추정값과 무관"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        marker = Quaternion.from_axis_angle(np.array([0, 0, 1]), 40.0)
        for i in range(10):
            tracker.track_marker(marker, np.array([0.0, 0.0, -40.0]), timestamp=i * 0.01)
        for entry in tracker.relative_poses:
            assert entry.angle_to(Quaternion.identity()) == pytest.approx(0.0, abs=1e-6)

    def test_marker_rotation_converges(self, params, frame):
        """정지 마커 회전으로 수렴 (기본 설정)"""
        solver = FakeSolver(rvec=(0.4, 0.0, 0.0), tvec=(0.0, 0.0, 50.0))
        tracker = PoseTracker(params, detector=FakeDetector(), solver=solver)
        expected, _ = vision_to_world(solver.rvec, solver.tvec)

        for i in range(300):
            assert tracker.track_visual_frame(frame, timestamp=i * 0.01)

        assert expected.angle_to(Quaternion.identity()) > 20.0
        _assert_rotation_close(tracker.get_pose().rotation, expected, atol=1e-3)

    def test_inertial_and_marker_agree(self, params):
        """관성과 마커 사이 오프셋이 일정하면 관성 회전으로 수렴"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        world = Quaternion.from_axis_angle(np.array([0, 1, 0]), 15.0)
        marker = Quaternion.from_axis_angle(np.array([1, 0, 0]), 30.0)
        for i in range(100):
            tracker.track_inertial_sample(_inertial_attitude(world), np.zeros(3), np.zeros(3), timestamp=i * 0.02)
            tracker.track_marker(marker, np.array([0.0, 0.0, -40.0]), timestamp=i * 0.02 + 0.01)
        assert tracker.get_pose().rotation.angle_to(world) < 0.5

    @pytest.mark.parametrize("mode", ["pose", "kinematic"])
    def test_noise_free_marker_convergence(self, params, frame, mode):
        """노이즈 없는 정지 마커: 1e-3 이내 수렴, 공분산 대각합 비증가"""
        solver = FakeSolver(rvec=(0.4, -0.2, 0.1), tvec=(5.0, 10.0, 30.0))
        # 초기 위치 사전분포의 편향이 1e-3 아래로 내려가도록 넓게 둔다
        config = _noise_free_config(mode=mode, initial_covariance=100.0)
        tracker = PoseTracker(params, config, detector=FakeDetector(), solver=solver)
        expected_rotation, expected_translation = vision_to_world(solver.rvec, solver.tvec)

        previous = tracker.to_dict()['covariance_trace']
        for i in range(300):
            assert tracker.track_visual_frame(frame, timestamp=i * 0.01)
            trace = tracker.to_dict()['covariance_trace']
            assert trace <= previous + 1e-9
            previous = trace

        pose = tracker.get_pose()
        _assert_rotation_close(pose.rotation, expected_rotation, atol=1e-3)
        np.testing.assert_allclose(pose.translation, expected_translation, atol=1e-3)

    def test_buffer_capacity(self, params, frame):
        """설정 용량으로 버퍼 제한"""
        config = TrackerConfig(relative_pose_capacity=3)
        tracker = PoseTracker(params, config, detector=FakeDetector(), solver=FakeSolver())
        for i in range(6):
            tracker.track_visual_frame(frame, timestamp=i * 0.03)
        assert len(tracker.relative_poses) == 3

    def test_marker_translation_converges(self, params, frame):
        """마커 위치로 수렴 (vision -> world 부호 변환)"""
        solver = FakeSolver(tvec=(5.0, 10.0, 30.0))
        tracker = PoseTracker(params, detector=FakeDetector(), solver=solver)
        for i in range(100):
            tracker.track_visual_frame(frame, timestamp=i * 0.033)
        np.testing.assert_allclose(tracker.get_pose().translation, [5.0, -10.0, -30.0], atol=0.5)

    def test_inertial_attitude_converges(self, params):
        """관성 attitude로 회전 수렴"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        target = Quaternion.from_axis_angle(np.array([0, 1, 0]), 30.0)
        attitude = _inertial_attitude(target)
        for i in range(100):
            ok = tracker.track_inertial_sample(attitude, np.zeros(3), np.zeros(3), timestamp=i * 0.01)
            assert ok
        assert tracker.get_pose().rotation.angle_to(target) < 1.0
        assert tracker.state == TrackerState.TRACKING

    @pytest.mark.parametrize("mode", ["pose", "orientation", "orientation_position", "kinematic"])
    def test_modes(self, params, frame, mode):
        """모든 필터 구성에서 관성/마커 업데이트"""
        tracker = PoseTracker(params, TrackerConfig(mode=mode), detector=FakeDetector(), solver=FakeSolver())
        assert tracker.mode == TrackerMode(mode)
        for i in range(20):
            assert tracker.track_inertial_sample(
                Quaternion(0.0, 0.0, 0.0, -1.0), np.zeros(3), np.zeros(3), timestamp=i * 0.01
            )
            assert tracker.track_visual_frame(frame, timestamp=i * 0.01 + 0.005)
        assert np.all(np.isfinite(tracker.get_state_vector()))

    def test_orientation_mode_uses_marker_position(self, params, frame):
        """회전 전용 모드의 위치는 마지막 마커 값"""
        solver = FakeSolver(tvec=(1.0, 2.0, 3.0))
        tracker = PoseTracker(params, TrackerConfig(mode="orientation"), detector=FakeDetector(), solver=solver)
        tracker.track_visual_frame(frame, timestamp=0.0)
        np.testing.assert_allclose(tracker.get_pose().translation, [1.0, -2.0, -3.0])

    def test_orientation_position_mode(self, params, frame):
        """독립 위치 필터 수렴"""
        solver = FakeSolver(tvec=(1.0, 2.0, 30.0))
        tracker = PoseTracker(
            params, TrackerConfig(mode="orientation_position"), detector=FakeDetector(), solver=solver
        )
        for i in range(100):
            tracker.track_visual_frame(frame, timestamp=i * 0.033)
        np.testing.assert_allclose(tracker.get_pose().translation, [1.0, -2.0, -30.0], atol=0.5)

    def test_degenerate_sample_rejected(self, params):
        """NaN 측정은 거부되고 상태 유지"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        tracker.track_inertial_sample(Quaternion(0.0, 0.0, 0.0, -1.0), np.zeros(3), np.zeros(3), timestamp=0.0)
        before = tracker.get_state_vector()

        ok = tracker.track_inertial_sample(
            Quaternion(0.0, 0.0, 0.0, -1.0), np.array([np.nan, 0.0, 0.0]), np.zeros(3), timestamp=0.01
        )
        assert ok is False
        np.testing.assert_array_equal(tracker.get_state_vector(), before)

    def test_clock_used_without_timestamp(self, params):
        """timestamp가 없으면 주입된 시계 사용"""
        ticks = iter([0.0, 0.01, 0.02])
        calls = []

        def clock():
            calls.append(1)
            return next(ticks)

        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver(), clock=clock)
        tracker.track_inertial_sample(Quaternion(0.0, 0.0, 0.0, -1.0), np.zeros(3), np.zeros(3))
        tracker.track_inertial_sample(Quaternion(0.0, 0.0, 0.0, -1.0), np.zeros(3), np.zeros(3))
        assert len(calls) == 2

    def test_reset(self, params, frame):
        """리셋"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver(tvec=(3.0, 3.0, 3.0)))
        for i in range(5):
            tracker.track_visual_frame(frame, timestamp=i * 0.03)
        tracker.reset()
        assert tracker.state == TrackerState.INITIALIZED
        assert len(tracker.relative_poses) == 0
        np.testing.assert_allclose(tracker.get_pose().translation, [0.0, 0.0, -50.0])

    def test_to_dict(self, params):
        """상태 요약"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        d = tracker.to_dict()
        assert d['mode'] == 'kinematic'
        assert d['state'] == 'initialized'
        assert d['relative_poses'] == 0
        assert 'pose' in d

    def test_concurrent_callbacks(self, params, frame):
        """두 스레드에서 동시에 호출해도 상태가 유한"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())

        def inertial():
            for i in range(50):
                tracker.track_inertial_sample(Quaternion(0.0, 0.0, 0.0, -1.0), np.zeros(3), np.zeros(3))

        def visual():
            for i in range(50):
                tracker.track_visual_frame(frame)

        threads = [threading.Thread(target=inertial), threading.Thread(target=visual)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert np.all(np.isfinite(tracker.get_state_vector()))
        np.testing.assert_allclose(np.linalg.norm(tracker.get_state_vector()[0:4]), 1.0)


class TestFrameDispatcher:
    """프레임 디스패처 테스트"""

    def test_drops_when_busy(self, params, frame):
        """처리 중 프레임이 한도에 도달하면 버림"""
        gate = threading.Event()
        tracker = PoseTracker(params, detector=FakeDetector(gate=gate), solver=FakeSolver())
        results = []
        dispatcher = FrameDispatcher(tracker, max_in_flight=2, on_result=lambda ok, pose: results.append(ok))

        assert dispatcher.submit(frame) is True
        assert dispatcher.submit(frame) is True
        assert dispatcher.submit(frame) is False
        assert dispatcher.dropped == 1

        gate.set()
        dispatcher.close(wait=True)
        assert dispatcher.processed == 2
        assert dispatcher.in_flight == 0
        assert results == [True, True]

    def test_accepts_after_drain(self, params, frame):
        """처리가 끝나면 다시 수락"""
        tracker = PoseTracker(params, detector=FakeDetector(found=False), solver=FakeSolver())
        done = threading.Event()
        dispatcher = FrameDispatcher(tracker, max_in_flight=1, on_result=lambda ok, pose: done.set())

        assert dispatcher.submit(frame) is True
        assert done.wait(timeout=5.0)
        dispatcher.close(wait=True)
        assert dispatcher.processed == 1

    def test_invalid_limit(self, params):
        """한도는 양수"""
        tracker = PoseTracker(params, detector=FakeDetector(), solver=FakeSolver())
        with pytest.raises(ValueError):
            FrameDispatcher(tracker, max_in_flight=0)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
