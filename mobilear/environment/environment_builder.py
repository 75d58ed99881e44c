"""
environment_builder.py - HDR 파노라마 환경 빌더

방향별 다중 노출 프레임 묶음을 받아 하나의 equirectangular HDR 파노라마를 만듭니다.

파이프라인:
┌──────────────────────────────────────────────────────────────────┐
│ add_frames (동기)                                                 │
│   프레임별: 흐림 검사 → ORB 특징점 수 검사                           │
│   기존 묶음과 쌍별 매칭:                                            │
│     상대 회전 ≤ 30° → Hamming 필터 → 자이로 재투영 필터 → LMedS 호모그래피 │
│   전역 정렬: 호모그래피 상대 회전 + 자이로 사전값, Huber 최소제곱        │
├──────────────────────────────────────────────────────────────────┤
│ composite (백그라운드, 취소 가능)                                   │
│   노출별 파노라마 투영 → Debevec HDR 병합 → Reinhard 톤 매핑          │
└──────────────────────────────────────────────────────────────────┘

수락 규칙: 기존 묶음이 없으면 항상 수락. 5개 미만이면 1개 이상,
그 이상이면 3개 이상의 묶음과 매칭되어야 합니다.

Version: 1.0
Author: FurSys AI Team
"""

import threading
import numpy as np
from concurrent.futures import ThreadPoolExecutor, Future, CancelledError
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Callable
import logging

import cv2
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from ..config.calibration import CameraParameters
from ..config.system_config import EnvironmentConfig
from ..exceptions import CaptureFailure, CaptureQualityError, CompositeCancelledError
from ..geometry import (
    Pose,
    Quaternion,
    CAMERA_FLIP,
    equirect_to_direction,
    panorama_to_world
)
from .blur_detector import BlurDetector
from .hdr_builder import HDRBuilder
from .tone_mapper import ToneMapper

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Optional['CompositeResult']], None]


@dataclass(frozen=True, eq=False)
class FrameObservation:
    """
    촬영 프레임 (불변)

    Attributes:
        image: BGR uint8 이미지
        pose: 촬영 시점 자세 (자이로 기반 회전)
        exposure: 노출 시간 (초)
        timestamp: 촬영 시각 (초)
    """
    image: np.ndarray
    pose: Pose
    exposure: float
    timestamp: float = 0.0


@dataclass
class PairwiseMatch:
    """두 묶음 사이 검증된 매칭"""
    new_index: int
    old_index: int
    inliers: int
    relative_rotation: np.ndarray  # R_old · R_newᵀ (호모그래피 추정)


@dataclass
class CompositeResult:
    """
    합성 결과

    Attributes:
        exposures: 노출별 8비트 파노라마 (이미지, 노출 시간)
        hdr: float32 BGR 방사도 파노라마
        preview: 톤 매핑된 8비트 파노라마
    """
    exposures: List[Tuple[np.ndarray, float]]
    hdr: np.ndarray
    preview: np.ndarray


@dataclass
class _CaptureBatch:
    """수락된 프레임 묶음"""
    index: int
    frames: List[FrameObservation]
    points: np.ndarray
    descriptors: np.ndarray
    initial_rotation: np.ndarray
    rotation: np.ndarray = field(default=None)

    def __post_init__(self):
        if self.rotation is None:
            self.rotation = self.initial_rotation.copy()


def _rotation_angle_deg(R: np.ndarray) -> float:
    cos = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    return float(np.degrees(np.arccos(cos)))


def _nearest_rotation(M: np.ndarray) -> np.ndarray:
    """SO(3) 최근접 회전 (SVD 투영)"""
    if np.linalg.det(M) < 0:
        M = -M
    U, _, Vt = np.linalg.svd(M)
    R = U @ Vt
    if np.linalg.det(R) < 0:
        R = U @ np.diag([1.0, 1.0, -1.0]) @ Vt
    return R


class CompositeJob:
    """
    백그라운드 합성 작업 핸들

    Example:
        >>> job = builder.composite(lambda msg, result: print(msg))
        >>> job.cancel()          # 세션 중단
        >>> result = job.result() # 완료까지 대기
    """

    def __init__(self):
        self._cancel_event = threading.Event()
        self._future: Optional[Future] = None

    def _attach(self, future: Future):
        self._future = future

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> bool:
        """취소 요청. 시작 전이면 즉시, 실행 중이면 다음 단계 경계에서 중단"""
        self._cancel_event.set()
        if self._future is not None:
            self._future.cancel()
        return True

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> CompositeResult:
        """
        Raises:
            CompositeCancelledError: 작업이 취소됨
        """
        try:
            return self._future.result(timeout)
        except CancelledError as e:
            raise CompositeCancelledError("Composite cancelled before start") from e


class EnvironmentBuilder:
    """
    특징점 기반 HDR 환경 빌더

    Example:
        >>> builder = EnvironmentBuilder(params, EnvironmentConfig())
        >>> try:
        ...     builder.add_frames(batch)
        ... except CaptureQualityError as e:
        ...     print(e.reason)
        >>> job = builder.composite(on_progress)
    """

    def __init__(
        self,
        camera_parameters: CameraParameters,
        config: Optional[EnvironmentConfig] = None,
        hdr_builder: Optional[HDRBuilder] = None,
        tone_mapper: Optional[ToneMapper] = None
    ):
        self.camera_parameters = camera_parameters
        self.config = config or EnvironmentConfig()
        self.hdr_builder = hdr_builder or HDRBuilder()
        self.tone_mapper = tone_mapper or ToneMapper()

        self.blur_detector = BlurDetector(360, 640, threshold=self.config.edge_threshold)
        self._orb = cv2.ORB_create()
        self._matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=True)

        K = camera_parameters.camera_matrix()
        self._K = K
        self._K_inv = np.linalg.inv(K)

        self._lock = threading.Lock()
        self._batches: List[_CaptureBatch] = []
        self._edges: List[PairwiseMatch] = []
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.composite_workers,
            thread_name_prefix="environment-composite"
        )

        logger.info("EnvironmentBuilder initialized")

    # ------------------------------------------------------------------
    # 프레임 추가
    # ------------------------------------------------------------------

    @property
    def frames(self) -> List[FrameObservation]:
        """수락된 모든 프레임"""
        with self._lock:
            return [f for b in self._batches for f in b.frames]

    @property
    def batch_count(self) -> int:
        with self._lock:
            return len(self._batches)

    @property
    def rotations(self) -> List[Quaternion]:
        """묶음별 전역 정렬된 회전"""
        with self._lock:
            return [Quaternion.from_rotation_matrix(b.rotation) for b in self._batches]

    def reset(self):
        with self._lock:
            self._batches = []
            self._edges = []

    def add_frames(self, frames: Sequence[FrameObservation]):
        """
        한 방향의 다중 노출 프레임 묶음 추가

        Args:
            frames: 같은 시점에 노출만 다르게 촬영한 프레임들

        Raises:
            CaptureQualityError: BLURRY, NOT_ENOUGH_FEATURES,
                NO_PAIRWISE_MATCHES, NO_GLOBAL_MATCHES
        """
        if len(frames) == 0:
            raise ValueError("At least one frame is required")

        cfg = self.config
        features = []
        for frame in frames:
            gray = frame.image
            if gray.ndim == 3:
                gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)

            verdict = self.blur_detector(gray)
            if verdict is not None and verdict[0] < cfg.blur_threshold:
                logger.warning(f"Frame rejected as blurry: per={verdict[0]:.4f}")
                raise CaptureQualityError(CaptureFailure.BLURRY, f"per={verdict[0]:.4f}")

            keypoints, descriptors = self._orb.detectAndCompute(gray, None)
            if descriptors is None or len(keypoints) < cfg.min_features:
                count = 0 if keypoints is None else len(keypoints)
                logger.warning(f"Frame rejected: {count} features")
                raise CaptureQualityError(CaptureFailure.NOT_ENOUGH_FEATURES, f"{count} features")

            points = np.array([kp.pt for kp in keypoints], dtype=np.float32)
            features.append((points, descriptors))

        # 가장 긴 노출을 매칭 기준 프레임으로 사용
        ref = int(np.argmax([f.exposure for f in frames]))
        points, descriptors = features[ref]
        rotation = frames[ref].pose.rotation_matrix

        with self._lock:
            index = len(self._batches)
            batch = _CaptureBatch(
                index=index,
                frames=list(frames),
                points=points,
                descriptors=descriptors,
                initial_rotation=rotation
            )

            matches = []
            for other in self._batches:
                match = self._match_pair(batch, other)
                if match is not None:
                    matches.append(match)

            n_prev = len(self._batches)
            if n_prev > 0 and len(matches) == 0:
                logger.warning("Frame rejected: no pairwise matches")
                raise CaptureQualityError(CaptureFailure.NO_PAIRWISE_MATCHES)
            if n_prev >= 5 and len(matches) <= 2:
                logger.warning(f"Frame rejected: only {len(matches)} pairwise matches")
                raise CaptureQualityError(
                    CaptureFailure.NO_GLOBAL_MATCHES, f"{len(matches)} matched batches"
                )

            if n_prev > 0:
                rotations = self._align(self._batches + [batch], self._edges + matches)
                for b, R in zip(self._batches, rotations[:-1]):
                    b.rotation = R
                batch.rotation = rotations[-1]

            self._batches.append(batch)
            self._edges.extend(matches)

        logger.info(f"Frames accepted: batch={index}, exposures={len(frames)}, pairs={len(matches)}")

    def _match_pair(self, new: _CaptureBatch, old: _CaptureBatch) -> Optional[PairwiseMatch]:
        """쌍별 매칭 필터 체인. 통과하지 못하면 None"""
        cfg = self.config

        relative = new.initial_rotation @ old.initial_rotation.T
        if _rotation_angle_deg(relative) > cfg.max_rotation_deg:
            return None

        matches = self._matcher.match(old.descriptors, new.descriptors)
        if len(matches) < cfg.min_matches:
            return None

        matches = [m for m in matches if m.distance <= cfg.max_hamming_distance]
        if len(matches) < cfg.min_matches:
            return None

        src = new.points[[m.trainIdx for m in matches]]
        dst = old.points[[m.queryIdx for m in matches]]

        # 자이로 회전으로 예측한 위치와의 재투영 거리
        F = self._K @ CAMERA_FLIP @ old.initial_rotation @ new.initial_rotation.T @ CAMERA_FLIP @ self._K_inv
        proj = np.hstack([src, np.ones((len(src), 1))]) @ F.T
        predicted = proj[:, :2] / proj[:, 2:3]
        keep = np.linalg.norm(dst - predicted, axis=1) <= cfg.max_reprojection_distance
        src, dst = src[keep], dst[keep]
        if len(src) < cfg.min_matches:
            return None

        H, mask = cv2.findHomography(src, dst, cv2.LMEDS, 2.0)
        if H is None or mask is None:
            return None
        inliers = int(np.count_nonzero(mask))
        if inliers < cfg.min_matches:
            return None

        R_rel = _nearest_rotation(CAMERA_FLIP @ self._K_inv @ H @ self._K @ CAMERA_FLIP)
        return PairwiseMatch(
            new_index=new.index,
            old_index=old.index,
            inliers=inliers,
            relative_rotation=R_rel
        )

    def _align(self, batches: List[_CaptureBatch], edges: List[PairwiseMatch]) -> List[np.ndarray]:
        """
        전역 회전 정렬

        첫 묶음을 고정하고, 매칭 상대 회전 잔차와 자이로 사전값 잔차를
        Huber 손실 최소제곱으로 최소화합니다.

        Raises:
            CaptureQualityError(NO_GLOBAL_MATCHES): 수렴 실패 또는 잔차 과다
        """
        cfg = self.config
        anchor = batches[0].rotation
        x0 = np.concatenate([Rotation.from_matrix(b.rotation).as_rotvec() for b in batches[1:]])

        def unpack(x):
            return [anchor] + list(Rotation.from_rotvec(x.reshape(-1, 3)).as_matrix())

        def residuals(x):
            Rs = unpack(x)
            res = []
            for e in edges:
                predicted = Rs[e.old_index] @ Rs[e.new_index].T
                res.append(Rotation.from_matrix(e.relative_rotation @ predicted.T).as_rotvec())
            for b, R in zip(batches[1:], Rs[1:]):
                res.append(cfg.alignment_prior_weight * Rotation.from_matrix(R @ b.initial_rotation.T).as_rotvec())
            return np.concatenate(res)

        result = least_squares(
            residuals,
            x0,
            method="trf",
            loss="huber",
            f_scale=np.deg2rad(1.0)
        )
        if not result.success:
            raise CaptureQualityError(CaptureFailure.NO_GLOBAL_MATCHES, "alignment did not converge")

        Rs = unpack(result.x)
        new_index = len(batches) - 1
        for e in edges:
            if e.new_index != new_index:
                continue
            err = _rotation_angle_deg(e.relative_rotation @ (Rs[e.old_index] @ Rs[new_index].T).T)
            if err > cfg.max_alignment_error_deg:
                logger.warning(f"Alignment residual {err:.2f} deg against batch {e.old_index}")
                raise CaptureQualityError(CaptureFailure.NO_GLOBAL_MATCHES, f"residual {err:.2f} deg")

        drift = _rotation_angle_deg(Rs[new_index] @ batches[new_index].initial_rotation.T)
        if drift > cfg.max_rotation_deg:
            raise CaptureQualityError(CaptureFailure.NO_GLOBAL_MATCHES, f"drift {drift:.2f} deg")

        logger.debug(f"Global alignment: cost={result.cost:.6f}, nfev={result.nfev}")
        return Rs

    # ------------------------------------------------------------------
    # 합성
    # ------------------------------------------------------------------

    def composite(self, progress_callback: Optional[ProgressCallback] = None) -> CompositeJob:
        """
        백그라운드 HDR 합성 시작 (호출자를 막지 않음)

        Args:
            progress_callback: (단계 메시지, 결과 또는 None). 마지막 호출에 결과 전달

        Returns:
            CompositeJob: 취소/대기 핸들
        """
        with self._lock:
            snapshot = [(list(b.frames), b.rotation.copy()) for b in self._batches]
        if not snapshot:
            raise ValueError("No frames to composite")

        callback = progress_callback or (lambda message, result: None)
        job = CompositeJob()
        job._attach(self._executor.submit(self._run_composite, snapshot, callback, job))
        logger.info(f"Composite started: {len(snapshot)} batches")
        return job

    def _run_composite(self, snapshot, callback: ProgressCallback, job: CompositeJob) -> CompositeResult:
        width, height = self.config.panorama_width, self.config.panorama_height

        u, v = np.meshgrid(np.arange(width) + 0.5, np.arange(height) + 0.5)
        directions = panorama_to_world(equirect_to_direction(u, v, width, height)).reshape(-1, 3)

        exposures = sorted({round(f.exposure, 9) for frames, _ in snapshot for f in frames})
        panoramas = []
        for k, exposure in enumerate(exposures):
            self._check_cancel(job)
            callback(f"Projecting exposure {k + 1}/{len(exposures)} ({exposure:.4f}s)", None)

            accum = np.zeros((height * width, 3))
            weight = np.zeros(height * width)
            for frames, R in snapshot:
                frame = min(frames, key=lambda f: abs(f.exposure - exposure))
                self._project_frame(frame.image, R, directions, accum, weight, (height, width))

            pano = np.where(weight[:, None] > 0, accum / np.maximum(weight, 1e-12)[:, None], 0.0)
            panoramas.append((np.clip(pano, 0, 255).astype(np.uint8).reshape(height, width, 3), exposure))

        self._check_cancel(job)
        callback("Merging exposures", None)
        hdr = self.hdr_builder.build(panoramas)

        self._check_cancel(job)
        callback("Tone mapping", None)
        preview = self.tone_mapper.map(hdr)

        result = CompositeResult(exposures=panoramas, hdr=hdr, preview=preview)
        callback("Done", result)
        logger.info(f"Composite finished: {width}x{height}, {len(panoramas)} exposures")
        return result

    @staticmethod
    def _check_cancel(job: CompositeJob):
        if job.cancel_requested:
            logger.info("Composite cancelled")
            raise CompositeCancelledError("Composite cancelled")

    def _project_frame(
        self,
        image: np.ndarray,
        R: np.ndarray,
        directions: np.ndarray,
        accum: np.ndarray,
        weight: np.ndarray,
        shape: Tuple[int, int]
    ):
        """파노라마 방향마다 프레임을 샘플링하여 가장자리 감쇠 가중 누적"""
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        h, w = image.shape[:2]
        fx, fy = self._K[0, 0], self._K[1, 1]
        cx, cy = self._K[0, 2], self._K[1, 2]

        cam = directions @ R.T
        front = cam[:, 2] < -1e-6
        z = np.where(front, -cam[:, 2], 1.0)
        x = fx * cam[:, 0] / z + cx
        y = -fy * cam[:, 1] / z + cy

        valid = front & (x >= 0) & (x <= w - 1) & (y >= 0) & (y <= h - 1)
        map_x = np.where(valid, x, -1).astype(np.float32).reshape(shape)
        map_y = np.where(valid, y, -1).astype(np.float32).reshape(shape)
        sampled = cv2.remap(image[:, :, :3], map_x, map_y, cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT)

        feather = (1 - np.abs(x - cx) / max(cx, 1)) * (1 - np.abs(y - cy) / max(cy, 1))
        wt = np.where(valid, np.clip(feather, 0, 1), 0.0)

        accum += sampled.reshape(-1, 3) * wt[:, None]
        weight += wt

    def close(self, wait: bool = True):
        """합성 스레드 종료"""
        self._executor.shutdown(wait=wait)
