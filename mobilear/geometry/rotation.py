"""
rotation.py - 쿼터니언/회전 유틸리티

필터, 추적기, 환경 빌더가 공통으로 사용하는 회전 연산 모듈.

주요 기능:
- 해밀턴 곱 기반 회전 합성
- 정규화 (크기가 0에 가까우면 정규화 생략)
- 축-각도 / 회전 벡터 / 회전 행렬 변환
- 다중 샘플 회전 평균 (외적 누적 행렬의 고유벡터)

표현 규약:
- 배열 형식은 [x, y, z, w] (scipy 표준)
- compose(a, b) = a ⊗ b: b의 회전을 a의 좌표계에서 적용

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np
from scipy.spatial.transform import Rotation
from typing import Sequence, Union
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

# 정규화 생략 임계값
NORMALIZE_EPSILON = 1e-7


def quaternion_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    배열 형식 해밀턴 곱

    Args:
        a: [x, y, z, w]
        b: [x, y, z, w]

    Returns:
        a ⊗ b [x, y, z, w]
    """
    x1, y1, z1, w1 = a
    x2, y2, z2, w2 = b
    return np.array([
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2,
        w1*w2 - x1*x2 - y1*y2 - z1*z2
    ])


def quaternion_to_matrix(q: np.ndarray) -> np.ndarray:
    """
    [x, y, z, w] 배열에서 3x3 회전 행렬

    입력이 단위 크기가 아니어도 정규화 후 변환합니다.
    크기가 0에 가까우면 단위 행렬을 반환합니다.
    """
    q = np.asarray(q, dtype=float)
    n = np.dot(q, q)
    if n < NORMALIZE_EPSILON ** 2:
        return np.eye(3)
    x, y, z, w = q
    s = 2.0 / n
    return np.array([
        [1 - s*(y*y + z*z), s*(x*y - z*w), s*(x*z + y*w)],
        [s*(x*y + z*w), 1 - s*(x*x + z*z), s*(y*z - x*w)],
        [s*(x*z - y*w), s*(y*z + x*w), 1 - s*(x*x + y*y)]
    ])


@dataclass(frozen=True)
class Quaternion:
    """
    쿼터니언 (x, y, z, w)

    표현: q = w + xi + yj + zk
    회전으로 사용할 때는 |q| = 1 이어야 합니다.

    Example:
        >>> q = Quaternion.from_axis_angle(np.array([0, 0, 1]), 90.0)
        >>> q.rotate(np.array([1.0, 0.0, 0.0]))
        array([0., 1., 0.])
    """
    x: float
    y: float
    z: float
    w: float

    def to_array(self) -> np.ndarray:
        """[x, y, z, w] 형식"""
        return np.array([self.x, self.y, self.z, self.w], dtype=float)

    def to_array_wxyz(self) -> np.ndarray:
        """[w, x, y, z] 형식"""
        return np.array([self.w, self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_array(cls, arr: Union[Sequence[float], np.ndarray]) -> 'Quaternion':
        """[x, y, z, w] 배열에서 생성"""
        return cls(x=float(arr[0]), y=float(arr[1]), z=float(arr[2]), w=float(arr[3]))

    @property
    def norm(self) -> float:
        """쿼터니언 크기"""
        return float(np.linalg.norm(self.to_array()))

    @property
    def is_unit(self) -> bool:
        """단위 쿼터니언 여부"""
        return abs(self.norm - 1.0) < 1e-6

    def normalize(self) -> 'Quaternion':
        """
        단위 쿼터니언으로 정규화

        크기가 NORMALIZE_EPSILON 미만이면 정규화하지 않고 그대로 반환합니다.
        """
        norm = self.norm
        if norm < NORMALIZE_EPSILON:
            return self
        return Quaternion.from_array(self.to_array() / norm)

    def conjugate(self) -> 'Quaternion':
        """켤레 쿼터니언"""
        return Quaternion(x=-self.x, y=-self.y, z=-self.z, w=self.w)

    def inverse(self) -> 'Quaternion':
        """역 쿼터니언"""
        n2 = float(np.dot(self.to_array(), self.to_array()))
        if n2 < NORMALIZE_EPSILON ** 2:
            return self.conjugate()
        c = self.conjugate().to_array() / n2
        return Quaternion.from_array(c)

    def __mul__(self, other: 'Quaternion') -> 'Quaternion':
        """해밀턴 곱 (회전 합성)"""
        return Quaternion.from_array(quaternion_multiply(self.to_array(), other.to_array()))

    def __neg__(self) -> 'Quaternion':
        return Quaternion(x=-self.x, y=-self.y, z=-self.z, w=-self.w)

    def dot(self, other: 'Quaternion') -> float:
        """내적"""
        return float(np.dot(self.to_array(), other.to_array()))

    def angle_to(self, other: 'Quaternion') -> float:
        """다른 쿼터니언까지의 회전 각도 (도)"""
        d = abs(self.normalize().dot(other.normalize()))
        d = np.clip(d, -1.0, 1.0)
        return float(np.rad2deg(2 * np.arccos(d)))

    def rotate(self, v: np.ndarray) -> np.ndarray:
        """벡터 회전"""
        return self.to_rotation_matrix() @ np.asarray(v, dtype=float)

    def to_rotation_matrix(self) -> np.ndarray:
        """3x3 회전 행렬"""
        return quaternion_to_matrix(self.to_array())

    def to_rotation_vector(self) -> np.ndarray:
        """회전 벡터 (축 * 라디안)"""
        return Rotation.from_quat(self.normalize().to_array()).as_rotvec()

    def __repr__(self) -> str:
        return f"Quaternion(x={self.x:.4f}, y={self.y:.4f}, z={self.z:.4f}, w={self.w:.4f})"

    @classmethod
    def identity(cls) -> 'Quaternion':
        """단위 쿼터니언 (회전 없음)"""
        return cls(x=0.0, y=0.0, z=0.0, w=1.0)

    @classmethod
    def from_axis_angle(cls, axis: np.ndarray, angle_deg: float) -> 'Quaternion':
        """축-각도(도)에서 생성"""
        axis = np.asarray(axis, dtype=float)
        axis = axis / np.linalg.norm(axis)
        half = np.deg2rad(angle_deg) / 2
        s = np.sin(half)
        return cls(x=axis[0] * s, y=axis[1] * s, z=axis[2] * s, w=float(np.cos(half)))

    @classmethod
    def from_rotation_vector(cls, rvec: np.ndarray) -> 'Quaternion':
        """회전 벡터(라디안)에서 생성"""
        rvec = np.asarray(rvec, dtype=float).reshape(3)
        return cls.from_array(Rotation.from_rotvec(rvec).as_quat())

    @classmethod
    def from_rotation_matrix(cls, R: np.ndarray) -> 'Quaternion':
        """3x3 회전 행렬에서 생성"""
        return cls.from_array(Rotation.from_matrix(np.asarray(R, dtype=float)).as_quat())


def compose(a: Quaternion, b: Quaternion) -> Quaternion:
    """회전 합성 a ⊗ b (비가환)"""
    return a * b


def normalize(q: Quaternion) -> Quaternion:
    """정규화 (크기가 0에 가까우면 생략)"""
    return q.normalize()


def ensure_same_hemisphere(q: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """
    쿼터니언 부호 일관성 유지

    q와 -q는 같은 회전이므로, reference와의 내적이 음수면 부호를 반전합니다.
    """
    q = np.asarray(q, dtype=float)
    if np.dot(q, reference) < 0:
        return -q
    return q


def average(quaternions: Sequence[Quaternion]) -> Quaternion:
    """
    다중 쿼터니언 평균

    M = Σ qᵢqᵢᵀ (x, y, z, w 표현)의 최대 고유값 고유벡터를 사용합니다.
    외적은 부호에 불변이므로 q와 -q가 섞여 있어도 결과가 같습니다.
    대칭 PSD 행렬이므로 SVD의 U 첫 번째 열과 동일합니다.

    빈 입력은 호출 전제 조건 위반이며, 결정적으로 단위 쿼터니언을 반환합니다.

    Args:
        quaternions: 단위 쿼터니언 목록

    Returns:
        평균 단위 쿼터니언 (w >= 0)
    """
    if len(quaternions) == 0:
        logger.debug("average() called with empty input, returning identity")
        return Quaternion.identity()

    Q = np.array([q.to_array() for q in quaternions])
    M = Q.T @ Q
    U, _, _ = np.linalg.svd(M)
    u = U[:, 0]
    if u[3] < 0:
        u = -u
    return Quaternion.from_array(u).normalize()
