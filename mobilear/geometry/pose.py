"""
pose.py - 카메라 자세 (view + projection)

프레임마다 생성되는 불변 자세 객체.
필터 상태 또는 마커 외부 파라미터로부터 만들어지며,
렌더러와 환경 빌더가 소비합니다.

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from .rotation import Quaternion
from .conventions import world_to_render_view

# 클리핑 평면 기본값
DEFAULT_NEAR = 0.1
DEFAULT_FAR = 500.0


def projection_from_intrinsics(
    fx: float,
    fy: float,
    cx: float,
    cy: float,
    near: float = DEFAULT_NEAR,
    far: float = DEFAULT_FAR
) -> np.ndarray:
    """
    보정된 내부 파라미터에서 4x4 원근 투영 행렬 생성

    주점이 이미지 중심에 있다고 가정하므로 NDC x = fx·X / (cx·(-Z)).

    Args:
        fx, fy: 초점 거리 (픽셀)
        cx, cy: 주점 (픽셀)
        near, far: 클리핑 평면

    Returns:
        4x4 투영 행렬
    """
    return np.array([
        [fx / cx, 0.0, 0.0, 0.0],
        [0.0, fy / cy, 0.0, 0.0],
        [0.0, 0.0, -(far + near) / (far - near), -2.0 * far * near / (far - near)],
        [0.0, 0.0, -1.0, 0.0]
    ])


@dataclass(frozen=True, eq=False)
class Pose:
    """
    카메라 자세

    world 점 X는 카메라 좌표 R·X + t로 변환되고,
    카메라는 -z 방향을 봅니다.

    Attributes:
        rotation: world -> camera 회전
        translation: world -> camera 이동 (3,)
        projection: 4x4 투영 행렬

    Example:
        >>> pose = Pose(Quaternion.identity(), np.zeros(3), projection_from_intrinsics(500, 500, 320, 240))
        >>> pose.unproject(np.array([0.0, 0.0, 0.0]))
    """
    rotation: Quaternion
    translation: np.ndarray
    projection: np.ndarray = field(default_factory=lambda: np.eye(4))

    def __post_init__(self):
        t = np.array(self.translation, dtype=float).reshape(3)
        p = np.array(self.projection, dtype=float).reshape(4, 4)
        t.setflags(write=False)
        p.setflags(write=False)
        object.__setattr__(self, 'translation', t)
        object.__setattr__(self, 'projection', p)

    @property
    def rotation_matrix(self) -> np.ndarray:
        """3x3 회전 행렬"""
        return self.rotation.to_rotation_matrix()

    @property
    def view(self) -> np.ndarray:
        """4x4 view 행렬 [R|t]"""
        V = np.eye(4)
        V[:3, :3] = self.rotation_matrix
        V[:3, 3] = self.translation
        return V

    @property
    def render_view(self) -> np.ndarray:
        """렌더러 좌표계 view 행렬"""
        return world_to_render_view(self.view)

    @property
    def camera_center(self) -> np.ndarray:
        """world 좌표계의 카메라 중심 -Rᵀt"""
        return -self.rotation_matrix.T @ self.translation

    @property
    def principal_axis(self) -> np.ndarray:
        """world 좌표계의 광축 방향 (단위 벡터)"""
        return self.rotation_matrix.T @ np.array([0.0, 0.0, -1.0])

    def unproject(self, ndc: np.ndarray) -> np.ndarray:
        """
        NDC 점을 world 좌표로 역투영

        Args:
            ndc: (3,) 또는 (N, 3) 정규화 장치 좌표 (x, y, depth)

        Returns:
            world 좌표 (3,) 또는 (N, 3)
        """
        ndc = np.asarray(ndc, dtype=float)
        single = ndc.ndim == 1
        pts = np.atleast_2d(ndc)
        h = np.hstack([pts, np.ones((len(pts), 1))])
        inv = np.linalg.inv(self.view) @ np.linalg.inv(self.projection)
        world = h @ inv.T
        world = world[:, :3] / world[:, 3:4]
        return world[0] if single else world

    def project(self, points: np.ndarray) -> np.ndarray:
        """world 점을 NDC로 투영"""
        points = np.asarray(points, dtype=float)
        single = points.ndim == 1
        pts = np.atleast_2d(points)
        h = np.hstack([pts, np.ones((len(pts), 1))])
        clip = h @ (self.projection @ self.view).T
        ndc = clip[:, :3] / clip[:, 3:4]
        return ndc[0] if single else ndc

    @classmethod
    def from_matrices(cls, view: np.ndarray, projection: np.ndarray) -> 'Pose':
        """4x4 view / projection 행렬 쌍에서 생성"""
        view = np.asarray(view, dtype=float)
        return cls(
            rotation=Quaternion.from_rotation_matrix(view[:3, :3]),
            translation=view[:3, 3].copy(),
            projection=projection
        )

    @classmethod
    def from_rotation(cls, rotation: Quaternion, projection: Optional[np.ndarray] = None) -> 'Pose':
        """회전만 있는 자세 (카메라 중심이 원점)"""
        return cls(
            rotation=rotation,
            translation=np.zeros(3),
            projection=np.eye(4) if projection is None else projection
        )

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {
            'rotation': self.rotation.to_array().tolist(),
            'translation': self.translation.tolist(),
            'view': self.view.tolist(),
            'projection': self.projection.tolist()
        }
