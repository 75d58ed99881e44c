"""
conventions.py - 좌표계 변환 규약

센서/솔버 경계에서 필요한 모든 축 부호 변환을 한 곳에 모았습니다.
다른 모듈은 축을 직접 뒤집지 않고 이 함수들만 호출합니다.

좌표계:
┌──────────────┬───────────────────────────────────────────┐
│ vision       │ OpenCV solvePnP 출력. x 오른쪽, y 아래, z 전방 │
│ world        │ 추적기 내부 오른손 좌표계. y 위, 카메라는 -z를 봄 │
│ inertial     │ 디바이스 모션 센서 (attitude, 가속도, 자이로)   │
│ render       │ 렌더러 좌표계 (y/z 반전 + z-up 재배치)         │
│ panorama     │ equirectangular 구면. z 위 (x, -z, y)_world    │
└──────────────┴───────────────────────────────────────────┘

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np
from typing import Tuple

from .rotation import Quaternion

# vision -> world: Y, Z 축 반전
VISION_TO_WORLD_SIGNS = np.array([1.0, -1.0, -1.0])

# render view = RENDER_FLIP @ view @ WORLD_TO_RENDER_BASIS
RENDER_FLIP = np.diag([1.0, -1.0, -1.0, 1.0])
WORLD_TO_RENDER_BASIS = np.array([
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
    [0.0, -1.0, 0.0, 0.0],
    [0.0, 0.0, 0.0, 1.0]
])


def vision_to_world(rvec: np.ndarray, tvec: np.ndarray) -> Tuple[Quaternion, np.ndarray]:
    """
    solvePnP 결과(회전 벡터, 이동)를 world 규약의 (쿼터니언, 이동)으로 변환

    Args:
        rvec: 회전 벡터 (3,) 라디안
        tvec: 이동 (3,)

    Returns:
        (rotation, translation)
    """
    r = np.asarray(rvec, dtype=float).reshape(3) * VISION_TO_WORLD_SIGNS
    t = np.asarray(tvec, dtype=float).reshape(3) * VISION_TO_WORLD_SIGNS
    return Quaternion.from_rotation_vector(r), t


def inertial_to_world_attitude(attitude: Quaternion) -> Quaternion:
    """
    디바이스 attitude 쿼터니언을 world 규약으로 변환

    (x, y, z, w) -> (-y, x, z, -w)
    """
    return Quaternion(x=-attitude.y, y=attitude.x, z=attitude.z, w=-attitude.w)


def inertial_to_world_vector(v: np.ndarray) -> np.ndarray:
    """디바이스 축 벡터 (가속도, 각속도)를 world 축으로 변환: (x, y, z) -> (-y, x, z)"""
    v = np.asarray(v, dtype=float).reshape(3)
    return np.array([-v[1], v[0], v[2]])


def world_to_render_view(view: np.ndarray) -> np.ndarray:
    """world 규약 4x4 view 행렬을 렌더러 view 행렬로 변환"""
    return RENDER_FLIP @ np.asarray(view, dtype=float) @ WORLD_TO_RENDER_BASIS


# world (y-up) -> panorama (z-up)
WORLD_TO_PANORAMA = np.array([
    [1.0, 0.0, 0.0],
    [0.0, 0.0, -1.0],
    [0.0, 1.0, 0.0]
])

# vision 카메라 좌표 <-> world 규약 카메라 좌표 (대칭)
CAMERA_FLIP = np.diag(VISION_TO_WORLD_SIGNS)


def world_to_panorama(directions: np.ndarray) -> np.ndarray:
    """world 방향 (..., 3)을 equirectangular 구면 방향(z-up)으로 변환"""
    return np.asarray(directions, dtype=float) @ WORLD_TO_PANORAMA.T


def panorama_to_world(directions: np.ndarray) -> np.ndarray:
    """구면 방향(z-up)을 world 방향으로 변환"""
    return np.asarray(directions, dtype=float) @ WORLD_TO_PANORAMA
