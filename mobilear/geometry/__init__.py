"""
geometry 모듈 - 회전, 자세, 좌표계 규약

주요 기능:
- 쿼터니언 연산 및 회전 평균
- 불변 카메라 자세 (view + projection)
- 센서/솔버/렌더러 좌표계 변환
- equirectangular 구면 매핑
"""

from .rotation import (
    Quaternion,
    compose,
    normalize,
    average,
    ensure_same_hemisphere,
    quaternion_multiply,
    quaternion_to_matrix
)

from .conventions import (
    vision_to_world,
    inertial_to_world_attitude,
    inertial_to_world_vector,
    world_to_render_view,
    world_to_panorama,
    panorama_to_world,
    CAMERA_FLIP
)

from .pose import Pose, projection_from_intrinsics

from .spherical import (
    equirect_to_direction,
    direction_to_equirect,
    latitude_weights,
    pixel_solid_angles
)

__all__ = [
    # Rotation
    'Quaternion',
    'compose',
    'normalize',
    'average',
    'ensure_same_hemisphere',
    'quaternion_multiply',
    'quaternion_to_matrix',
    # Conventions
    'vision_to_world',
    'inertial_to_world_attitude',
    'inertial_to_world_vector',
    'world_to_render_view',
    'world_to_panorama',
    'panorama_to_world',
    'CAMERA_FLIP',
    # Pose
    'Pose',
    'projection_from_intrinsics',
    # Spherical
    'equirect_to_direction',
    'direction_to_equirect',
    'latitude_weights',
    'pixel_solid_angles',
]
