"""
spherical.py - equirectangular 매핑

픽셀 (u, v) <-> 구면 방향 변환. z축이 위쪽입니다.

    위도 φ = π/2 - π·v/H,  경도 θ = 2π·u/W
    d = (cosφ·cosθ, cosφ·sinθ, sinφ)

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np
from typing import Tuple


def equirect_to_direction(u: np.ndarray, v: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    픽셀 좌표를 단위 방향 벡터로 변환

    Args:
        u, v: 픽셀 좌표 (실수 허용, 같은 shape)
        width, height: 파노라마 크기

    Returns:
        (..., 3) 단위 벡터
    """
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    phi = np.pi / 2 - np.pi * v / height
    theta = 2 * np.pi * u / width
    cos_phi = np.cos(phi)
    return np.stack([cos_phi * np.cos(theta), cos_phi * np.sin(theta), np.sin(phi)], axis=-1)


def direction_to_equirect(directions: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    방향 벡터를 픽셀 좌표로 변환 (경도는 [0, W)로 순환)

    Returns:
        (u, v) 실수 픽셀 좌표
    """
    d = np.asarray(directions, dtype=float)
    norm = np.linalg.norm(d, axis=-1)
    norm = np.where(norm > 0, norm, 1.0)
    d = d / norm[..., None]
    theta = np.mod(np.arctan2(d[..., 1], d[..., 0]), 2 * np.pi)
    phi = np.arcsin(np.clip(d[..., 2], -1.0, 1.0))
    u = theta / (2 * np.pi) * width
    v = (np.pi / 2 - phi) / np.pi * height
    return np.mod(u, width), np.clip(v, 0, height - 1e-6)


def latitude_weights(height: int) -> np.ndarray:
    """행별 면적 보정 가중치 cos(위도), 픽셀 중심 기준 (H,)"""
    v = np.arange(height) + 0.5
    phi = np.pi / 2 - np.pi * v / height
    return np.cos(phi)


def pixel_solid_angles(height: int, width: int) -> np.ndarray:
    """픽셀별 입체각 (H, W). 합은 약 4π"""
    row = latitude_weights(height) * (2 * np.pi / width) * (np.pi / height)
    return np.repeat(row[:, None], width, axis=1)
