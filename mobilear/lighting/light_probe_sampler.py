"""
light_probe_sampler.py - 환경 맵 광원 샘플링

equirectangular 환경 맵을 2^levels 개의 영역으로 재귀 분할하고
영역마다 하나의 방향성 광원을 만듭니다.

분할 방식:
1. median cut: 긴 변에 수직으로, 양쪽 에너지가 같아지는 위치에서 분할
2. variance cut: 에너지 분산이 큰 축을 따라, 양쪽 분산 합이 최소가 되는 위치에서 분할

에너지 = 휘도 × cos(위도). 극 근처 픽셀의 과대 표현을 보정합니다.
영역 합은 요약 면적 테이블(summed-area table)로 O(1)에 계산합니다.

Version: 1.0
Author: FurSys AI Team
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Tuple, Dict, Any, Optional
import logging

from ..geometry import equirect_to_direction, panorama_to_world, latitude_weights, pixel_solid_angles

logger = logging.getLogger(__name__)

# Rec. 709 휘도 계수 (R, G, B)
LUMINANCE = np.array([0.2125, 0.7154, 0.0721])

Region = Tuple[int, int, int, int]  # (r0, c0, r1, c1), 반열린 구간


@dataclass
class LightSource:
    """
    방향성 광원

    Attributes:
        direction: 광원에서 원점으로 향하는 월드 단위 벡터
        ambient: RGB 주변광 세기
        diffuse: RGB 확산광 세기 (영역 평균 방사도)
        specular: RGB 정반사 세기 (영역 최대 방사도)
        centroid: 에너지 중심 픽셀 좌표 (x, y)
        area: 영역 입체각 (sr)
        region: (r0, c0, r1, c1)
    """
    direction: np.ndarray
    ambient: np.ndarray
    diffuse: np.ndarray
    specular: np.ndarray
    centroid: Tuple[float, float]
    area: float
    region: Region

    def to_dict(self) -> Dict[str, Any]:
        return {
            'direction': [float(v) for v in self.direction],
            'ambient': [float(v) for v in self.ambient],
            'diffuse': [float(v) for v in self.diffuse],
            'specular': [float(v) for v in self.specular],
            'centroid': [float(v) for v in self.centroid],
            'area': float(self.area),
            'region': [int(v) for v in self.region]
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'LightSource':
        return cls(
            direction=np.array(d['direction'], dtype=float),
            ambient=np.array(d['ambient'], dtype=float),
            diffuse=np.array(d['diffuse'], dtype=float),
            specular=np.array(d['specular'], dtype=float),
            centroid=(float(d['centroid'][0]), float(d['centroid'][1])),
            area=float(d['area']),
            region=tuple(int(v) for v in d['region'])
        )


def _summed_area(values: np.ndarray) -> np.ndarray:
    """(H, W, ...) -> (H+1, W+1, ...) 요약 면적 테이블"""
    sat = np.zeros((values.shape[0] + 1, values.shape[1] + 1) + values.shape[2:])
    sat[1:, 1:] = values.cumsum(axis=0).cumsum(axis=1)
    return sat


def _region_sum(sat: np.ndarray, r0, c0, r1, c1):
    """반열린 영역 [r0, r1) x [c0, c1) 합. 인덱스는 배열 허용"""
    return sat[r1, c1] - sat[r0, c1] - sat[r1, c0] + sat[r0, c0]


class _RadianceTables:
    """
    한 번의 샘플링 호출에 쓰이는 방사도와 요약 면적 테이블

    호출마다 새로 만들어 샘플러 인스턴스에는 호출 간 상태가 남지 않습니다.
    """

    def __init__(self, image: np.ndarray):
        img = np.asarray(image)
        if img.ndim == 2:
            img = img[:, :, None].repeat(3, axis=2)
        if img.ndim != 3 or img.shape[2] < 3:
            raise ValueError("Expected a grayscale, BGR or BGRA image")

        if img.dtype == np.uint8:
            radiance = img[:, :, :3].astype(float) / 255.0
        else:
            radiance = np.nan_to_num(img[:, :, :3].astype(float), nan=0.0, posinf=0.0, neginf=0.0)
            radiance = np.maximum(radiance, 0.0)

        # BGR -> RGB
        self.radiance = radiance[:, :, ::-1]
        self.height, self.width = radiance.shape[:2]

        weights = latitude_weights(self.height)[:, None]
        energy = (self.radiance @ LUMINANCE) * weights
        rows, cols = np.mgrid[0:self.height, 0:self.width] + 0.5

        solid = pixel_solid_angles(self.height, self.width)
        self.energy_sat = _summed_area(energy)
        self.row_sat = _summed_area(energy * rows)
        self.row2_sat = _summed_area(energy * rows ** 2)
        self.col_sat = _summed_area(energy * cols)
        self.col2_sat = _summed_area(energy * cols ** 2)
        self.solid_sat = _summed_area(solid)
        self.flux_sat = _summed_area(self.radiance * solid[:, :, None])

    def energy(self, r0, c0, r1, c1):
        return _region_sum(self.energy_sat, r0, c0, r1, c1)

    def row_extent(self, region: Region) -> float:
        return float(region[2] - region[0])

    def col_extent(self, region: Region) -> float:
        """위도 보정 폭 (영역에서 가장 넓은 위도 기준)"""
        r0, c0, r1, c1 = region
        if r0 <= self.height / 2 <= r1:
            return float(c1 - c0)
        phi0 = np.pi / 2 - np.pi * r0 / self.height
        phi1 = np.pi / 2 - np.pi * r1 / self.height
        return float((c1 - c0) * max(np.cos(phi0), np.cos(phi1)))

    def spread(self, r0, c0, r1, c1, axis: int):
        """에너지 가중 좌표의 (에너지, 에너지 x 분산)"""
        e = self.energy(r0, c0, r1, c1)
        s1_sat, s2_sat = (self.row_sat, self.row2_sat) if axis == 0 else (self.col_sat, self.col2_sat)
        s1 = _region_sum(s1_sat, r0, c0, r1, c1)
        s2 = _region_sum(s2_sat, r0, c0, r1, c1)
        safe = np.where(e > 0, e, 1.0)
        return e, np.where(e > 0, s2 - s1 * s1 / safe, 0.0)


class LightProbeSampler:
    """
    환경 맵 광원 샘플러

    8비트 톤 매핑 이미지(0~255 → 0~1)와 float HDR 버퍼를 모두 받습니다.
    HDR 입력의 NaN/음수 값은 0으로 처리합니다.
    한 인스턴스를 여러 스레드에서 동시에 사용해도 됩니다.

    Example:
        >>> sampler = LightProbeSampler(levels=4)
        >>> lights = sampler.sample_median_cut(hdr)
        >>> len(lights)
        16
    """

    def __init__(self, levels: int = 4, ambient_ratio: float = 0.2):
        if levels < 0:
            raise ValueError(f"levels must be non-negative, got {levels}")
        self.levels = levels
        self.ambient_ratio = ambient_ratio

    @classmethod
    def from_config(cls, config) -> 'LightProbeSampler':
        """LightProbeConfig에서 생성"""
        return cls(levels=config.levels, ambient_ratio=config.ambient_ratio)

    def sample(self, image: np.ndarray, algorithm: str = "median_cut") -> List[LightSource]:
        """algorithm: "median_cut" 또는 "variance_cut" """
        if algorithm == "median_cut":
            return self.sample_median_cut(image)
        if algorithm == "variance_cut":
            return self.sample_variance_cut(image)
        raise ValueError(f"Unknown sampling algorithm: {algorithm}")

    def sample_median_cut(self, image: np.ndarray) -> List[LightSource]:
        return self._run(image, self._median_split)

    def sample_variance_cut(self, image: np.ndarray) -> List[LightSource]:
        return self._run(image, self._variance_split)

    # ------------------------------------------------------------------

    def _run(self, image: np.ndarray, splitter) -> List[LightSource]:
        tables = _RadianceTables(image)

        regions = [(0, 0, tables.height, tables.width)]
        for _ in range(self.levels):
            next_regions = []
            for region in regions:
                next_regions.extend(splitter(tables, region))
            regions = next_regions

        lights = [self._light(tables, region) for region in regions]
        logger.debug(f"Sampled {len(lights)} lights from {tables.width}x{tables.height} map")
        return lights

    @staticmethod
    def _halves(region: Region, axis: int, k) -> Tuple[Region, Region]:
        r0, c0, r1, c1 = region
        if axis == 0:
            return (r0, c0, k, c1), (k, c0, r1, c1)
        return (r0, c0, r1, k), (r0, k, r1, c1)

    @staticmethod
    def _degenerate(region: Region) -> List[Region]:
        """더 나눌 수 없는 영역: 빈 영역을 짝으로 추가하여 광원 수 유지"""
        r0, c0, r1, c1 = region
        return [region, (r1, c1, r1, c1)]

    @staticmethod
    def _candidates(region: Region, axis: int) -> np.ndarray:
        r0, c0, r1, c1 = region
        lo, hi = (r0, r1) if axis == 0 else (c0, c1)
        return np.arange(lo + 1, hi)

    def _median_split(self, tables: _RadianceTables, region: Region) -> List[Region]:
        r0, c0, r1, c1 = region
        if r1 - r0 < 2 and c1 - c0 < 2:
            return self._degenerate(region)

        axis = 0 if tables.row_extent(region) >= tables.col_extent(region) else 1
        if len(self._candidates(region, axis)) == 0:
            axis = 1 - axis
        ks = self._candidates(region, axis)

        total = tables.energy(r0, c0, r1, c1)
        if total <= 0:
            k = int(ks[len(ks) // 2])
        else:
            if axis == 0:
                first = tables.energy(r0, c0, ks, c1)
            else:
                first = tables.energy(r0, c0, r1, ks)
            k = int(ks[np.argmin(np.abs(2.0 * first - total))])

        return list(self._halves(region, axis, k))

    def _variance_split(self, tables: _RadianceTables, region: Region) -> List[Region]:
        r0, c0, r1, c1 = region
        if r1 - r0 < 2 and c1 - c0 < 2:
            return self._degenerate(region)

        # 축별 분산. 열 방향은 위도 보정 폭 비율로 스케일
        _, row_var = tables.spread(r0, c0, r1, c1, 0)
        _, col_var = tables.spread(r0, c0, r1, c1, 1)
        col_scale = tables.col_extent(region) / max(c1 - c0, 1)
        axis = 0 if row_var >= col_var * col_scale ** 2 else 1
        if len(self._candidates(region, axis)) == 0:
            axis = 1 - axis
        ks = self._candidates(region, axis)

        if tables.energy(r0, c0, r1, c1) <= 0:
            k = int(ks[len(ks) // 2])
        else:
            if axis == 0:
                _, left = tables.spread(r0, c0, ks, c1, 0)
                _, right = tables.spread(ks, c0, r1, c1, 0)
            else:
                _, left = tables.spread(r0, c0, r1, ks, 1)
                _, right = tables.spread(r0, ks, r1, c1, 1)
            k = int(ks[np.argmin(left + right)])

        return list(self._halves(region, axis, k))

    def _light(self, tables: _RadianceTables, region: Region) -> LightSource:
        r0, c0, r1, c1 = region
        energy = tables.energy(r0, c0, r1, c1)
        area = float(_region_sum(tables.solid_sat, r0, c0, r1, c1))

        if energy > 0:
            y = float(_region_sum(tables.row_sat, r0, c0, r1, c1) / energy)
            x = float(_region_sum(tables.col_sat, r0, c0, r1, c1) / energy)
        else:
            y = (r0 + r1) / 2.0
            x = (c0 + c1) / 2.0

        if area > 0:
            diffuse = _region_sum(tables.flux_sat, r0, c0, r1, c1) / area
            specular = tables.radiance[r0:r1, c0:c1].reshape(-1, 3).max(axis=0)
        else:
            diffuse = np.zeros(3)
            specular = np.zeros(3)

        direction = panorama_to_world(equirect_to_direction(x, y, tables.width, tables.height))

        return LightSource(
            direction=-direction,
            ambient=self.ambient_ratio * diffuse,
            diffuse=diffuse,
            specular=specular,
            centroid=(x, y),
            area=area,
            region=region
        )



def sample_median_cut(image: np.ndarray, levels: int = 4, ambient_ratio: float = 0.2) -> List[LightSource]:
    """median cut 광원 샘플링"""
    return LightProbeSampler(levels, ambient_ratio).sample_median_cut(image)


def sample_variance_cut(image: np.ndarray, levels: int = 4, ambient_ratio: float = 0.2) -> List[LightSource]:
    """variance cut 광원 샘플링"""
    return LightProbeSampler(levels, ambient_ratio).sample_variance_cut(image)
