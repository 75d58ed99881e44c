"""
environment.py - 환경 데이터 저장/로드

디렉토리 구조:
    <root>/<name>/
    ├── data.json    # {name, location?, images: {<i>: {exposure, image}}, lights?}
    ├── exp_<i>.png  # 노출별 파노라마
    ├── envmap.hdr   # HDR 바이너리 블롭
    └── envmap.png   # 톤 매핑 미리보기

Version: 1.0
Author: FurSys AI Team
"""

import json
import cv2
import numpy as np
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Dict, Any, Union
import logging

from ..exceptions import MalformedEnvironmentError, MissingEnvironmentMapError, EnvironmentDataError
from ..lighting.light_probe_sampler import LightSource
from .hdr_image import HDRImage
from .tone_mapper import ToneMapper

logger = logging.getLogger(__name__)

DATA_FILE = "data.json"
HDR_FILE = "envmap.hdr"
PREVIEW_FILE = "envmap.png"


@dataclass
class Location:
    """촬영 위치"""
    lat: float
    lng: float
    alt: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng, 'alt': self.alt}


@dataclass
class Environment:
    """
    촬영된 환경

    Attributes:
        name: 환경 이름 (디렉토리 이름)
        location: 촬영 위치 (선택)
        exposures: 노출별 8비트 파노라마 (이미지, 노출 시간)
        hdr: float32 BGR HDR 파노라마
        preview: 톤 매핑 미리보기 (None이면 저장 시 생성)
        lights: 샘플링된 광원 목록

    Example:
        >>> env = Environment.from_composite("living_room", job.result())
        >>> env.save("environments")
        >>> env = Environment.load("environments/living_room")
    """
    name: str
    hdr: np.ndarray
    exposures: List[Tuple[np.ndarray, float]] = field(default_factory=list)
    preview: Optional[np.ndarray] = None
    location: Optional[Location] = None
    lights: List[LightSource] = field(default_factory=list)

    @classmethod
    def from_composite(cls, name: str, result, location: Optional[Location] = None) -> 'Environment':
        """CompositeResult에서 생성"""
        return cls(
            name=name,
            hdr=result.hdr,
            exposures=list(result.exposures),
            preview=result.preview,
            location=location
        )

    def to_dict(self) -> Dict[str, Any]:
        """data.json 내용"""
        data: Dict[str, Any] = {
            'name': self.name,
            'images': {
                str(i): {'exposure': float(exposure), 'image': str(i)}
                for i, (_, exposure) in enumerate(self.exposures)
            }
        }
        if self.location is not None:
            data['location'] = self.location.to_dict()
        if self.lights:
            data['lights'] = [light.to_dict() for light in self.lights]
        return data

    def save(self, root: Union[str, Path]) -> Path:
        """
        환경을 <root>/<name>/ 에 저장

        Returns:
            Path: 저장된 디렉토리
        """
        directory = Path(root) / self.name
        directory.mkdir(parents=True, exist_ok=True)

        for i, (image, _) in enumerate(self.exposures):
            if not cv2.imwrite(str(directory / f"exp_{i}.png"), image):
                raise EnvironmentDataError(f"Failed to write exp_{i}.png")

        HDRImage.from_array(self.hdr).save(directory / HDR_FILE)

        preview = self.preview if self.preview is not None else ToneMapper().map(self.hdr)
        if not cv2.imwrite(str(directory / PREVIEW_FILE), preview):
            raise EnvironmentDataError(f"Failed to write {PREVIEW_FILE}")

        with open(directory / DATA_FILE, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Environment saved: {directory}")
        return directory

    @classmethod
    def load(cls, directory: Union[str, Path]) -> 'Environment':
        """
        디렉토리에서 환경 로드

        Raises:
            MalformedEnvironmentError: data.json 누락 또는 형식 오류
            MissingEnvironmentMapError: envmap.hdr 누락
        """
        directory = Path(directory)
        data_path = directory / DATA_FILE
        if not data_path.exists():
            raise MalformedEnvironmentError(f"{DATA_FILE} not found in {directory}")

        try:
            with open(data_path, 'r') as f:
                data = json.load(f)
            name = str(data['name'])
            images = data.get('images') or {}
            location = None
            if data.get('location') is not None:
                loc = data['location']
                location = Location(float(loc['lat']), float(loc['lng']), float(loc.get('alt', 0.0)))
            lights = [LightSource.from_dict(d) for d in data.get('lights', [])]
            entries = sorted(
                ((int(key), float(value['exposure']), str(value['image'])) for key, value in images.items()),
                key=lambda e: e[0]
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedEnvironmentError(f"Malformed {data_path}: {e}") from e

        hdr_path = directory / HDR_FILE
        if not hdr_path.exists():
            raise MissingEnvironmentMapError(f"{HDR_FILE} not found in {directory}")
        hdr = HDRImage.load(hdr_path).to_array()

        exposures = []
        for _, exposure, image_name in entries:
            image = cv2.imread(str(directory / f"exp_{image_name}.png"), cv2.IMREAD_COLOR)
            if image is None:
                raise MalformedEnvironmentError(f"exp_{image_name}.png missing in {directory}")
            exposures.append((image, exposure))

        preview = cv2.imread(str(directory / PREVIEW_FILE), cv2.IMREAD_COLOR)

        logger.info(f"Environment loaded: {directory} ({len(exposures)} exposures)")
        return cls(
            name=name,
            hdr=hdr,
            exposures=exposures,
            preview=preview,
            location=location,
            lights=lights
        )


def list_environments(root: Union[str, Path]) -> List[str]:
    """data.json이 있는 환경 이름 목록 (정렬됨)"""
    root = Path(root)
    if not root.is_dir():
        return []
    return sorted(p.name for p in root.iterdir() if (p / DATA_FILE).is_file())
