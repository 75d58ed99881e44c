"""
Haar 웨이블릿 흐림 검출기 단위 테스트
"""

import cv2
import numpy as np
import pytest
from mobilear.environment import BlurDetector


def _checkerboard(rows=360, cols=640, square=64):
    r, c = np.mgrid[0:rows, 0:cols]
    return (((r // square) + (c // square)) % 2 * 255).astype(np.uint8)


class TestBlurDetector:
    """흐림 검출 테스트"""

    def test_uniform_has_no_edges(self):
        """균일 이미지는 에지 없음"""
        assert BlurDetector()(np.full((360, 640), 128, dtype=np.uint8)) is None

    def test_noise_is_sharp(self):
        """픽셀 단위 노이즈는 선명"""
        rng = np.random.default_rng(0)
        gray = rng.integers(0, 256, size=(360, 640), dtype=np.uint8)
        per, extent = BlurDetector()(gray)
        assert per > 0.1
        assert 0.0 <= extent <= 1.0

    def test_blurred_image_is_blurry(self):
        """강하게 흐린 이미지는 per가 작음"""
        gray = cv2.GaussianBlur(_checkerboard(), (0, 0), 8)
        per, _ = BlurDetector()(gray)
        assert per < 0.01

    def test_blur_lowers_per(self):
        """흐림이 강할수록 per 감소"""
        rng = np.random.default_rng(1)
        gray = rng.integers(0, 256, size=(360, 640), dtype=np.uint8)
        detector = BlurDetector()
        sharp, _ = detector(gray)
        blurred, _ = detector(cv2.GaussianBlur(gray, (0, 0), 3))
        assert blurred < sharp

    def test_color_input(self):
        """BGR 입력"""
        rng = np.random.default_rng(2)
        img = rng.integers(0, 256, size=(360, 640, 3), dtype=np.uint8)
        assert BlurDetector()(img) is not None

    def test_small_image_resized(self):
        """작업 해상도보다 작은 이미지는 확대"""
        rng = np.random.default_rng(3)
        gray = rng.integers(0, 256, size=(100, 200), dtype=np.uint8)
        assert BlurDetector()(gray) is not None

    def test_working_size_multiple_of_16(self):
        """작업 해상도는 16의 배수"""
        detector = BlurDetector(rows=365, cols=650)
        assert detector.rows == 352
        assert detector.cols == 640


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
