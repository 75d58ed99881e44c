"""
exceptions.py - mobilear 예외 정의

호출자에게 전달되는 오류를 타입별로 구분합니다.

분류:
1. 촬영 품질 실패 (CaptureQualityError): 재시도로 복구 가능
2. 수치 퇴화 (NumericalDegeneracyError): 단일 업데이트만 실패
3. 리소스/IO 실패 (CalibrationError, EnvironmentDataError 계열)

Version: 1.0
Author: FurSys AI Team
"""

from enum import Enum


class MobileARError(Exception):
    """mobilear 기본 예외"""


class CaptureFailure(Enum):
    """프레임 추가 실패 사유"""
    BLURRY = "blurry"
    NOT_ENOUGH_FEATURES = "not_enough_features"
    NO_PAIRWISE_MATCHES = "no_pairwise_matches"
    NO_GLOBAL_MATCHES = "no_global_matches"


class CaptureQualityError(MobileARError):
    """촬영 프레임 품질 미달"""

    def __init__(self, reason: CaptureFailure, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class NumericalDegeneracyError(MobileARError):
    """Kalman 업데이트 중 수치 퇴화 (특이 공분산, NaN 등)"""


class CalibrationError(MobileARError):
    """카메라 보정 실패 또는 보정 파라미터 로드/저장 실패"""


class EnvironmentDataError(MobileARError):
    """환경 데이터 디렉토리 오류"""


class MalformedEnvironmentError(EnvironmentDataError):
    """data.json 형식 오류"""


class MissingEnvironmentMapError(EnvironmentDataError):
    """envmap.hdr 누락"""


class HDRFormatError(MobileARError):
    """HDR 바이너리 형식 오류"""


class CompositeCancelledError(MobileARError):
    """합성 작업이 취소됨"""
