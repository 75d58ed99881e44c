"""
dispatcher.py - 시각 추적 프레임 디스패처

카메라 콜백에서 받은 프레임을 단일 작업 스레드로 넘겨
PoseTracker.track_visual_frame을 직렬로 실행합니다.
처리 중인 프레임이 max_in_flight에 도달하면 새 프레임은 큐에 넣지 않고 버립니다.

Version: 1.0
Author: FurSys AI Team
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Callable
import logging

import numpy as np

from .pose_tracker import PoseTracker
from ..geometry import Pose

logger = logging.getLogger(__name__)


class FrameDispatcher:
    """
    백프레셔 시 프레임을 버리는 단일 작업자 디스패처

    Example:
        >>> dispatcher = FrameDispatcher(tracker, on_result=lambda ok, pose: render(pose))
        >>> dispatcher.submit(frame)   # 카메라 콜백에서 호출
        >>> dispatcher.close()
    """

    def __init__(
        self,
        tracker: PoseTracker,
        max_in_flight: int = 2,
        on_result: Optional[Callable[[bool, Pose], None]] = None
    ):
        """
        Args:
            tracker: 대상 추적기
            max_in_flight: 동시에 대기/처리 중일 수 있는 최대 프레임 수
            on_result: 프레임 처리 후 (성공 여부, 현재 자세) 콜백
        """
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be positive, got {max_in_flight}")
        self.tracker = tracker
        self.max_in_flight = max_in_flight
        self.on_result = on_result

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="visual-tracking")
        self._lock = threading.Lock()
        self._in_flight = 0
        self.dropped = 0
        self.processed = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def submit(self, image: np.ndarray, timestamp: Optional[float] = None) -> bool:
        """
        프레임 제출

        Returns:
            작업 큐에 들어갔으면 True, 버려졌으면 False
        """
        with self._lock:
            if self._in_flight >= self.max_in_flight:
                self.dropped += 1
                logger.debug(f"Frame dropped (in flight: {self._in_flight})")
                return False
            self._in_flight += 1

        self._executor.submit(self._process, image, timestamp)
        return True

    def _process(self, image: np.ndarray, timestamp: Optional[float]):
        try:
            success = self.tracker.track_visual_frame(image, timestamp)
            if self.on_result is not None:
                self.on_result(success, self.tracker.get_pose())
        except Exception:
            logger.exception("Visual tracking job failed")
        finally:
            with self._lock:
                self._in_flight -= 1
                self.processed += 1

    def close(self, wait: bool = True):
        """작업 스레드 종료"""
        self._executor.shutdown(wait=wait)
