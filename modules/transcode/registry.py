"""
转码任务表

记录每个媒体 ID 当前正在运行的转码任务。同一 ID 在任意时刻最多一个条目：
检查与插入在同一把锁内完成，进程启动前就先占位。
"""

import threading
import logging
from typing import Dict, Optional, List

from .errors import CapacityError
from .task import TranscodeJob

logger = logging.getLogger(__name__)


class JobRegistry:
    """线程安全的转码任务表"""

    def __init__(self):
        self._jobs: Dict[str, TranscodeJob] = {}
        self._lock = threading.Lock()

    def try_acquire(self, key: str, file_name: str = "", max_jobs: int = 0) -> Optional[TranscodeJob]:
        """原子地为 key 占位

        Args:
            key: 媒体 ID
            file_name: 文件名（仅用于展示）
            max_jobs: 最大活跃任务数，0 表示不限制

        Returns:
            抢到占位时返回新建的 TranscodeJob，已被占用时返回 None

        Raises:
            CapacityError: 活跃任务数已达上限
        """
        with self._lock:
            if key in self._jobs:
                return None
            if max_jobs > 0 and len(self._jobs) >= max_jobs:
                raise CapacityError(f"Maximum concurrent tasks reached ({max_jobs})")
            job = TranscodeJob(key=key, file_name=file_name)
            self._jobs[key] = job
            return job

    def attach(self, key: str, job: TranscodeJob, process) -> bool:
        """为已占位的任务记录进程句柄

        进程可能在 attach 之前就已经退出并 release，此时不再写回。

        Returns:
            占位仍然有效时返回 True
        """
        with self._lock:
            if self._jobs.get(key) is not job:
                logger.debug(f"Reservation for {key} already released, not attaching")
                return False
            job.process = process
            return True

    def release(self, key: str, job: Optional[TranscodeJob] = None) -> bool:
        """移除任务条目

        Args:
            key: 媒体 ID
            job: 指定时只在当前条目就是该任务时才移除

        Returns:
            是否移除了条目
        """
        with self._lock:
            current = self._jobs.get(key)
            if current is None:
                return False
            if job is not None and current is not job:
                return False
            del self._jobs[key]
            return True

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._jobs

    def get(self, key: str) -> Optional[TranscodeJob]:
        with self._lock:
            return self._jobs.get(key)

    def active_count(self) -> int:
        with self._lock:
            return len(self._jobs)

    def snapshot(self) -> List[TranscodeJob]:
        """获取当前所有任务的列表副本"""
        with self._lock:
            return list(self._jobs.values())
