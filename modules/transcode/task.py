"""
转码任务数据模型

定义转码任务、输出状态以及流请求结果的数据结构。
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any


class ArtifactState(Enum):
    """输出目录状态枚举"""
    ABSENT = "absent"      # 播放列表不存在
    PARTIAL = "partial"    # 播放列表存在但缺少 #EXT-X-ENDLIST
    COMPLETE = "complete"  # 播放列表已包含 #EXT-X-ENDLIST


class StreamAction(Enum):
    """ensure_streamable 的决策结果"""
    COMPLETE = "complete"    # 已完成，直接播放
    ACTIVE = "active"        # 已有任务在运行
    STARTED = "started"      # 新启动转码
    RESUMED = "resumed"      # 检测到中断的输出，重新转码
    CONTENDED = "contended"  # 并发请求抢先启动了任务


@dataclass(eq=False)
class TranscodeJob:
    """转码任务（任务表条目）

    由 JobRegistry 独占：try_acquire 时创建（此时 process 为空），
    attach 时记录进程，进程退出后 release 删除。
    """

    key: str
    file_name: str = ""
    process: Optional[Any] = None
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def get_elapsed_time(self) -> float:
        """获取任务已运行时间（秒）"""
        return time.time() - self.started_at

    def is_timeout(self, timeout_seconds: int) -> bool:
        """判断任务是否超过最长运行时间

        Args:
            timeout_seconds: 超时时间（秒），0 表示不限制

        Returns:
            是否超时
        """
        if timeout_seconds <= 0:
            return False
        return self.get_elapsed_time() > timeout_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.key,
            "file_name": self.file_name,
            "pid": self.pid,
            "started_at": self.started_at,
            "elapsed": round(self.get_elapsed_time(), 3),
        }


@dataclass
class StreamResult:
    """ensure_streamable 的返回结果

    ready 仅在输出已完成时为 True；其余情况调用方应指向仍在增长的播放列表。
    """

    media_id: str
    file_name: str
    ready: bool
    action: StreamAction
    playlist_path: str
    playlist_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.media_id,
            "file_name": self.file_name,
            "ready": self.ready,
            "action": self.action.value,
            "playlist_url": self.playlist_url,
        }
