"""转码服务异常定义"""


class TranscodeError(Exception):
    """转码服务异常基类"""


class MediaNotFoundError(TranscodeError):
    """媒体库中不存在请求的文件"""

    def __init__(self, name: str):
        super().__init__(f"Media not found: {name}")
        self.name = name


class ProcessLaunchError(TranscodeError):
    """FFmpeg 进程无法启动（可执行文件缺失、权限不足等）"""


class OutputStorageError(TranscodeError):
    """输出目录创建或播放列表读取失败"""


class CapacityError(TranscodeError):
    """活跃转码任务数已达上限"""


__all__ = [
    "TranscodeError",
    "MediaNotFoundError",
    "ProcessLaunchError",
    "OutputStorageError",
    "CapacityError",
]
