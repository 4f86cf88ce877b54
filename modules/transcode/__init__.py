"""
HLS 转码服务模块

按需把媒体库中的文件转码为 HLS（index.m3u8 + segmentNNN.ts），边转码边提供播放。

核心特性：
- 文件名的 SHA-1 作为媒体 ID，同一文件始终对应同一输出目录
- 任务表保证同一文件同时最多一个 FFmpeg 进程
- 通过 #EXT-X-ENDLIST 判断输出是否完成，服务重启后可识别中断的转码并重新开始
- 转码进程与请求解耦，退出时通过回调释放任务
"""

from .config import TranscodeConfig, get_transcode_config
from .errors import (
    TranscodeError,
    MediaNotFoundError,
    ProcessLaunchError,
    OutputStorageError,
    CapacityError,
)
from .task import TranscodeJob, ArtifactState, StreamAction, StreamResult
from .playlist import OutputInspector, inspect_playlist, ENDLIST_MARKER
from .registry import JobRegistry
from .ffmpeg import FFmpegRunner, TranscodeProcess
from .manager import TranscodeManager

__all__ = [
    'TranscodeConfig',
    'get_transcode_config',
    'TranscodeError',
    'MediaNotFoundError',
    'ProcessLaunchError',
    'OutputStorageError',
    'CapacityError',
    'TranscodeJob',
    'ArtifactState',
    'StreamAction',
    'StreamResult',
    'OutputInspector',
    'inspect_playlist',
    'ENDLIST_MARKER',
    'JobRegistry',
    'FFmpegRunner',
    'TranscodeProcess',
    'TranscodeManager',
]
