"""
HLS 输出检查

根据磁盘上的 index.m3u8 判断转码输出的状态。状态不做缓存：
后台 FFmpeg 进程可能随时在追加内容，每次检查都重新打开文件读取。
"""

import os
import logging
from typing import List

from .config import TranscodeConfig
from .errors import OutputStorageError
from .task import ArtifactState

logger = logging.getLogger(__name__)

ENDLIST_MARKER = "#EXT-X-ENDLIST"


def inspect_playlist(playlist_path: str) -> ArtifactState:
    """检查播放列表文件的状态

    正在被写入的文件读到的只会是旧内容或新内容的前缀，
    未写完的最后一行不会与 ENDLIST 标记相等，因此不会误判为完成。

    Args:
        playlist_path: index.m3u8 路径

    Returns:
        ArtifactState
    """
    try:
        with open(playlist_path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                if line.strip() == ENDLIST_MARKER:
                    return ArtifactState.COMPLETE
    except FileNotFoundError:
        return ArtifactState.ABSENT
    except NotADirectoryError:
        return ArtifactState.ABSENT
    except OSError as e:
        raise OutputStorageError(f"Failed to read playlist {playlist_path}: {e}") from e

    return ArtifactState.PARTIAL


class OutputInspector:
    """转码输出检查器

    只读，不修改任何文件。
    """

    def __init__(self, config: TranscodeConfig):
        self.config = config

    def inspect(self, media_id: str) -> ArtifactState:
        """获取指定媒体的输出状态

        Args:
            media_id: 媒体 ID

        Returns:
            ABSENT / PARTIAL / COMPLETE
        """
        state = inspect_playlist(self.config.get_playlist_path(media_id))
        logger.debug(f"Output state for {media_id}: {state.value}")
        return state

    def list_segments(self, media_id: str) -> List[str]:
        """列出已生成的切片文件名

        Args:
            media_id: 媒体 ID

        Returns:
            排序后的切片文件名列表，目录不存在时为空
        """
        output_dir = self.config.get_output_dir(media_id)
        try:
            names = os.listdir(output_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise OutputStorageError(f"Failed to list {output_dir}: {e}") from e
        return sorted(n for n in names if n.startswith("segment") and n.endswith(".ts"))
