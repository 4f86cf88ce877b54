"""
视频缩略图

使用 ffmpeg 从视频第 1 秒截取一帧作为缩略图，已存在的缩略图直接复用。
"""

import os
import subprocess
import logging
from typing import Optional

from .media_library import MediaLibrary

logger = logging.getLogger(__name__)


class ThumbnailGenerator:
    """缩略图生成器"""

    def __init__(
        self,
        library: MediaLibrary,
        thumbnail_dir: str = "static/images",
        ffmpeg_path: str = "ffmpeg",
        size: str = "426x240",
        timeout: int = 30
    ):
        self.library = library
        self.thumbnail_dir = thumbnail_dir
        self.ffmpeg_path = ffmpeg_path
        self.size = size
        self.timeout = timeout

    def get_thumbnail_path(self, filename: str) -> str:
        return os.path.join(self.thumbnail_dir, f"{filename}.jpg")

    def build_command(self, video_path: str, thumbnail_path: str):
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-ss", "00:00:01",
            "-i", video_path,
            "-vframes", "1",
            "-s", self.size,
            "-y",
            thumbnail_path,
        ]

    def get_image_from_video(self, filename: str) -> Optional[str]:
        """获取（必要时生成）视频缩略图

        Args:
            filename: 媒体库中的文件名

        Returns:
            缩略图路径，文件不存在或生成失败返回 None
        """
        media = self.library.find_by_name(filename)
        if media is None:
            return None

        thumbnail_path = self.get_thumbnail_path(media.filename)
        if os.path.exists(thumbnail_path):
            return thumbnail_path

        os.makedirs(self.thumbnail_dir, exist_ok=True)
        command = self.build_command(self.library.get_path(media.filename), thumbnail_path)
        try:
            subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=True
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            logger.error(f"Error generating thumbnail for {media.filename}: {stderr[-500:]}")
            return None
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Error generating thumbnail for {media.filename}: {e}")
            return None

        logger.info(f"Thumbnail generated for {media.filename} at {thumbnail_path}")
        return thumbnail_path

    def generate_thumbnails(self) -> int:
        """为媒体库中所有文件生成缩略图

        Returns:
            成功获取的缩略图数量
        """
        count = 0
        for filename in self.library.list_files():
            if self.get_image_from_video(filename):
                count += 1
        return count
