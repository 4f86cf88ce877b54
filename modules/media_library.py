#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import hashlib
import logging
from dataclasses import dataclass
from typing import List, Optional


def hash_filename(filename):
    """根据文件名生成媒体 ID

    使用完整的 SHA-1 十六进制摘要，该 ID 同时作为对外的资源标识和转码输出目录名。
    无法用 UTF-8 解码的文件名（os.scandir 以代理字符表示）同样可以哈希。

    Args:
        filename: 文件名

    Returns:
        str: 40 位十六进制字符串
    """
    return hashlib.sha1(filename.encode("utf-8", "surrogatepass")).hexdigest()


@dataclass(frozen=True)
class MediaFile:
    """媒体库中的文件，ID 由文件名推导，不做持久化"""
    id: str
    filename: str

    @property
    def display_name(self) -> str:
        """用于页面显示的文件名，无法解码的字节显示为替换字符"""
        return self.filename.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


class MediaLibrary:
    """媒体目录管理类

    每次调用都重新扫描目录，文件的增删立即可见。
    """

    def __init__(self, media_dir="media"):
        """初始化媒体库

        Args:
            media_dir: 媒体文件目录
        """
        self.media_dir = media_dir

    def ensure_media_dir(self):
        """创建媒体目录（服务启动时调用）"""
        if not os.path.exists(self.media_dir):
            os.makedirs(self.media_dir, exist_ok=True)
            logging.info(f"Created media directory: {self.media_dir}")

    def list_files(self) -> List[str]:
        """列出媒体目录中的普通文件

        只读，目录不存在时返回空列表。

        Returns:
            list: 按名称排序的文件名列表
        """
        files = []
        try:
            with os.scandir(self.media_dir) as entries:
                for entry in entries:
                    if entry.is_file():
                        files.append(entry.name)
        except FileNotFoundError:
            return []
        return sorted(files)

    def get_media_files(self) -> List[MediaFile]:
        """获取所有媒体文件及其 ID"""
        return [MediaFile(id=hash_filename(name), filename=name) for name in self.list_files()]

    def find_by_id(self, media_id) -> Optional[MediaFile]:
        """按 ID 查找媒体文件

        Args:
            media_id: 媒体 ID

        Returns:
            MediaFile，不存在返回 None
        """
        for media in self.get_media_files():
            if media.id == media_id:
                return media
        return None

    def find_by_name(self, filename) -> Optional[MediaFile]:
        """按文件名查找媒体文件"""
        if filename in self.list_files():
            return MediaFile(id=hash_filename(filename), filename=filename)
        return None

    def get_path(self, filename):
        """获取媒体文件的完整路径"""
        return os.path.join(self.media_dir, filename)
