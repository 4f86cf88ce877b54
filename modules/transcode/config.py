"""
转码配置模块

定义 HLS 转码相关的配置参数和默认值，以及输出目录的路径约定：
<hls_root>/<media_id>/index.m3u8 与 <hls_root>/<media_id>/segment%03d.ts
"""

import os
from dataclasses import dataclass

PROFILE_SOFTWARE = "software"
PROFILE_HWACCEL = "hwaccel"

PLAYLIST_NAME = "index.m3u8"
SEGMENT_PATTERN = "segment%03d.ts"


@dataclass
class TranscodeConfig:
    """转码配置

    从全局配置中读取转码相关参数，提供默认值。
    """

    # 目录配置
    media_dir: str = "media"
    hls_root: str = "hls"

    # 编码器配置
    ffmpeg_path: str = "ffmpeg"
    use_hwaccel: bool = False  # 启动时决定，不按请求切换
    video_encoder: str = "h264_qsv"  # 硬件编码器
    video_encoder_sw: str = "libx264"  # 软件编码器
    audio_encoder: str = "aac"

    # 视频编码参数
    scale: str = "1280:720"
    video_profile: str = "baseline"
    video_level: str = "3.0"
    frame_rate: int = 24
    x264_preset: str = "veryfast"
    qsv_preset: str = "veryfast"

    # 音频编码参数
    audio_bitrate: str = "128k"

    # FFmpeg 日志级别
    loglevel: str = "warning"

    # 并发限制，0 表示不限制
    max_concurrent_tasks: int = 0

    # 超时配置，0 表示不限制运行时长
    task_timeout: int = 0
    cleanup_interval: int = 30

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'TranscodeConfig':
        """从应用配置创建 TranscodeConfig

        Args:
            app_config: 全局配置字典，转码参数位于 "transcode" 小节

        Returns:
            TranscodeConfig 实例
        """
        app_config = app_config or {}
        transcode_config = app_config.get("transcode", {}) or {}

        config = cls()

        # 目录
        if app_config.get("media_dir"):
            config.media_dir = app_config["media_dir"]
        if app_config.get("hls_root"):
            config.hls_root = app_config["hls_root"]

        # 编码器
        if "ffmpeg_path" in transcode_config:
            config.ffmpeg_path = transcode_config["ffmpeg_path"] or "ffmpeg"
        if "use_hwaccel" in transcode_config:
            config.use_hwaccel = bool(transcode_config["use_hwaccel"])
        if "video_encoder" in transcode_config:
            config.video_encoder = transcode_config["video_encoder"]
        if "video_encoder_sw" in transcode_config:
            config.video_encoder_sw = transcode_config["video_encoder_sw"]
        if "audio_encoder" in transcode_config:
            config.audio_encoder = transcode_config["audio_encoder"]

        # 视频参数
        if "scale" in transcode_config:
            config.scale = transcode_config["scale"]
        if "video_profile" in transcode_config:
            config.video_profile = transcode_config["video_profile"]
        if "video_level" in transcode_config:
            config.video_level = str(transcode_config["video_level"])
        if "frame_rate" in transcode_config:
            config.frame_rate = int(transcode_config["frame_rate"] or 24)
        if "x264_preset" in transcode_config:
            config.x264_preset = transcode_config["x264_preset"]
        if "qsv_preset" in transcode_config:
            config.qsv_preset = str(transcode_config["qsv_preset"])

        # 音频参数
        if "audio_bitrate" in transcode_config:
            config.audio_bitrate = transcode_config["audio_bitrate"]

        if "loglevel" in transcode_config:
            config.loglevel = transcode_config["loglevel"]

        # 并发与超时
        if "max_concurrent_tasks" in transcode_config:
            config.max_concurrent_tasks = int(transcode_config["max_concurrent_tasks"] or 0)
        if "task_timeout" in transcode_config:
            config.task_timeout = int(transcode_config["task_timeout"] or 0)
        if "cleanup_interval" in transcode_config:
            config.cleanup_interval = int(transcode_config["cleanup_interval"] or 30)

        return config

    @property
    def profile(self) -> str:
        """当前编码配置（software 或 hwaccel）"""
        return PROFILE_HWACCEL if self.use_hwaccel else PROFILE_SOFTWARE

    def get_effective_video_encoder(self, profile: str) -> str:
        """获取有效的视频编码器

        Args:
            profile: 编码配置

        Returns:
            编码器名称
        """
        if profile == PROFILE_HWACCEL:
            return self.video_encoder
        return self.video_encoder_sw

    def get_output_dir(self, media_id: str) -> str:
        """获取转码输出目录（同一文件始终对应同一目录）

        Args:
            media_id: 媒体 ID（文件名哈希）

        Returns:
            输出目录路径
        """
        return os.path.join(self.hls_root, media_id)

    def get_playlist_path(self, media_id: str) -> str:
        """获取 m3u8 播放列表路径

        Args:
            media_id: 媒体 ID

        Returns:
            播放列表文件路径
        """
        return os.path.join(self.get_output_dir(media_id), PLAYLIST_NAME)

    def get_playlist_url(self, media_id: str) -> str:
        """获取静态播放列表的 URL"""
        return f"/hls/{media_id}/{PLAYLIST_NAME}"


def get_transcode_config(app_config: dict) -> TranscodeConfig:
    """获取转码配置的便捷函数

    Args:
        app_config: 全局配置字典

    Returns:
        TranscodeConfig 实例
    """
    return TranscodeConfig.from_app_config(app_config)
