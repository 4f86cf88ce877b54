"""
转码任务管理器

负责决定一个媒体文件的请求应当：
- 直接播放已完成的输出
- 复用正在运行的转码任务
- 重新转码中断留下的不完整输出
- 启动全新的转码
并管理转码进程的生命周期。
"""

import os
import threading
import logging
from typing import Optional, List, Dict, Any

from ..media_library import MediaLibrary, MediaFile, hash_filename
from .config import TranscodeConfig
from .errors import MediaNotFoundError, OutputStorageError
from .ffmpeg import FFmpegRunner
from .playlist import OutputInspector
from .registry import JobRegistry
from .task import ArtifactState, StreamAction, StreamResult, TranscodeJob

logger = logging.getLogger(__name__)


class TranscodeManager:
    """转码任务管理器

    任务表是“是否有任务在运行”的唯一依据；输出是否完成则每次读取播放列表判断，
    因此重启服务后（任务表为空）也能识别出上次中断的转码。
    """

    def __init__(
        self,
        config: TranscodeConfig,
        library: Optional[MediaLibrary] = None,
        runner: Optional[FFmpegRunner] = None,
        registry: Optional[JobRegistry] = None,
        inspector: Optional[OutputInspector] = None,
        start_cleanup: Optional[bool] = None
    ):
        """初始化转码管理器

        Args:
            config: 转码配置
            library: 媒体库，默认使用 config.media_dir
            runner: FFmpeg 运行器
            registry: 任务表
            inspector: 输出检查器
            start_cleanup: 是否启动超时清理线程，默认在配置了 task_timeout 时启动
        """
        self.config = config
        self.library = library or MediaLibrary(config.media_dir)
        self.runner = runner or FFmpegRunner(config)
        self.registry = registry or JobRegistry()
        self.inspector = inspector or OutputInspector(config)

        self._cleanup_thread = None
        self._stop_cleanup = threading.Event()
        if start_cleanup is None:
            start_cleanup = config.task_timeout > 0
        if start_cleanup:
            self._start_cleanup_thread()

    def _start_cleanup_thread(self):
        """启动清理线程"""
        if self._cleanup_thread is None or not self._cleanup_thread.is_alive():
            self._stop_cleanup.clear()
            self._cleanup_thread = threading.Thread(
                target=self._cleanup_loop,
                daemon=True,
                name="TranscodeCleanup"
            )
            self._cleanup_thread.start()

    def _cleanup_loop(self):
        """清理循环"""
        while not self._stop_cleanup.is_set():
            try:
                self.cleanup()
            except Exception as e:
                logger.error(f"Error in cleanup loop: {e}")
            self._stop_cleanup.wait(self.config.cleanup_interval)

    def stop(self):
        """停止管理器并终止所有运行中的转码进程"""
        self._stop_cleanup.set()
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout=5)

        for job in self.registry.snapshot():
            if job.process is not None:
                job.process.terminate()

    def get_media(self, media_id: str) -> MediaFile:
        """按 ID 获取媒体文件

        Raises:
            MediaNotFoundError: 媒体库中不存在
        """
        media = self.library.find_by_id(media_id)
        if media is None:
            raise MediaNotFoundError(media_id)
        return media

    def ensure_streamable_by_id(self, media_id: str) -> StreamResult:
        """按媒体 ID 确保可以播放，见 ensure_streamable"""
        return self.ensure_streamable(self.get_media(media_id).filename)

    def ensure_streamable(self, filename: str) -> StreamResult:
        """确保媒体文件的 HLS 输出已完成或正在生成

        只做元数据级别的操作（读取播放列表、任务表操作、启动进程），
        从不等待转码完成。

        Args:
            filename: 媒体库中的文件名

        Returns:
            StreamResult，只有输出已完成时 ready 为 True

        Raises:
            MediaNotFoundError: 媒体库中不存在该文件
            OutputStorageError: 输出目录无法创建或读取
            ProcessLaunchError: FFmpeg 无法启动
            CapacityError: 活跃任务数已达上限
        """
        media_id = hash_filename(filename)
        if self.library.find_by_name(filename) is None:
            raise MediaNotFoundError(filename)

        # 已有任务在运行，直接指向正在增长的播放列表
        if self.registry.is_active(media_id):
            return self._result(media_id, filename, StreamAction.ACTIVE)

        state = self.inspector.inspect(media_id)
        if state == ArtifactState.COMPLETE:
            return self._result(media_id, filename, StreamAction.COMPLETE)

        job = self.registry.try_acquire(
            media_id,
            file_name=filename,
            max_jobs=self.config.max_concurrent_tasks
        )
        if job is None:
            # 在 is_active 与 try_acquire 之间被并发请求抢先
            return self._result(media_id, filename, StreamAction.CONTENDED)

        try:
            self._start_job(job, filename)
        except BaseException:
            self.registry.release(media_id, job)
            raise

        if state == ArtifactState.PARTIAL:
            logger.info(f"Found incomplete output for {filename}, restarting transcode from scratch")
            return self._result(media_id, filename, StreamAction.RESUMED)
        return self._result(media_id, filename, StreamAction.STARTED)

    def _start_job(self, job: TranscodeJob, filename: str):
        """创建输出目录并启动 FFmpeg（调用方已持有占位）"""
        output_dir = self.config.get_output_dir(job.key)
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create output directory {output_dir}: {e}")
            raise OutputStorageError(f"Failed to create {output_dir}: {e}") from e

        def on_exit(return_code: int):
            self._on_job_exit(job, return_code)

        process = self.runner.launch(
            self.library.get_path(filename),
            output_dir,
            self.config.profile,
            on_exit=on_exit,
            name=job.key
        )
        self.registry.attach(job.key, job, process)
        logger.info(f"Transcode job {job.key} started for {filename}")

    def _on_job_exit(self, job: TranscodeJob, return_code: int):
        """进程退出回调：释放占位，失败时记录日志

        不自动重试，也不清理不完整的输出，下一次请求会重新转码覆盖。
        """
        self.registry.release(job.key, job)
        if return_code != 0:
            logger.error(f"Transcoding {job.file_name} to HLS failed (exit code {return_code})")
        else:
            logger.info(f"Transcode job {job.key} for {job.file_name} finished in {job.get_elapsed_time():.1f}s")

    def cleanup(self) -> int:
        """终止超过最长运行时间的任务

        占位由进程退出回调释放。

        Returns:
            终止的任务数量
        """
        stopped = 0
        for job in self.registry.snapshot():
            if job.process is None or not job.is_timeout(self.config.task_timeout):
                continue
            logger.warning(f"Task {job.key} ({job.file_name}) exceeded {self.config.task_timeout}s, stopping")
            job.process.terminate()
            stopped += 1
        return stopped

    def _result(self, media_id: str, filename: str, action: StreamAction) -> StreamResult:
        return StreamResult(
            media_id=media_id,
            file_name=filename,
            ready=action == StreamAction.COMPLETE,
            action=action,
            playlist_path=self.config.get_playlist_path(media_id),
            playlist_url=self.config.get_playlist_url(media_id),
        )

    def is_active(self, media_id: str) -> bool:
        return self.registry.is_active(media_id)

    def get_status(self, media_id: str) -> Dict[str, Any]:
        """获取媒体的转码状态（不会启动任何任务）

        Args:
            media_id: 媒体 ID

        Returns:
            状态字典
        """
        media = self.get_media(media_id)
        job = self.registry.get(media_id)
        state = self.inspector.inspect(media_id)
        status = {
            "id": media_id,
            "file_name": media.filename,
            "state": state.value,
            "active": job is not None,
            "ready": state == ArtifactState.COMPLETE and job is None,
            "segments": len(self.inspector.list_segments(media_id)),
            "playlist_url": self.config.get_playlist_url(media_id),
        }
        if job is not None:
            status["task"] = job.to_dict()
        return status

    def get_all_jobs(self) -> List[Dict[str, Any]]:
        """获取所有运行中任务的信息"""
        return [job.to_dict() for job in self.registry.snapshot()]

    def get_status_summary(self) -> Dict[str, Any]:
        """获取状态摘要"""
        return {
            "active_tasks": self.registry.active_count(),
            "max_concurrent": self.config.max_concurrent_tasks,
            "profile": self.config.profile,
        }

