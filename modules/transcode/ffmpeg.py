"""
FFmpeg 进程管理模块

负责构建 HLS 转码命令、启动 FFmpeg 进程并在后台监控其退出。
"""

import os
import subprocess
import threading
import logging
from typing import List, Optional, Callable

from .config import TranscodeConfig, PLAYLIST_NAME, SEGMENT_PATTERN, PROFILE_HWACCEL
from .errors import ProcessLaunchError

logger = logging.getLogger(__name__)

ExitCallback = Callable[[int], None]


class TranscodeProcess:
    """一个正在运行的转码进程

    启动两个守护线程：一个持续读取 stderr 写入日志，避免管道写满导致 FFmpeg 阻塞；
    另一个等待进程退出并调用退出回调。请求线程不会等待它们。
    """

    def __init__(self, process: subprocess.Popen, name: str, on_exit: Optional[ExitCallback] = None):
        self.process = process
        self.name = name
        self._on_exit = on_exit
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            daemon=True,
            name=f"FFmpegStderr-{name[:8]}"
        )
        self._monitor_thread = threading.Thread(
            target=self._monitor,
            daemon=True,
            name=f"TranscodeMonitor-{name[:8]}"
        )

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def start(self):
        self._stderr_thread.start()
        self._monitor_thread.start()

    def is_running(self) -> bool:
        return self._monitor_thread.is_alive()

    def _drain_stderr(self):
        """逐行读取 FFmpeg 的 stderr 并转发到日志"""
        stream = self.process.stderr
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    logger.warning(f"ffmpeg[{self.name[:8]}]: {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Stopped reading ffmpeg stderr for {self.name}: {e}")
        finally:
            stream.close()

    def _monitor(self):
        """等待进程退出并触发回调"""
        return_code = self.process.wait()
        self._stderr_thread.join(timeout=5)

        if return_code == 0:
            logger.info(f"FFmpeg process {self.pid} for {self.name} exited normally")
        else:
            logger.info(f"FFmpeg process {self.pid} for {self.name} exited with code {return_code}")

        if self._on_exit is not None:
            try:
                self._on_exit(return_code)
            except Exception as e:
                logger.error(f"Error in exit callback for {self.name}: {e}")

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """等待进程退出且退出回调执行完毕

        Args:
            timeout: 超时时间（秒）

        Returns:
            退出码，超时返回 None
        """
        self._monitor_thread.join(timeout)
        if self._monitor_thread.is_alive():
            return None
        return self.process.returncode

    def terminate(self, timeout: float = 5) -> None:
        """停止进程：先 terminate，超时后 kill

        Args:
            timeout: 等待进程退出的时间（秒）
        """
        if self.process.poll() is not None:
            return
        try:
            self.process.terminate()
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
            logger.info(f"Stopped FFmpeg process {self.pid} for {self.name}")
        except OSError as e:
            logger.error(f"Error stopping FFmpeg process {self.pid}: {e}")


class FFmpegRunner:
    """FFmpeg 进程管理器

    构建 FFmpeg 命令并以与请求无关的方式启动转码进程。
    从不自动重启失败的进程，是否重试由下一次请求决定。
    """

    def __init__(self, config: TranscodeConfig, ffmpeg_path: Optional[str] = None):
        """初始化 FFmpeg 运行器

        Args:
            config: 转码配置
            ffmpeg_path: ffmpeg 可执行文件路径，默认取配置中的值
        """
        self.config = config
        self.ffmpeg_path = ffmpeg_path or config.ffmpeg_path

    def build_command(self, input_path: str, output_dir: str, profile: str) -> List[str]:
        """构建 HLS 转码命令

        Args:
            input_path: 源文件路径
            output_dir: 输出目录
            profile: 编码配置（software / hwaccel）

        Returns:
            FFmpeg 命令列表
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-loglevel", self.config.loglevel,
        ]

        # -hwaccel 是输入选项，必须放在 -i 之前
        video_encoder = self.config.get_effective_video_encoder(profile)
        use_qsv = profile == PROFILE_HWACCEL and "qsv" in video_encoder.lower()
        if use_qsv:
            cmd.extend(["-hwaccel", "qsv"])

        cmd.extend(["-i", input_path])

        # 视频
        cmd.extend(["-vf", f"scale={self.config.scale}"])
        cmd.extend(["-c:v", video_encoder])
        cmd.extend(["-profile:v", self.config.video_profile])
        cmd.extend(["-level", self.config.video_level])
        if use_qsv:
            cmd.extend(["-preset", self.config.qsv_preset])
        elif "x264" in video_encoder.lower():
            cmd.extend(["-preset", self.config.x264_preset])
        cmd.extend(["-r", str(self.config.frame_rate)])

        # 音频
        cmd.extend(["-c:a", self.config.audio_encoder])
        cmd.extend(["-b:a", self.config.audio_bitrate])

        cmd.extend(self._get_hls_params(output_dir))
        return cmd

    def _get_hls_params(self, output_dir: str) -> List[str]:
        """获取 HLS 输出参数

        重新转码时 -y 会覆盖目录中未完成的旧输出。
        """
        return [
            "-movflags", "+faststart",
            "-f", "hls",
            "-hls_list_size", "0",  # 保留所有切片
            "-hls_allow_cache", "0",
            "-hls_segment_filename", os.path.join(output_dir, SEGMENT_PATTERN),
            "-y",
            os.path.join(output_dir, PLAYLIST_NAME),
        ]

    def launch(
        self,
        input_path: str,
        output_dir: str,
        profile: str,
        on_exit: Optional[ExitCallback] = None,
        name: Optional[str] = None
    ) -> TranscodeProcess:
        """启动转码并立即返回

        Args:
            input_path: 源文件路径
            output_dir: 输出目录（需已存在）
            profile: 编码配置
            on_exit: 进程退出后调用，参数为退出码
            name: 用于日志的任务名

        Returns:
            TranscodeProcess 句柄

        Raises:
            ProcessLaunchError: 进程无法启动
        """
        command = self.build_command(input_path, output_dir, profile)
        logger.info(f"Starting FFmpeg ({profile}): {self.get_command_line_string(command)}")
        return self.spawn(command, on_exit=on_exit, name=name or os.path.basename(output_dir))

    def spawn(self, command: List[str], on_exit: Optional[ExitCallback] = None, name: str = "ffmpeg") -> TranscodeProcess:
        """以独立会话启动命令并开始监控

        Args:
            command: 命令列表
            on_exit: 退出回调
            name: 用于日志的任务名

        Returns:
            TranscodeProcess 句柄

        Raises:
            ProcessLaunchError: 进程无法启动
        """
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                start_new_session=True
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            raise ProcessLaunchError(f"Failed to start {command[0]}: {e}") from e

        logger.info(f"Started FFmpeg process with PID {process.pid}")
        handle = TranscodeProcess(process, name, on_exit=on_exit)
        handle.start()
        return handle

    def get_command_line_string(self, command: List[str]) -> str:
        """获取命令行字符串（用于日志记录）"""
        return " ".join(command)
