"""
HLS 转码 API 端点

/media/<id> 触发转码并跳转到播放列表，/hls/<id>/... 静态提供 FFmpeg 已写出的文件。
"""

import os
import re
from flask import jsonify, request, redirect, url_for, send_file, send_from_directory, make_response, Response
from werkzeug.exceptions import NotFound
import logging

from .errors import MediaNotFoundError, ProcessLaunchError, OutputStorageError, CapacityError

logger = logging.getLogger(__name__)

# 全局转码管理器实例（在 webserver.py 中初始化）
TRANSCODE_MANAGER = None

MEDIA_ID_RE = re.compile(r"^[0-9a-f]{40}$")

PLAYLIST_MIMETYPE = "application/vnd.apple.mpegurl"
SEGMENT_MIMETYPE = "video/mp2t"


def init_transcode_manager(manager):
    """初始化转码管理器

    Args:
        manager: TranscodeManager 实例
    """
    global TRANSCODE_MANAGER
    TRANSCODE_MANAGER = manager
    logger.info("Transcode manager initialized")


def _error_response(message, status):
    """API 路径返回 JSON，其它路径返回纯文本"""
    if request.path.startswith('/api/'):
        return make_response(jsonify({"success": False, "error": message}), status)
    return make_response(message, status)


def register_error_handlers(app):
    """把转码异常映射为对应的 HTTP 响应

    Args:
        app: Flask 应用实例
    """

    @app.errorhandler(MediaNotFoundError)
    def handle_media_not_found(e):
        return _error_response("File not found", 404)

    @app.errorhandler(CapacityError)
    def handle_capacity(e):
        logger.warning(f"Rejected transcode request for {request.path}: {e}")
        response = _error_response("Too many active transcodes, try again later", 503)
        response.headers['Retry-After'] = '10'
        return response

    @app.errorhandler(ProcessLaunchError)
    def handle_launch_error(e):
        logger.error(f"Transcode launch failed for {request.path}: {e}")
        return _error_response("Failed to start transcoding", 500)

    @app.errorhandler(OutputStorageError)
    def handle_storage_error(e):
        logger.error(f"Transcode storage error for {request.path}: {e}")
        return _error_response("Transcode output storage error", 500)


def register_routes(app):
    """注册转码 API 路由

    Args:
        app: Flask 应用实例
    """
    register_error_handlers(app)

    def get_manager():
        if TRANSCODE_MANAGER is None:
            raise RuntimeError("Transcode manager not initialized")
        return TRANSCODE_MANAGER

    def check_media_id(media_id):
        if not MEDIA_ID_RE.match(media_id):
            raise MediaNotFoundError(media_id)

    @app.route('/media/<media_id>', methods=['GET'])
    def transcode_media(media_id):
        """开始（或复用）转码并跳转到播放列表

        Args:
            media_id: 媒体 ID
        """
        result = get_manager().ensure_streamable_by_id(media_id)
        logger.info(f"Stream request for {result.file_name}: {result.action.value}")
        return redirect(url_for('transcode_playlist', media_id=result.media_id))

    @app.route('/api/media/<media_id>/stream', methods=['GET', 'POST'])
    def transcode_media_api(media_id):
        """与 /media/<id> 相同的决策，以 JSON 返回结果"""
        manager = get_manager()
        result = manager.ensure_streamable_by_id(media_id)
        response = result.to_dict()
        response["success"] = True
        response["playlist_route"] = url_for('transcode_playlist', media_id=result.media_id)
        response["status_summary"] = manager.get_status_summary()
        return jsonify(response)

    @app.route('/playlist/<media_id>', methods=['GET'])
    def transcode_playlist(media_id):
        """返回 FFmpeg 写出的 m3u8 播放列表

        转码刚启动、播放列表尚未写出时返回 503 并附带 Retry-After。

        Args:
            media_id: 媒体 ID
        """
        check_media_id(media_id)
        manager = get_manager()
        playlist_path = os.path.abspath(manager.config.get_playlist_path(media_id))

        if not os.path.exists(playlist_path):
            if manager.is_active(media_id):
                response = Response("Playlist not ready", status=503, mimetype='text/plain')
                response.headers['Retry-After'] = '1'
                return response
            return "Playlist not found", 404

        return send_file(playlist_path, mimetype=PLAYLIST_MIMETYPE, max_age=0)

    @app.route('/hls/<media_id>/<path:filename>', methods=['GET'])
    def transcode_static(media_id, filename):
        """静态提供播放列表和切片文件

        Args:
            media_id: 媒体 ID
            filename: index.m3u8 或 segmentNNN.ts
        """
        check_media_id(media_id)
        manager = get_manager()
        output_dir = os.path.abspath(manager.config.get_output_dir(media_id))

        if filename.endswith('.m3u8'):
            mimetype, max_age = PLAYLIST_MIMETYPE, 0
        elif filename.endswith('.ts'):
            mimetype, max_age = SEGMENT_MIMETYPE, 3600
        else:
            raise NotFound()

        return send_from_directory(output_dir, filename, mimetype=mimetype, max_age=max_age)

    @app.route('/api/transcode/status/<media_id>', methods=['GET'])
    def transcode_status(media_id):
        """获取转码状态（不会启动转码）

        Args:
            media_id: 媒体 ID

        Returns:
            状态 JSON
        """
        manager = get_manager()
        response = {"success": True}
        response.update(manager.get_status(media_id))
        response["status_summary"] = manager.get_status_summary()
        return jsonify(response)

    @app.route('/api/transcode/tasks', methods=['GET'])
    def transcode_tasks():
        """获取所有运行中的转码任务"""
        manager = get_manager()
        return jsonify({
            "success": True,
            "tasks": manager.get_all_jobs(),
            "summary": manager.get_status_summary()
        })

