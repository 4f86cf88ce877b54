#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import copy
import argparse
import logging
from logging.handlers import TimedRotatingFileHandler

# Add current directory to Python path to ensure modules can be imported
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, render_template, send_file, abort
from flask_cors import CORS

from modules.media_library import MediaLibrary
from modules.thumbnail import ThumbnailGenerator
from modules.transcode import TranscodeManager, get_transcode_config
from modules.transcode import api as transcode_api

# Configuration file path
CONFIG_FILE = "config/config.json"

DEFAULT_PORT = 3000

DEFAULT_CONFIG = {
    "port": DEFAULT_PORT,
    "media_dir": "media",
    "hls_root": "hls",
    "thumbnail_dir": "static/images",
    "generate_thumbnails_on_start": False,
    "transcode": {
        "use_hwaccel": False,
        "ffmpeg_path": "ffmpeg",
        "max_concurrent_tasks": 0,
        "task_timeout": 0,
    }
}


def setup_logging(log_dir='logs'):
    """Configure console and daily rotating file logging"""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    # 配置较少日志输出的模块
    for module in ['werkzeug', 'urllib3']:
        logging.getLogger(module).setLevel(logging.WARNING)

    os.makedirs(log_dir, exist_ok=True)

    # 添加按日期滚动的文件处理器
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'webserver.log'),
        when='midnight',
        interval=1,
        backupCount=3  # 保留3天日志
    )
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    file_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(file_handler)


def _env_flag(value):
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(config_file=CONFIG_FILE, environ=None):
    """Load configuration file, then apply environment overrides

    Args:
        config_file: JSON 配置文件路径，不存在时使用默认配置
        environ: 环境变量字典，默认 os.environ

    Returns:
        dict: 配置字典
    """
    environ = os.environ if environ is None else environ
    config = copy.deepcopy(DEFAULT_CONFIG)
    try:
        if os.path.exists(config_file):
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
            transcode_section = loaded_config.pop("transcode", None) or {}
            config.update(loaded_config)
            config["transcode"].update(transcode_section)
            logging.info(f"Loaded configuration file: {config_file}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    # 环境变量优先于配置文件
    if environ.get("PORT"):
        try:
            config["port"] = int(environ["PORT"])
            logging.info(f"Using port from environment: {config['port']}")
        except ValueError:
            logging.warning(f"Ignoring invalid PORT value: {environ['PORT']}")
    if environ.get("MEDIA_DIR"):
        config["media_dir"] = environ["MEDIA_DIR"]
        logging.info(f"Using media directory from environment: {config['media_dir']}")
    if environ.get("HLS_DIR"):
        config["hls_root"] = environ["HLS_DIR"]
        logging.info(f"Using HLS directory from environment: {config['hls_root']}")
    if environ.get("HWACCEL"):
        config["transcode"]["use_hwaccel"] = _env_flag(environ["HWACCEL"])

    return config


def create_app(app_config=None, manager=None):
    """Create the Flask application

    Args:
        app_config: 配置字典，默认调用 load_config()
        manager: TranscodeManager 实例，默认根据配置创建

    Returns:
        Flask 应用
    """
    app_config = app_config if app_config is not None else load_config()

    app = Flask(__name__, template_folder='templates', static_folder='static')
    CORS(app)  # Enable CORS

    transcode_config = get_transcode_config(app_config)
    library = MediaLibrary(transcode_config.media_dir)
    if manager is None:
        manager = TranscodeManager(transcode_config, library=library)
    else:
        library = manager.library
    library.ensure_media_dir()
    thumbnails = ThumbnailGenerator(
        library,
        thumbnail_dir=os.path.abspath(app_config.get("thumbnail_dir", "static/images")),
        ffmpeg_path=transcode_config.ffmpeg_path
    )

    app.config['APP_CONFIG'] = app_config
    app.extensions['media_library'] = library
    app.extensions['thumbnails'] = thumbnails
    app.extensions['transcode_manager'] = manager

    transcode_api.init_transcode_manager(manager)
    transcode_api.register_routes(app)

    @app.route('/')
    def index():
        """Show media catalog"""
        files = library.get_media_files()
        return render_template('index.html', files=files)

    @app.route('/thumbnails/<media_id>.jpg')
    def thumbnail(media_id):
        """Serve (and lazily extract) a media thumbnail"""
        media = library.find_by_id(media_id)
        if media is None:
            abort(404)
        thumbnail_path = thumbnails.get_image_from_video(media.filename)
        if not thumbnail_path:
            abort(404)
        return send_file(thumbnail_path, mimetype='image/jpeg')

    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description="HLS media server")
    parser.add_argument('--hwaccel', action='store_true', help="use the hardware video encoder")
    parser.add_argument('--config', default=CONFIG_FILE, help="path to config.json")
    args = parser.parse_args(argv)

    setup_logging()

    app_config = load_config(args.config)
    if args.hwaccel:
        app_config["transcode"]["use_hwaccel"] = True

    app = create_app(app_config)
    manager = app.extensions['transcode_manager']

    if app_config.get("generate_thumbnails_on_start"):
        count = app.extensions['thumbnails'].generate_thumbnails()
        logging.info(f"Prepared {count} thumbnails")

    port = int(app_config.get("port") or DEFAULT_PORT)
    logging.info(f"Server running on http://localhost:{port} (encoder profile: {manager.config.profile})")
    try:
        app.run(host='0.0.0.0', port=port, debug=False, threaded=True)
    finally:
        manager.stop()


# Start the server
if __name__ == '__main__':
    main()
