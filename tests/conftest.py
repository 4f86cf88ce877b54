import threading
import time

import pytest

from modules.media_library import MediaLibrary
from modules.transcode import TranscodeConfig, TranscodeManager
from modules.transcode.errors import ProcessLaunchError

import webserver


class StubProcess:
    """Stands in for TranscodeProcess; the test decides when it exits."""

    def __init__(self, on_exit, pid):
        self._on_exit = on_exit
        self.pid = pid
        self.returncode = None
        self.terminated = False

    def finish(self, code=0):
        self.returncode = code
        if self._on_exit is not None:
            self._on_exit(code)

    def terminate(self, timeout=5):
        self.terminated = True
        self.finish(-15)

    def wait(self, timeout=None):
        return self.returncode


class StubRunner:
    """Records launch calls instead of starting ffmpeg."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.fail = False
        self.launches = []
        self.processes = []
        self._lock = threading.Lock()

    def launch(self, input_path, output_dir, profile, on_exit=None, name=None):
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ProcessLaunchError("ffmpeg: No such file or directory")
        with self._lock:
            process = StubProcess(on_exit, pid=1000 + len(self.processes))
            self.launches.append((input_path, output_dir, profile))
            self.processes.append(process)
        return process


@pytest.fixture()
def media_dir(tmp_path):
    path = tmp_path / "media"
    path.mkdir()
    return path


@pytest.fixture()
def transcode_config(tmp_path, media_dir):
    return TranscodeConfig(media_dir=str(media_dir), hls_root=str(tmp_path / "hls"))


@pytest.fixture()
def runner():
    return StubRunner()


@pytest.fixture()
def manager(transcode_config, runner):
    m = TranscodeManager(
        transcode_config,
        library=MediaLibrary(transcode_config.media_dir),
        runner=runner,
        start_cleanup=False
    )
    yield m
    m.stop()


@pytest.fixture()
def app_config(tmp_path, media_dir):
    return {
        "port": 3000,
        "media_dir": str(media_dir),
        "hls_root": str(tmp_path / "hls"),
        "thumbnail_dir": str(tmp_path / "thumbs"),
        "transcode": {"ffmpeg_path": str(tmp_path / "no-such-ffmpeg")},
    }


@pytest.fixture()
def client(app_config, manager):
    app = webserver.create_app(app_config, manager=manager)
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c
