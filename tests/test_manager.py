import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from modules.media_library import hash_filename
from modules.transcode import StreamAction, TranscodeConfig, TranscodeManager
from modules.transcode.errors import (
    CapacityError,
    MediaNotFoundError,
    OutputStorageError,
    ProcessLaunchError,
)

from helpers import PARTIAL_PLAYLIST, COMPLETE_PLAYLIST, write_output, write_video


def test_first_request_starts_job(manager, runner, media_dir, transcode_config):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")

    result = manager.ensure_streamable("clip.mp4")

    assert result.ready is False
    assert result.action == StreamAction.STARTED
    assert result.media_id == key
    assert result.playlist_path == os.path.join(transcode_config.hls_root, key, "index.m3u8")
    assert result.playlist_url == f"/hls/{key}/index.m3u8"
    assert os.path.isdir(os.path.join(transcode_config.hls_root, key))
    assert runner.launches == [
        (str(media_dir / "clip.mp4"), os.path.join(transcode_config.hls_root, key), "software")
    ]
    assert manager.is_active(key)
    assert manager.registry.get(key).process is runner.processes[0]


def test_request_while_active_reuses_job(manager, runner, media_dir):
    write_video(media_dir, "clip.mp4")
    first = manager.ensure_streamable("clip.mp4")
    second = manager.ensure_streamable("clip.mp4")

    assert second.action == StreamAction.ACTIVE
    assert second.ready is False
    assert second.playlist_path == first.playlist_path
    assert len(runner.launches) == 1


def test_concurrent_requests_launch_once(manager, runner, media_dir):
    write_video(media_dir, "clip.mp4")
    runner.delay = 0.02
    barrier = threading.Barrier(16)

    def request(_):
        barrier.wait()
        return manager.ensure_streamable("clip.mp4")

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(request, range(16)))

    assert len(runner.launches) == 1
    assert len({r.playlist_path for r in results}) == 1
    assert all(r.ready is False for r in results)
    assert sum(r.action == StreamAction.STARTED for r in results) == 1


def test_partial_output_restarts_once(manager, runner, media_dir, tmp_path):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")
    write_output(tmp_path / "hls", key, PARTIAL_PLAYLIST, segments=2)

    first = manager.ensure_streamable("clip.mp4")
    second = manager.ensure_streamable("clip.mp4")

    assert first.action == StreamAction.RESUMED
    assert second.action == StreamAction.ACTIVE
    assert len(runner.launches) == 1


def test_complete_output_short_circuits(manager, runner, media_dir, tmp_path):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")
    write_output(tmp_path / "hls", key, COMPLETE_PLAYLIST)

    acquired = []
    original = manager.registry.try_acquire

    def spy(*args, **kwargs):
        acquired.append(args)
        return original(*args, **kwargs)

    manager.registry.try_acquire = spy

    for _ in range(5):
        result = manager.ensure_streamable("clip.mp4")
        assert result.ready is True
        assert result.action == StreamAction.COMPLETE

    assert acquired == []
    assert runner.launches == []
    assert manager.registry.active_count() == 0


@pytest.mark.parametrize("code", [0, 1])
def test_exit_releases_job(manager, runner, media_dir, code):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")
    manager.ensure_streamable("clip.mp4")
    assert manager.is_active(key)

    runner.processes[0].finish(code)

    assert not manager.is_active(key)


def test_failed_job_is_retried_by_next_request(manager, runner, media_dir, tmp_path):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")
    manager.ensure_streamable("clip.mp4")
    write_output(tmp_path / "hls", key, PARTIAL_PLAYLIST)
    runner.processes[0].finish(1)

    result = manager.ensure_streamable("clip.mp4")

    assert result.action == StreamAction.RESUMED
    assert len(runner.launches) == 2
    # partial output was left in place for the new run to overwrite
    assert (tmp_path / "hls" / key / "segment000.ts").exists()


def test_not_found_has_no_side_effects(manager, runner, transcode_config):
    with pytest.raises(MediaNotFoundError):
        manager.ensure_streamable("nonexistent.mp4")
    assert not os.path.exists(transcode_config.hls_root)
    assert runner.launches == []
    assert manager.registry.active_count() == 0


def test_not_found_does_not_create_media_dir(tmp_path, runner):
    config = TranscodeConfig(media_dir=str(tmp_path / "missing"), hls_root=str(tmp_path / "hls"))
    m = TranscodeManager(config, runner=runner, start_cleanup=False)
    with pytest.raises(MediaNotFoundError):
        m.ensure_streamable("nonexistent.mp4")
    with pytest.raises(MediaNotFoundError):
        m.ensure_streamable_by_id(hash_filename("nonexistent.mp4"))
    assert not (tmp_path / "missing").exists()
    assert not (tmp_path / "hls").exists()
    assert runner.launches == []


def test_ensure_streamable_by_id(manager, runner, media_dir):
    write_video(media_dir, "clip.mp4")
    result = manager.ensure_streamable_by_id(hash_filename("clip.mp4"))
    assert result.file_name == "clip.mp4"
    with pytest.raises(MediaNotFoundError):
        manager.ensure_streamable_by_id(hash_filename("other.mp4"))


def test_launch_failure_releases_reservation(manager, runner, media_dir):
    write_video(media_dir, "clip.mp4")
    runner.fail = True
    with pytest.raises(ProcessLaunchError):
        manager.ensure_streamable("clip.mp4")
    assert not manager.is_active(hash_filename("clip.mp4"))

    runner.fail = False
    assert manager.ensure_streamable("clip.mp4").action == StreamAction.STARTED


def test_directory_failure_releases_reservation(manager, runner, media_dir, tmp_path):
    write_video(media_dir, "clip.mp4")
    # hls root is a file, so the output directory cannot be created
    (tmp_path / "hls").write_text("not a directory")

    with pytest.raises(OutputStorageError):
        manager.ensure_streamable("clip.mp4")

    assert not manager.is_active(hash_filename("clip.mp4"))
    assert runner.launches == []


def test_capacity_limit(transcode_config, runner, media_dir):
    transcode_config.max_concurrent_tasks = 1
    manager = TranscodeManager(transcode_config, runner=runner, start_cleanup=False)
    write_video(media_dir, "a.mp4")
    write_video(media_dir, "b.mp4")

    manager.ensure_streamable("a.mp4")
    with pytest.raises(CapacityError):
        manager.ensure_streamable("b.mp4")
    # an active job is still reported, not rejected
    assert manager.ensure_streamable("a.mp4").action == StreamAction.ACTIVE

    runner.processes[0].finish(0)
    assert manager.ensure_streamable("b.mp4").action == StreamAction.STARTED


def test_cleanup_stops_overdue_jobs(transcode_config, runner, media_dir):
    transcode_config.task_timeout = 60
    manager = TranscodeManager(transcode_config, runner=runner, start_cleanup=False)
    write_video(media_dir, "old.mp4")
    write_video(media_dir, "new.mp4")
    manager.ensure_streamable("old.mp4")
    manager.ensure_streamable("new.mp4")
    manager.registry.get(hash_filename("old.mp4")).started_at = time.time() - 120

    assert manager.cleanup() == 1

    assert runner.processes[0].terminated
    assert not runner.processes[1].terminated
    assert not manager.is_active(hash_filename("old.mp4"))
    assert manager.is_active(hash_filename("new.mp4"))


def test_cleanup_disabled_without_timeout(manager, runner, media_dir):
    write_video(media_dir, "clip.mp4")
    manager.ensure_streamable("clip.mp4")
    manager.registry.get(hash_filename("clip.mp4")).started_at = 0
    assert manager.cleanup() == 0


def test_stop_terminates_running_jobs(manager, runner, media_dir):
    write_video(media_dir, "clip.mp4")
    manager.ensure_streamable("clip.mp4")
    manager.stop()
    assert runner.processes[0].terminated
    assert manager.registry.active_count() == 0


def test_status_reports_state(manager, runner, media_dir, tmp_path):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")

    status = manager.get_status(key)
    assert status["state"] == "absent"
    assert status["active"] is False

    manager.ensure_streamable("clip.mp4")
    write_output(tmp_path / "hls", key, PARTIAL_PLAYLIST, segments=2)
    status = manager.get_status(key)
    assert status["state"] == "partial"
    assert status["active"] is True
    assert status["segments"] == 2
    assert status["task"]["file_name"] == "clip.mp4"
    assert manager.get_all_jobs()[0]["id"] == key
    assert manager.get_status_summary()["active_tasks"] == 1


def test_clip_scenario(manager, runner, media_dir, tmp_path):
    write_video(media_dir, "clip.mp4")
    key = hash_filename("clip.mp4")

    first = manager.ensure_streamable("clip.mp4")
    assert (first.ready, first.action) == (False, StreamAction.STARTED)
    assert first.playlist_path.endswith(os.path.join(key, "index.m3u8"))

    second = manager.ensure_streamable("clip.mp4")
    assert (second.ready, second.action) == (False, StreamAction.ACTIVE)
    assert second.playlist_path == first.playlist_path
    assert len(runner.launches) == 1

    write_output(tmp_path / "hls", key, COMPLETE_PLAYLIST)
    runner.processes[0].finish(0)

    third = manager.ensure_streamable("clip.mp4")
    assert (third.ready, third.action) == (True, StreamAction.COMPLETE)
    assert len(runner.launches) == 1
