from pathlib import Path

PARTIAL_PLAYLIST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:3\n"
    "#EXT-X-TARGETDURATION:4\n"
    "#EXT-X-MEDIA-SEQUENCE:0\n"
    "#EXTINF:4.000000,\n"
    "segment000.ts\n"
)

COMPLETE_PLAYLIST = PARTIAL_PLAYLIST + "#EXT-X-ENDLIST\n"


def write_video(media_dir: Path, name: str) -> Path:
    p = media_dir / name
    p.write_bytes(b"00")
    return p


def write_output(hls_root: Path, media_id: str, playlist: str, segments: int = 1) -> Path:
    out = Path(hls_root) / media_id
    out.mkdir(parents=True, exist_ok=True)
    for i in range(segments):
        (out / f"segment{i:03d}.ts").write_bytes(b"\x47" * 188)
    (out / "index.m3u8").write_text(playlist)
    return out
