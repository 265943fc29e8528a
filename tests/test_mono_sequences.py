import pytest

from slamkit.mono_sequences import (
    MonoSequence,
    frame_wait_time,
    load_euroc_mono,
    load_kitti_mono,
    load_tum_mono,
    tracking_time_stats,
)


def test_euroc_paths_and_seconds(tmp_path):
    stamps = ["1403636579763555584", "1403636579813555456"]
    times = tmp_path / "times.txt"
    times.write_text("\n".join(stamps) + "\n\n")
    seq = load_euroc_mono("cam0/data", str(times))
    assert isinstance(seq, MonoSequence)
    assert seq.image_paths == [f"cam0/data/{s}.png" for s in stamps]
    assert seq.timestamps == pytest.approx([int(s) / 1e9 for s in stamps])
    assert len(seq) == 2


def test_euroc_bad_timestamp(tmp_path):
    times = tmp_path / "times.txt"
    times.write_text("notanumber\n")
    with pytest.raises(ValueError):
        load_euroc_mono("imgs", str(times))


def test_euroc_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_euroc_mono("imgs", str(tmp_path / "absent.txt"))


def test_kitti_names_zero_padded(tmp_path):
    (tmp_path / "times.txt").write_text("0.0\n0.103\n0.207\n")
    seq = load_kitti_mono(str(tmp_path))
    assert seq.timestamps == pytest.approx([0.0, 0.103, 0.207])
    assert seq.image_paths[0] == f"{tmp_path}/image_0/000000.png"
    assert seq.image_paths[2].endswith("image_0/000002.png")
    assert len(seq.image_paths) == len(seq.timestamps)


def test_tum_skips_header(tmp_path):
    (tmp_path / "rgb.txt").write_text(
        "# color images\n# file\n# timestamp filename\n"
        "1305031102.175304 rgb/1305031102.175304.png\n"
        "1305031102.211214 rgb/1305031102.211214.png\n"
    )
    seq = load_tum_mono(str(tmp_path))
    assert seq.timestamps == pytest.approx([1305031102.175304, 1305031102.211214])
    assert seq.image_paths == [
        f"{tmp_path}/rgb/1305031102.175304.png",
        f"{tmp_path}/rgb/1305031102.211214.png",
    ]
    assert list(seq)[1] == (seq.image_paths[1], seq.timestamps[1])


def test_tum_malformed_line(tmp_path):
    (tmp_path / "rgb.txt").write_text("#\n#\n#\n1305031102.175304\n")
    with pytest.raises(ValueError):
        load_tum_mono(str(tmp_path))


def test_wait_time_uses_next_frame():
    stamps = [0.0, 0.1, 0.3]
    assert frame_wait_time(stamps, 0, 0.04) == pytest.approx(0.1 - 0.04)
    assert frame_wait_time(stamps, 1, 0.05) == pytest.approx(0.2 - 0.05)


def test_wait_time_last_frame_uses_previous():
    stamps = [0.0, 0.1, 0.3]
    assert frame_wait_time(stamps, 2, 0.05) == pytest.approx(0.2 - 0.05)


def test_wait_time_zero_when_slow_or_single():
    assert frame_wait_time([0.0, 0.1], 0, 0.5) == 0.0
    assert frame_wait_time([5.0], 0, 0.0) == 0.0


def test_wait_time_bad_index():
    with pytest.raises(IndexError):
        frame_wait_time([0.0, 1.0], 2, 0.0)


def test_tracking_stats():
    times = [0.3, 0.1, 0.2, 0.4]
    stats = tracking_time_stats(times)
    assert stats.median == 0.3
    assert stats.mean == pytest.approx(sum(times) / len(times))


def test_tracking_stats_empty():
    with pytest.raises(ValueError):
        tracking_time_stats([])