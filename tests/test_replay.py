import cv2
import numpy as np
import pytest

from liveness.config import Settings
from liveness.replay import replay_video

from doubles import ScriptedDetector


def _write_video(path, n=10, fps=5, size=(32, 32)):
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, size)
    for _ in range(n):
        writer.write(np.zeros((size[1], size[0], 3), dtype=np.uint8))
    writer.release()


def test_replay_video_summary(tmp_path):
    path = tmp_path / "in.avi"
    _write_video(path)
    res = replay_video(str(path), Settings(), rate_hz=5, detector=ScriptedDetector([1, 1, 2, 2]))
    summary = res["summary"]
    assert 8 <= summary["ticks"] <= 10
    assert summary["max_faces"] == 2
    assert summary["multiple_face_ticks"] == 2
    assert summary["warnings"] == 1
    assert res["warnings"][0]["face_count"] == 2
    assert res["observations"][0]["type"] == "face_observation"


def test_replay_missing_video(tmp_path):
    with pytest.raises(FileNotFoundError):
        replay_video(str(tmp_path / "missing.avi"), Settings(), detector=ScriptedDetector())
