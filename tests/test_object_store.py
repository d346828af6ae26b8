import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from webcam_timelapse.exceptions import StorageError, ValidationError  # noqa: E402
from webcam_timelapse.object_store import LocalObjectStore  # noqa: E402


def test_put_get_and_delete(tmp_path):
    objects = LocalObjectStore(tmp_path)
    objects.put("images/romo/cam/1.jpg", b"first")
    objects.put("images/romo/cam/1.jpg", b"second")

    assert objects.get("images/romo/cam/1.jpg") == b"second"
    assert (tmp_path / "images" / "romo" / "cam" / "1.jpg").is_file()
    assert [path.name for path in (tmp_path / "images" / "romo" / "cam").iterdir()] == ["1.jpg"]

    assert objects.delete("images/romo/cam/1.jpg") is True
    assert objects.delete("images/romo/cam/1.jpg") is False
    assert objects.exists("images/romo/cam/1.jpg") is False


@pytest.mark.parametrize("key", ["", "../escape.jpg", "images/../../etc/passwd"])
def test_rejects_invalid_keys(tmp_path, key):
    with pytest.raises(ValidationError):
        LocalObjectStore(tmp_path).put(key, b"data")


def test_missing_object_read_raises_storage_error(tmp_path):
    with pytest.raises(StorageError):
        LocalObjectStore(tmp_path).get("images/missing.jpg")


def test_public_url():
    assert LocalObjectStore("/tmp", "https://media.example.org/").public_url("/gifs/a.mp4") == (
        "https://media.example.org/gifs/a.mp4"
    )
    assert LocalObjectStore("/tmp").public_url("gifs/a.mp4") == "gifs/a.mp4"
