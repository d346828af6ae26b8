import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from webcam_timelapse.desample import desample, extract_timestamp_from_key  # noqa: E402

BASE = 1_700_000_000


def _key(timestamp, prefix="images/romo/cam"):
    return f"{prefix}/{timestamp}.jpg"


def test_extract_timestamp_from_key():
    assert extract_timestamp_from_key("images/romo/cam/1700000000.jpg") == 1_700_000_000
    assert extract_timestamp_from_key("1700000000.webp") == 1_700_000_000
    assert extract_timestamp_from_key("images/romo/cam/latest.jpg") is None
    assert extract_timestamp_from_key("images/romo/cam/1700000000") is None
    assert extract_timestamp_from_key("") is None


def test_empty_inputs_produce_empty_output():
    assert desample([], 5) == []
    assert desample([_key(BASE)], 0) == []


def test_small_input_is_returned_sorted():
    keys = [_key(BASE + 300), _key(BASE + 100), _key(BASE + 200)]
    assert desample(keys, 5) == [_key(BASE + 100), _key(BASE + 200), _key(BASE + 300)]


def test_unparseable_keys_are_dropped():
    keys = ["images/romo/cam/latest.jpg", _key(BASE), "images/romo/cam/123"]
    assert desample(keys, 5) == [_key(BASE)]


def test_eleven_keys_reduced_to_five():
    keys = [_key(BASE + 60 * index) for index in range(11)]
    result = desample(keys, 5)

    assert len(result) == 5
    assert result[0] == keys[0]
    assert result[-1] == keys[-1]
    # Targets at 150s/300s/450s; ties resolve to the earlier key.
    assert result == [keys[0], keys[2], keys[5], keys[7], keys[10]]


def test_one_and_two_keep_endpoints():
    keys = [_key(BASE + 10 * index) for index in range(6)]
    assert desample(keys, 1) == [keys[0]]
    assert desample(keys, 2) == [keys[0], keys[-1]]


def test_zero_span_returns_first_n():
    keys = [_key(BASE, "a"), _key(BASE, "b"), _key(BASE, "c")]
    assert desample(keys, 2) == [_key(BASE, "a"), _key(BASE, "b")]


def test_already_selected_slots_shrink_result():
    keys = [_key(BASE + offset) for offset in (0, 1, 2, 3, 1000)]
    result = desample(keys, 4)
    assert result == [keys[0], keys[3], keys[4]]


def test_output_is_chronological_and_unique():
    keys = [_key(BASE + offset) for offset in (500, 0, 40, 41, 42, 300, 990, 1000, 10)]
    result = desample(keys, 6)
    timestamps = [extract_timestamp_from_key(key) for key in result]
    assert timestamps == sorted(timestamps)
    assert len(set(result)) == len(result)
    assert len(result) <= 6
