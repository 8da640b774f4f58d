# tests/test_codec.py

import base64

import numpy as np
import pytest

from tile_world import codec


def test_known_encoding_is_little_endian():
    assert codec.encode_float32_array(np.array([1.0])) == "AACAPw=="
    np.testing.assert_array_equal(codec.decode_float32_array("AACAPw=="), [1.0])


def test_round_trip_is_bit_exact():
    values = np.array([0.0, -0.0, 1e-38, 3.4e38, np.inf, -np.inf, 0.1, -7.25], dtype=np.float32)
    decoded = codec.decode_float32_array(codec.encode_float32_array(values))
    assert decoded.tobytes() == values.tobytes()
    # Decoded buffers are writable copies.
    decoded[0] = 5.0


def test_round_trip_preserves_nan_bits():
    values = np.array([np.nan], dtype=np.float32)
    decoded = codec.decode_float32_array(codec.encode_float32_array(values))
    assert np.isnan(decoded[0])


@pytest.mark.parametrize("payload", ["not base64!!", "AAAA=A==", 12])
def test_invalid_base64_raises(payload):
    with pytest.raises(codec.CodecError):
        codec.decode_float32_array(payload)


def test_length_not_multiple_of_four_raises():
    payload = base64.b64encode(b"\x00\x01\x02").decode('ascii')
    with pytest.raises(codec.CodecError):
        codec.decode_float32_array(payload)


def test_codec_error_is_a_value_error():
    assert issubclass(codec.CodecError, ValueError)


@pytest.mark.parametrize("extra_values, expected_version", [
    (3 * 4, 3),   # weights + water + wetness + road for n=2
    (4, 2),       # weights + water
    (0, 1),       # weights only
    (5, 0),       # unknown layout
])
def test_decode_splatmap_detects_version(extra_values, expected_version):
    n = 2
    weights = np.arange(n * n * 4, dtype=np.float32)
    payload = np.concatenate([weights, np.full(extra_values, 0.5, dtype=np.float32)])

    decoded = codec.decode_splatmap(codec.encode_float32_array(payload), n)

    assert decoded['version'] == expected_version
    np.testing.assert_array_equal(decoded['data'], weights)
    expected_water = 0.5 if expected_version in (2, 3) else 0.0
    np.testing.assert_array_equal(decoded['water_mask'], expected_water)
    expected_road = 0.5 if expected_version == 3 else 0.0
    np.testing.assert_array_equal(decoded['road_mask'], expected_road)


def test_decode_splatmap_salvages_short_payload():
    payload = np.ones(6, dtype=np.float32)
    decoded = codec.decode_splatmap(codec.encode_float32_array(payload), 2)
    assert decoded['version'] == 0
    np.testing.assert_array_equal(decoded['data'][:6], 1.0)
    np.testing.assert_array_equal(decoded['data'][6:], 0.0)


def test_encode_splatmap_writes_v3_only_with_both_extended_masks():
    data = np.zeros((2, 2, 4), dtype=np.float32)
    water = np.zeros((2, 2), dtype=np.float32)
    v2 = codec.encode_splatmap(data, water)
    v3 = codec.encode_splatmap(data, water, water, water)
    assert codec.decode_splatmap(v2, 2)['version'] == 2
    assert codec.decode_splatmap(v3, 2)['version'] == 3


def test_foliage_instances_drop_partial_matrix():
    matrices = np.arange(2 * 16 + 5, dtype=np.float32)
    decoded = codec.decode_foliage_instances(codec.encode_float32_array(matrices))
    assert decoded.shape == (2, 16)
    assert codec.get_instance_count(matrices) == 2
    np.testing.assert_array_equal(decoded[1], np.arange(16, 32))


@pytest.mark.parametrize("count, channels, expected", [
    (25, 1, 5), (100, 4, 5), (24, 1, None), (0, 1, None), (10, 4, None),
])
def test_infer_vertex_count(count, channels, expected):
    assert codec.infer_vertex_count(count, channels) == expected


def test_validate_array_size_counts_shared_border():
    assert codec.validate_array_size(np.zeros(9), 2)
    assert codec.validate_array_size(np.zeros(36), 2, channels=4)
    assert not codec.validate_array_size(np.zeros(4), 2)


def test_parse_json():
    assert codec.parse_json('{"a": [1, 2]}') == {'a': [1, 2]}
    assert codec.parse_json('{"a": ') is None
    assert codec.parse_json(None) is None
