"""
Tests for Checkpoint Serialization
=================================

Binary format, validation of malformed files, and the atomic save
behaviour that protects an existing checkpoint.
"""

import struct

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scratchnet import serializer
from scratchnet.activations import ActivationKind
from scratchnet.errors import FormatError, IoError, ShapeError
from scratchnet.network import Network


def raw_checkpoint(layers, magic=b"SNNC", version=1, count=None):
    """
    Hand-build checkpoint bytes.

    Args:
        layers: List of (in_dim, out_dim, activation_code)
    """
    count = len(layers) if count is None else count
    data = struct.pack('>4sII', magic, version, count)
    for in_dim, out_dim, code in layers:
        data += struct.pack('>IIB', in_dim, out_dim, code)
        data += np.arange(in_dim * out_dim + out_dim, dtype='>f8').tobytes()
    return data


class TestCheckpointFormat:
    """Tests for the byte layout."""

    def test_header(self):
        net = Network.from_sizes([3, 2], output_activation='sigmoid', seed=0)
        data = serializer.dumps(net)

        assert data[:4] == b"SNNC"
        assert struct.unpack('>II', data[4:12]) == (1, 1)
        assert struct.unpack('>IIB', data[12:21]) == (3, 2, int(ActivationKind.SIGMOID))
        assert len(data) == 12 + 9 + (6 + 2) * 8

    def test_row_major_weights(self):
        """Weights are stored one output unit (row) at a time, big-endian."""
        net = Network.from_sizes([2, 2], output_activation='identity', seed=0)
        net.layers[0].weight[:] = [[1.0, 2.0], [3.0, 4.0]]
        net.layers[0].bias[:] = [5.0, 6.0]

        data = serializer.dumps(net)
        values = np.frombuffer(data, dtype='>f8', offset=21)

        np.testing.assert_array_equal(values, [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])

    def test_decode_hand_built(self):
        net = serializer.loads(raw_checkpoint([(2, 3, 2), (3, 1, 1)]))

        assert net.layer_sizes == [2, 3, 1]
        assert net.layers[0].activation is ActivationKind.RELU
        np.testing.assert_array_equal(net.layers[0].weight, [[0, 1], [2, 3], [4, 5]])
        np.testing.assert_array_equal(net.layers[0].bias, [6, 7, 8])
        assert net.layers[0].weight.dtype == np.float64


class TestRoundTrip:
    """save() then load() gives back the same network."""

    def test_round_trip_exact(self, tmp_path):
        net = Network.from_sizes([784, 16, 16, 10], seed=3)
        path = tmp_path / 'network.bin'

        serializer.save(net, path)
        loaded = serializer.load(path)

        assert loaded.layer_sizes == net.layer_sizes
        for original, restored in zip(net.layers, loaded.layers):
            assert restored.activation is original.activation
            np.testing.assert_array_equal(restored.weight, original.weight)
            np.testing.assert_array_equal(restored.bias, original.bias)

    def test_loaded_parameters_writable(self, tmp_path):
        """A loaded network can keep training."""
        path = tmp_path / 'network.bin'
        serializer.save(Network.from_sizes([2, 2], seed=0), path)
        loaded = serializer.load(path)

        loaded.layers[0].weight[0, 0] = 1.0
        assert loaded.layers[0].weight[0, 0] == 1.0

    def test_same_predictions(self, tmp_path):
        net = Network.from_sizes([5, 7, 4], hidden_activation='relu', seed=2)
        path = tmp_path / 'network.bin'
        serializer.save(net, path)
        loaded = serializer.load(path)

        x = np.random.randn(5)
        np.testing.assert_array_equal(net.forward(x), loaded.forward(x))


class TestMalformedCheckpoints:
    """Every malformed file is rejected before a network is built."""

    def test_bad_magic(self):
        with pytest.raises(FormatError, match='magic'):
            serializer.loads(raw_checkpoint([(2, 1, 1)], magic=b"XXXX"))

    def test_bad_version(self):
        with pytest.raises(FormatError, match='version'):
            serializer.loads(raw_checkpoint([(2, 1, 1)], version=2))

    def test_truncated_header(self):
        with pytest.raises(FormatError):
            serializer.loads(b"SNNC\x00")

    @pytest.mark.parametrize('cut', [1, 8, 30])
    def test_truncated_parameters(self, cut):
        data = raw_checkpoint([(2, 3, 1), (3, 1, 1)])
        with pytest.raises(FormatError, match='truncated'):
            serializer.loads(data[:-cut])

    def test_trailing_bytes(self):
        with pytest.raises(FormatError, match='trailing'):
            serializer.loads(raw_checkpoint([(2, 1, 1)]) + b"\x00")

    def test_zero_layers(self):
        with pytest.raises(FormatError):
            serializer.loads(raw_checkpoint([]))

    def test_more_layers_declared(self):
        with pytest.raises(FormatError):
            serializer.loads(raw_checkpoint([(2, 1, 1)], count=2))

    def test_invalid_activation_code(self):
        with pytest.raises(FormatError, match='activation'):
            serializer.loads(raw_checkpoint([(2, 1, 9)]))

    def test_softmax_hidden_layer(self):
        with pytest.raises(FormatError):
            serializer.loads(raw_checkpoint([(2, 3, 3), (3, 2, 3)]))

    def test_dimension_chain_mismatch(self):
        """Layer 1 declares 4 inputs but layer 0 produces 3."""
        with pytest.raises(ShapeError):
            serializer.loads(raw_checkpoint([(2, 3, 1), (4, 1, 1)]))

    def test_zero_dimension(self):
        with pytest.raises(ShapeError):
            serializer.loads(raw_checkpoint([(0, 3, 1)]))

    def test_chain_checked_before_parameters(self, monkeypatch):
        """Dimension errors surface before any parameter array is created."""
        def fail(*args, **kwargs):
            raise AssertionError("parameters decoded before validation")

        monkeypatch.setattr(serializer.np, 'frombuffer', fail)
        with pytest.raises(ShapeError):
            serializer.loads(raw_checkpoint([(2, 3, 1), (4, 1, 1)]))


class TestSaveAndLoadFiles:
    """File-level behaviour of save() and load()."""

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(IoError):
            serializer.load(tmp_path / 'missing.bin')

    def test_save_into_missing_directory(self, tmp_path):
        net = Network.from_sizes([2, 1], seed=0)
        with pytest.raises(IoError):
            serializer.save(net, tmp_path / 'no' / 'such' / 'dir' / 'network.bin')

    def test_overwrite(self, tmp_path):
        path = tmp_path / 'network.bin'
        serializer.save(Network.from_sizes([2, 1], seed=0), path)
        second = Network.from_sizes([3, 4, 2], seed=1)
        serializer.save(second, path)

        assert serializer.load(path).layer_sizes == [3, 4, 2]
        assert [p.name for p in tmp_path.iterdir()] == ['network.bin']

    def test_retry_once(self, tmp_path, monkeypatch):
        real_write = serializer._atomic_write
        calls = []

        def flaky_write(path, payload):
            calls.append(path)
            if len(calls) == 1:
                raise OSError("disk hiccup")
            real_write(path, payload)

        monkeypatch.setattr(serializer, '_atomic_write', flaky_write)
        net = Network.from_sizes([2, 1], seed=0)
        serializer.save(net, tmp_path / 'network.bin')

        assert len(calls) == 2
        assert serializer.load(tmp_path / 'network.bin').layer_sizes == [2, 1]

    def test_persistent_failure_keeps_old_checkpoint(self, tmp_path, monkeypatch):
        """Two failed writes raise IoError and leave the previous file intact."""
        path = tmp_path / 'network.bin'
        original = Network.from_sizes([2, 3, 1], seed=0)
        serializer.save(original, path)
        before = path.read_bytes()

        def failing_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(serializer.os, 'replace', failing_replace)
        with pytest.raises(IoError) as info:
            serializer.save(Network.from_sizes([2, 3, 1], seed=5), path)

        assert isinstance(info.value.__cause__, OSError)
        assert path.read_bytes() == before
        assert [p.name for p in tmp_path.iterdir()] == ['network.bin']

    def test_load_corrupt_file(self, tmp_path):
        path = tmp_path / 'network.bin'
        path.write_bytes(b"not a checkpoint at all")
        with pytest.raises(FormatError):
            serializer.load(path)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
