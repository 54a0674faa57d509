"""
Checkpoint Serializer
=====================

Binary reader/writer for a Network's topology and parameters.

Layout (integers big-endian uint32, floats big-endian float64):

    magic           4 bytes   b"SNNC"
    version         uint32    1
    layer_count     uint32
    per layer:
        in_dim          uint32
        out_dim         uint32
        activation      uint8     0=identity 1=sigmoid 2=relu 3=softmax
        weights         out_dim * in_dim floats, row-major (row = one output unit)
        biases          out_dim floats

float64 is the in-memory precision, so a save/load round trip is exact.
"""

import logging
import os
import struct
import tempfile
from pathlib import Path

import numpy as np

from .activations import ActivationKind
from .errors import FormatError, IoError, ShapeError
from .layers import Dense
from .network import Network

logger = logging.getLogger(__name__)

MAGIC = b"SNNC"
VERSION = 1

_HEADER = struct.Struct('>4sII')
_LAYER_HEADER = struct.Struct('>IIB')
_FLOAT = np.dtype('>f8')


def dumps(network):
    """Encode a network as checkpoint bytes."""
    chunks = [_HEADER.pack(MAGIC, VERSION, len(network.layers))]
    with network.lock:
        for layer in network.layers:
            chunks.append(_LAYER_HEADER.pack(layer.input_dim, layer.output_dim, int(layer.activation)))
            chunks.append(layer.weight.astype(_FLOAT).tobytes(order='C'))
            chunks.append(layer.bias.astype(_FLOAT).tobytes())
    return b''.join(chunks)


def _scan_layers(data):
    """
    Walk every layer header without touching parameter data.

    Returns:
        List of (in_dim, out_dim, activation, weight_offset, bias_offset)
    """
    if len(data) < _HEADER.size:
        raise FormatError(f"Checkpoint truncated: {len(data)} bytes, header needs {_HEADER.size}")

    magic, version, layer_count = _HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise FormatError(f"Bad checkpoint magic {magic!r} (expected {MAGIC!r})")
    if version != VERSION:
        raise FormatError(f"Unsupported checkpoint version {version} (expected {VERSION})")
    if layer_count == 0:
        raise FormatError("Checkpoint declares zero layers")

    offset = _HEADER.size
    layout = []
    for i in range(layer_count):
        if offset + _LAYER_HEADER.size > len(data):
            raise FormatError(f"Checkpoint truncated in header of layer {i}")
        in_dim, out_dim, code = _LAYER_HEADER.unpack_from(data, offset)
        offset += _LAYER_HEADER.size

        if in_dim == 0 or out_dim == 0:
            raise ShapeError(f"checkpoint layer {i}", "positive dimensions", (out_dim, in_dim))
        if layout and layout[-1][1] != in_dim:
            raise ShapeError(f"checkpoint layer {i} input", (layout[-1][1],), (in_dim,))
        try:
            activation = ActivationKind(code)
        except ValueError:
            raise FormatError(f"Invalid activation code {code} in layer {i}") from None
        if activation is ActivationKind.SOFTMAX and i != layer_count - 1:
            raise FormatError(f"Softmax on hidden layer {i}")

        weight_offset = offset
        bias_offset = weight_offset + in_dim * out_dim * _FLOAT.itemsize
        offset = bias_offset + out_dim * _FLOAT.itemsize
        if offset > len(data):
            raise FormatError(f"Checkpoint truncated in parameters of layer {i}")

        layout.append((in_dim, out_dim, activation, weight_offset, bias_offset))

    if offset != len(data):
        raise FormatError(f"{len(data) - offset} unexpected trailing bytes in checkpoint")
    return layout


def loads(data):
    """
    Decode checkpoint bytes into a Network.

    Headers and the dimension chain are validated before any parameter
    array is created.
    """
    layout = _scan_layers(data)

    layers = []
    for in_dim, out_dim, activation, weight_offset, bias_offset in layout:
        weight = np.frombuffer(data, dtype=_FLOAT, count=in_dim * out_dim, offset=weight_offset)
        bias = np.frombuffer(data, dtype=_FLOAT, count=out_dim, offset=bias_offset)
        layers.append(Dense.from_parameters(
            weight.reshape(out_dim, in_dim).astype(np.float64),
            bias.astype(np.float64),
            activation,
        ))
    return Network(layers)


def save(network, path):
    """
    Write a checkpoint.

    The bytes go to a temporary file next to the target which then replaces
    it atomically, so an existing checkpoint is never left half-written.
    A failed write is retried once.

    Raises:
        IoError: if the write fails twice
    """
    path = Path(path)
    payload = dumps(network)

    last_error = None
    for attempt in (1, 2):
        try:
            _atomic_write(path, payload)
            logger.info("Checkpoint saved to %s (%d bytes)", path, len(payload))
            return path
        except OSError as exc:
            last_error = exc
            logger.warning("Checkpoint write to %s failed (attempt %d): %s", path, attempt, exc)

    raise IoError(f"Could not write checkpoint {path}: {last_error}") from last_error


def _atomic_write(path, payload):
    directory = path.parent if str(path.parent) else Path('.')
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, 'wb') as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def load(path):
    """
    Read a checkpoint.

    Raises:
        IoError: the file cannot be read
        FormatError: bad magic/version, or truncated/extra data
        ShapeError: inconsistent layer dimensions
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise IoError(f"Could not read checkpoint {path}: {exc}") from exc

    network = loads(data)
    logger.info("Checkpoint loaded from %s: %r", path, network)
    return network
