"""
Model Bank - Quantized Neural Update Rules

Loads the trained per-cell update rules from a decoded asset record and
keeps them immutable for the lifetime of the engine. Each model is a small
stack of dense layers stored as uint8 weights with a per-layer affine
dequantization:

    w = (q / 255 - center) * scale

All models in one asset share the channel count, the neighbor topology and
the layer shapes, so their parameters can be stacked into one tensor per
layer and indexed by model id on the device.
"""

import base64
import logging

import numpy as np
import torch

from .errors import AssetFormatError, InvalidModelIdError, UnsupportedModelCountError
from .topology import NEIGHBOR_COUNTS

log = logging.getLogger(__name__)

# The selector plane is uint8
MAX_MODELS = 256


class QuantizedLayer:
    """One dense layer: (in_ch, out_ch) uint8 weights plus a float bias."""

    def __init__(self, data, bias, scale, center):
        self.data = data
        self.bias = bias
        self.scale = scale
        self.center = center

    @property
    def in_ch(self):
        return self.data.shape[0]

    @property
    def out_ch(self):
        return self.data.shape[1]

    def weights(self):
        """Dequantized float32 weight matrix."""
        return ((self.data.astype(np.float32) / 255.0 - self.center)
                * self.scale).astype(np.float32)


class Model:
    """An immutable named update rule."""

    def __init__(self, model_id, name, channel_n, layers):
        self.model_id = model_id
        self.name = name
        self.channel_n = channel_n
        self.layers = tuple(layers)

    def __repr__(self):
        shapes = ", ".join(f"{l.in_ch}x{l.out_ch}" for l in self.layers)
        return f"Model({self.model_id}, {self.name!r}, layers=[{shapes}])"


def _decode_weights(raw, in_ch, out_ch, where):
    if isinstance(raw, str):
        try:
            data = np.frombuffer(base64.b64decode(raw, validate=True), dtype=np.uint8)
        except ValueError as exc:
            raise AssetFormatError(f"{where}: weights are not valid base64") from exc
    elif isinstance(raw, (list, tuple)):
        data = np.asarray(raw)
        if data.ndim != 1 or not np.issubdtype(data.dtype, np.integer):
            raise AssetFormatError(f"{where}: weights must be a flat list of integers")
        if data.size and (data.min() < 0 or data.max() > 255):
            raise AssetFormatError(f"{where}: weights must be in 0..255")
        data = data.astype(np.uint8)
    else:
        raise AssetFormatError(f"{where}: weights must be base64 or a list")

    if data.size != in_ch * out_ch:
        raise AssetFormatError(
            f"{where}: expected {in_ch * out_ch} weights, got {data.size}")
    return data.reshape(in_ch, out_ch).copy()


def _parse_layer(raw, where):
    if not isinstance(raw, dict):
        raise AssetFormatError(f"{where}: layer must be a mapping")
    try:
        in_ch = int(raw["in_ch"])
        out_ch = int(raw["out_ch"])
        scale = float(raw.get("scale", 1.0))
        center = float(raw.get("center", 0.0))
    except (KeyError, TypeError, ValueError) as exc:
        raise AssetFormatError(f"{where}: bad layer header ({exc})") from exc
    if in_ch <= 0 or out_ch <= 0:
        raise AssetFormatError(f"{where}: layer dimensions must be positive")

    data = _decode_weights(raw.get("weights"), in_ch, out_ch, where)

    bias = raw.get("bias")
    if bias is None:
        bias = np.zeros(out_ch, dtype=np.float32)
    else:
        try:
            bias = np.asarray(bias, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise AssetFormatError(f"{where}: bias must be numeric") from exc
    if bias.shape != (out_ch,):
        raise AssetFormatError(
            f"{where}: bias has shape {bias.shape}, expected ({out_ch},)")
    return QuantizedLayer(data, bias, scale, center)


class ModelBank:
    """Ordered, read-only collection of quantized update rules."""

    def __init__(self, models, channel_n, neighborhood, visible_n, alive_channel):
        self._models = tuple(models)
        self.channel_n = channel_n
        self.neighborhood = neighborhood
        self.visible_n = visible_n
        self.alive_channel = alive_channel

    @property
    def neighbor_n(self):
        return NEIGHBOR_COUNTS[self.neighborhood]

    @property
    def hidden_channels(self):
        """Indices of the hidden channels (not visible, not alive)."""
        return [c for c in range(self.visible_n, self.channel_n)
                if c != self.alive_channel]

    @classmethod
    def load(cls, asset):
        """Validate and decode an asset record.

        Args:
            asset: Mapping with model_names, channel_n, models and the
                optional visible_n, alive_channel and neighborhood keys

        Raises:
            AssetFormatError: Malformed or inconsistent asset
            UnsupportedModelCountError: More than MAX_MODELS models
        """
        if not isinstance(asset, dict):
            raise AssetFormatError("asset must be a mapping")

        names = asset.get("model_names")
        if not isinstance(names, (list, tuple)) or not names:
            raise AssetFormatError("asset has no model_names")
        if not all(isinstance(n, str) and n for n in names):
            raise AssetFormatError("model_names must be non-empty strings")
        if len(names) > MAX_MODELS:
            raise UnsupportedModelCountError(
                f"{len(names)} models, the selector addresses at most {MAX_MODELS}")

        raw_models = asset.get("models")
        if not isinstance(raw_models, (list, tuple)) or len(raw_models) != len(names):
            raise AssetFormatError("models must list one entry per model name")

        channel_n = asset.get("channel_n")
        if not isinstance(channel_n, int) or isinstance(channel_n, bool) or channel_n <= 0:
            raise AssetFormatError("channel_n must be a positive integer")

        neighborhood = asset.get("neighborhood", "hex")
        if neighborhood not in NEIGHBOR_COUNTS:
            raise AssetFormatError(f"unknown neighborhood {neighborhood!r}")

        visible_n = asset.get("visible_n", 3)
        alive_channel = asset.get("alive_channel", 3)
        if not isinstance(visible_n, int) or not 0 <= visible_n <= channel_n:
            raise AssetFormatError("visible_n must be within [0, channel_n]")
        if not isinstance(alive_channel, int) or not 0 <= alive_channel < channel_n:
            raise AssetFormatError("alive_channel must be a channel index")

        feature_n = channel_n * (NEIGHBOR_COUNTS[neighborhood] + 1)
        models = []
        shapes = None
        for model_id, (name, raw) in enumerate(zip(names, raw_models)):
            where = f"model {model_id} ({name})"
            if not isinstance(raw, dict):
                raise AssetFormatError(f"{where}: entry must be a mapping")
            if raw.get("channel_n", channel_n) != channel_n:
                raise AssetFormatError(
                    f"{where}: channel_n {raw.get('channel_n')} != {channel_n}")
            raw_layers = raw.get("layers")
            if not isinstance(raw_layers, (list, tuple)) or not raw_layers:
                raise AssetFormatError(f"{where}: no layers")

            layers = [_parse_layer(l, f"{where} layer {i}")
                      for i, l in enumerate(raw_layers)]
            for prev, nxt in zip(layers, layers[1:]):
                if prev.out_ch != nxt.in_ch:
                    raise AssetFormatError(f"{where}: layer shapes do not chain")
            if layers[0].in_ch != feature_n:
                raise AssetFormatError(
                    f"{where}: first layer takes {layers[0].in_ch} inputs, "
                    f"the {neighborhood} neighborhood gathers {feature_n}")
            if layers[-1].out_ch != channel_n:
                raise AssetFormatError(
                    f"{where}: last layer emits {layers[-1].out_ch} channels, "
                    f"expected {channel_n}")

            layer_shapes = [(l.in_ch, l.out_ch) for l in layers]
            if shapes is None:
                shapes = layer_shapes
            elif layer_shapes != shapes:
                raise AssetFormatError(f"{where}: layer shapes differ from model 0")

            models.append(Model(model_id, name, channel_n, layers))

        log.info("Loaded %d models (%d channels, %s neighborhood)",
                 len(models), channel_n, neighborhood)
        return cls(models, channel_n, neighborhood, visible_n, alive_channel)

    def count(self):
        return len(self._models)

    def names(self):
        return tuple(m.name for m in self._models)

    def get(self, model_id):
        if not self.is_valid_id(model_id):
            raise InvalidModelIdError(
                f"model id {model_id!r} is not in [0, {self.count()})")
        return self._models[model_id]

    def is_valid_id(self, model_id):
        return (isinstance(model_id, (int, np.integer))
                and not isinstance(model_id, bool)
                and 0 <= model_id < self.count())

    def pack(self, device):
        """Stack every model's dequantized layers for device-side lookup.

        Returns:
            List of (weights (N, in, out), bias (N, out)) float32 tensors,
            one pair per layer, indexed by model id along dim 0.
        """
        packed = []
        for layer_idx in range(len(self._models[0].layers)):
            layers = [m.layers[layer_idx] for m in self._models]
            weights = np.stack([l.weights() for l in layers])
            bias = np.stack([l.bias for l in layers])
            packed.append((torch.from_numpy(weights).to(device),
                           torch.from_numpy(bias).to(device)))
        return packed


def random_asset(n_models=3, channel_n=12, hidden_n=64, neighborhood="hex",
                 scale=0.2, seed=None):
    """Build an asset record with random quantized weights.

    Intended for the demo mode of the CLI: the rules are untrained, so the
    textures are noise-driven rather than learned.
    """
    rng = np.random.default_rng(seed)
    feature_n = channel_n * (NEIGHBOR_COUNTS[neighborhood] + 1)
    models = []
    for _ in range(n_models):
        layers = []
        for in_ch, out_ch in ((feature_n, hidden_n), (hidden_n, channel_n)):
            q = rng.integers(0, 256, size=in_ch * out_ch, dtype=np.uint8)
            layers.append({
                "in_ch": in_ch,
                "out_ch": out_ch,
                "weights": base64.b64encode(q.tobytes()).decode("ascii"),
                "scale": scale,
                "center": 0.5,
                "bias": [0.0] * out_ch,
            })
        models.append({"channel_n": channel_n, "layers": layers})
    return {
        "model_names": [f"random_{i}" for i in range(n_models)],
        "channel_n": channel_n,
        "visible_n": 3,
        "alive_channel": 3,
        "neighborhood": neighborhood,
        "models": models,
    }
