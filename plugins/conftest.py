"""Shared fixtures: small in-memory model assets and CPU engines."""

import pytest

from hexells.engine import CellularAutomata
from hexells.topology import NEIGHBOR_COUNTS


def build_asset(n_models=1, channel_n=8, hidden_n=4, neighborhood="moore",
                biases=None, names=None):
    """Asset whose weights all dequantize to zero.

    Each model's output is just its last-layer bias, so biases[i] (a list of
    channel_n floats, or None for all zeros) fully determines the delta of
    model i.
    """
    feature_n = channel_n * (NEIGHBOR_COUNTS[neighborhood] + 1)
    biases = biases or [None] * n_models
    models = []
    for bias in biases:
        models.append({
            "channel_n": channel_n,
            "layers": [
                {"in_ch": feature_n, "out_ch": hidden_n,
                 "weights": [0] * (feature_n * hidden_n),
                 "scale": 1.0, "center": 0.0, "bias": [0.0] * hidden_n},
                {"in_ch": hidden_n, "out_ch": channel_n,
                 "weights": [0] * (hidden_n * channel_n),
                 "scale": 1.0, "center": 0.0,
                 "bias": list(bias) if bias is not None else [0.0] * channel_n},
            ],
        })
    return {
        "model_names": names or [f"model_{i}" for i in range(n_models)],
        "channel_n": channel_n,
        "visible_n": 3,
        "alive_channel": 3,
        "neighborhood": neighborhood,
        "models": models,
    }


@pytest.fixture
def make_asset():
    return build_asset


@pytest.fixture
def make_engine():
    created = []

    def factory(asset=None, grid_size=(8, 8), **kwargs):
        kwargs.setdefault("device", "cpu")
        kwargs.setdefault("seed", 0)
        engine = CellularAutomata(None, asset or build_asset(), grid_size, **kwargs)
        created.append(engine)
        return engine

    yield factory
    for engine in created:
        if not engine.destroyed:
            engine.destroy()


class FakeClock:
    """Manually advanced time source for session tests."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
