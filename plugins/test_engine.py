#!/usr/bin/env python3
"""
Engine behavior: stepping, edits, rendering, errors and lifecycle.
"""

import numpy as np
import pytest
import torch

from hexells.engine import CellularAutomata
from hexells.errors import (
    AssetFormatError, DeviceLostError, EngineDestroyedError,
    InvalidModelIdError, UnsupportedRenderModeError,
)
from hexells.model_bank import random_asset
from hexells.render import _sample_index

ALIVE = 3


def _bias(channel, value, channel_n=8):
    b = [0.0] * channel_n
    b[channel] = value
    return b


def _alive_map(engine):
    state, _ = engine.read_state()
    return state[ALIVE] > 0.1


# ---------------------------------------------------------------- construction

def test_ready_and_debug_hooks_fire_once(make_asset):
    ready = []
    hooked = []
    engine = CellularAutomata(None, make_asset(), (8, 8), device="cpu",
                              debug_hook=lambda e, defs: hooked.append(defs),
                              on_ready=ready.append)
    assert ready == [engine]
    assert len(hooked) == 1
    assert {d["key"] for d in hooked[0]} == {"fire_rate", "alive_threshold", "disturb_scale"}
    engine.destroy()


def test_malformed_asset_fails_before_ready(make_asset):
    asset = make_asset(n_models=2)
    asset["models"][1]["channel_n"] = 4
    ready = []
    with pytest.raises(AssetFormatError):
        CellularAutomata(None, asset, (8, 8), device="cpu", on_ready=ready.append)
    assert ready == [], "ready callback must not fire for a failed construction"


def test_hex_grid_needs_even_height(make_asset):
    with pytest.raises(ValueError):
        CellularAutomata(None, make_asset(neighborhood="hex"), (8, 7), device="cpu")


def test_new_field_is_dead(make_engine):
    engine = make_engine()
    assert not _alive_map(engine).any()
    assert engine.stats["alive"] == 0


# ---------------------------------------------------------------- stepping

def test_identity_rule_keeps_only_the_seed(make_engine, make_asset):
    engine = make_engine(make_asset(neighborhood="hex"), grid_size=(4, 4), fire_rate=1.0)
    engine.paint(0, 0, -1, 0)
    before, _ = engine.read_state()
    for _ in range(3):
        engine.step()

    expected = np.zeros((4, 4), dtype=bool)
    expected[2, 2] = True
    assert np.array_equal(_alive_map(engine), expected)
    after, _ = engine.read_state()
    assert np.array_equal(before, after), "a zero delta must leave the state untouched"
    assert engine.generation == 3


def test_paint_whole_field_then_step(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=3))
    for model_id in range(3):
        engine.paint(0, 0, -1, model_id)
        engine.step()
        state, selector = engine.read_state()
        assert np.all(selector == model_id)
        assert state[ALIVE, 4, 4] > 0.1, "seed cell must survive the first step"


def test_fire_rate_zero_applies_nothing(make_engine, make_asset):
    asset = make_asset(biases=[_bias(5, 0.5)])
    engine = make_engine(asset, fire_rate=0.0)
    engine.paint(0, 0, -1, 0)
    before, _ = engine.read_state()
    engine.step_n(4)
    after, _ = engine.read_state()
    assert np.array_equal(before, after)


def test_fire_rate_one_applies_everywhere_alive(make_engine, make_asset):
    asset = make_asset(biases=[_bias(5, 0.5)])
    engine = make_engine(asset, fire_rate=1.0)
    engine.paint(0, 0, -1, 0)
    engine.step()
    state, _ = engine.read_state()
    assert state[5, 4, 4] == pytest.approx(1.5)
    # cells next to the seed are inside the live neighborhood and get the delta
    assert state[5, 4, 5] == pytest.approx(0.5)
    # cells far from the seed are dead and stay empty
    assert np.all(state[:, 0, 0] == 0.0)


def test_fire_mask_is_stochastic(make_engine):
    engine = make_engine(grid_size=(64, 64), fire_rate=0.5)
    fired = engine.updater.fire_mask(64, 64).float().mean().item()
    assert 0.4 < fired < 0.6, f"fire fraction {fired}"
    first = engine.updater.fire_mask(64, 64)
    second = engine.updater.fire_mask(64, 64)
    assert not torch.equal(first, second), "each step draws a fresh mask"


def test_step_applies_delta_to_a_random_subset(make_engine, make_asset):
    asset = make_asset(biases=[_bias(5, 0.5)])
    engine = make_engine(asset, grid_size=(16, 16), fire_rate=0.5)
    state = engine.field.current_buffer().state
    state.zero_()
    state[ALIVE] = 1.0
    engine.step()
    after, _ = engine.read_state()
    fired = after[5] == 0.5
    assert np.all(fired | (after[5] == 0.0)), "a cell gets the whole delta or none"
    assert 0.3 < fired.mean() < 0.7, f"fire fraction {fired.mean()}"
    assert np.all(after[ALIVE] == 1.0)


def test_same_seed_same_buffers(make_engine):
    asset = random_asset(n_models=2, channel_n=8, hidden_n=16, neighborhood="hex", seed=7)
    runs = []
    for _ in range(2):
        engine = make_engine(asset, grid_size=(16, 16), seed=1234)
        engine.paint(0, 0, -1, 1)
        engine.paint(3, 3, 2, 0)
        engine.disturb()
        engine.step_n(12)
        runs.append(engine.read_state())
    assert np.array_equal(runs[0][0], runs[1][0])
    assert np.array_equal(runs[0][1], runs[1][1])


def test_models_coexist_in_one_field(make_engine, make_asset):
    asset = make_asset(n_models=2, biases=[None, _bias(5, 0.25)])
    engine = make_engine(asset, fire_rate=1.0)
    engine.paint(0, 0, -1, 0)      # seed at (4, 4) under model 0
    engine.paint(1, 1, 1, 1)       # seed at (1, 1) under model 1
    engine.step()
    state, selector = engine.read_state()
    assert selector[1, 1] == 1 and selector[4, 4] == 0
    assert state[5, 4, 4] == pytest.approx(1.0), "model 0 is the identity"
    assert state[5, 1, 1] == pytest.approx(1.25), "model 1 adds its bias"


def test_dead_cells_are_cleared(make_engine, make_asset):
    # pushes the alive channel down: the seed dies and the field empties
    engine = make_engine(make_asset(biases=[_bias(ALIVE, -2.0)]), fire_rate=1.0)
    engine.paint(0, 0, -1, 0)
    engine.step()
    state, selector = engine.read_state()
    assert np.all(state == 0.0)
    assert np.all(selector == 0), "liveness never touches the selector"


# ---------------------------------------------------------------- edits

def test_invalid_model_id_leaves_field_unchanged(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=2))
    engine.paint(0, 0, -1, 1)
    before = engine.read_state()
    for bad in (2, -1, 255, 1.5, True):
        with pytest.raises(InvalidModelIdError):
            engine.paint(2, 2, 3, bad)
    after = engine.read_state()
    assert np.array_equal(before[0], after[0])
    assert np.array_equal(before[1], after[1])


def test_paint_disc_sets_model_and_seed(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=2))
    engine.paint(0, 0, -1, 0)
    engine.paint(5, 2, 2, 1)
    state, selector = engine.read_state()
    assert selector[2, 5] == 1
    assert selector[2, 6] == 1 and selector[3, 5] == 1
    assert selector[2, 7] == 0, "distance 2 is outside a radius-2 disc"
    assert state[ALIVE, 2, 5] == 1.0
    assert np.all(state[:3, 2, 5] == 0.0), "seed cells start without color"
    assert state[ALIVE, 4, 4] == 1.0, "earlier seed outside the disc survives"


def test_paint_wraps_around_the_edges(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=2))
    engine.paint(0, 0, -1, 0)
    engine.paint(-1, 3, 2, 1)
    state, selector = engine.read_state()
    expected = np.zeros((8, 8), dtype=bool)
    expected[2:5, [6, 7, 0]] = True
    assert np.array_equal(selector == 1, expected), "disc continues across x = 0"
    assert state[ALIVE, 3, 7] == 1.0, "seed lands on the wrapped cell"
    assert state[ALIVE, 4, 4] == 1.0


def test_paint_seeds_the_nearest_cell(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=2))
    engine.paint(2.6, -0.6, 0, 1)
    state, selector = engine.read_state()
    assert selector[7, 3] == 1 and state[ALIVE, 7, 3] == 1.0
    assert selector[0, 2] == 0


def test_clear_circle_boundary_is_exclusive(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=2))
    engine.paint(0, 0, -1, 1)
    engine.field.current_buffer().state.fill_(1.0)
    # 8x8 grid on an 80x80 view: cell centers sit at 5, 15, ..., 75
    engine.clear_circle(45, 45, 10, (80, 80))
    state, selector = engine.read_state()
    cleared = np.all(state == 0.0, axis=0)
    expected = np.zeros((8, 8), dtype=bool)
    expected[4, 4] = True
    assert np.array_equal(cleared, expected), "cells at exactly the radius stay"
    assert np.all(selector == 1), "erasing keeps the model"

    engine.clear_circle(45, 45, 10.5, (80, 80))
    cleared = np.all(engine.read_state()[0] == 0.0, axis=0)
    for y, x in ((3, 4), (5, 4), (4, 3), (4, 5)):
        assert cleared[y, x]
    assert not cleared[3, 3]


def test_clear_circle_then_draw(make_engine):
    engine = make_engine()
    engine.field.current_buffer().state.fill_(1.0)
    engine.clear_circle(45, 45, 10, (80, 80))
    image = engine.draw((80, 80), "alive")
    assert np.all(image[40:50, 40:50] == 0)
    assert np.all(image[0:40, :] == 255)
    assert np.all(image[50:, :] == 255)


def test_hex_clear_circle_reaches_the_wrapped_half_cell(make_engine, make_asset):
    engine = make_engine(make_asset(neighborhood="hex"))
    engine.field.current_buffer().state.fill_(1.0)
    # odd rows are shifted half a cell: (1, 7) is drawn over x in [75, 80) and [0, 5)
    engine.clear_circle(2, 15, 9, (80, 80))
    state, _ = engine.read_state()
    cleared = np.all(state == 0.0, axis=0)
    expected = np.zeros((8, 8), dtype=bool)
    expected[1, 0] = expected[1, 7] = True
    assert np.array_equal(cleared, expected)

    image = engine.draw((80, 80), "alive")
    assert np.all(image[10:20, 0:15] == 0)
    assert np.all(image[10:20, 75:80] == 0)
    assert np.all(image[0:10, :] == 255)
    assert np.all(image[10:20, 15:75] == 255)


def test_disturb_on_dead_field_is_noop(make_engine):
    engine = make_engine()
    before = engine.draw((32, 32))
    state_before, _ = engine.read_state()
    engine.disturb()
    state_after, _ = engine.read_state()
    assert np.array_equal(state_before, state_after)
    assert np.array_equal(before, engine.draw((32, 32)))


def test_disturb_only_touches_hidden_channels_of_live_cells(make_engine):
    engine = make_engine(disturb_scale=0.5)
    engine.paint(0, 0, -1, 0)
    before, sel_before = engine.read_state()
    engine.disturb()
    after, sel_after = engine.read_state()
    assert np.array_equal(before[:4], after[:4]), "color and alive channels untouched"
    assert np.array_equal(sel_before, sel_after)
    assert not np.array_equal(before[4:, 4, 4], after[4:, 4, 4])
    assert np.all(after[:, 0, 0] == 0.0), "dead cells are not perturbed"


# ---------------------------------------------------------------- render

def test_draw_shape_and_color(make_engine):
    engine = make_engine(grid_size=(4, 4))
    state = engine.field.current_buffer().state
    state[0] = 1.0
    state[1] = 0.5
    state[2] = 2.0
    image = engine.draw((30, 20))
    assert image.shape == (20, 30, 3) and image.dtype == np.uint8
    assert tuple(image[0, 0]) == (255, 128, 255)


def test_draw_does_not_mutate(make_engine):
    engine = make_engine()
    engine.paint(0, 0, -1, 0)
    before = engine.read_state()
    for mode in ("color", "alive", "model", "hidden"):
        engine.draw((16, 16), mode)
    after = engine.read_state()
    assert np.array_equal(before[0], after[0])


def test_model_mode_dims_the_same_cells_stats_call_dead(make_engine):
    engine = make_engine()
    engine.paint(0, 0, -1, 0)
    image = engine.draw((8, 8), "model")
    bright = np.all(image == image[4, 4], axis=-1)
    assert bright[3:6, 3:6].all(), "the seed's neighborhood counts as alive"
    assert int(bright.sum()) == engine.stats["alive"] == 9
    assert image[0, 0].sum() < image[4, 4].sum()


def test_unsupported_mode(make_engine):
    engine = make_engine()
    with pytest.raises(UnsupportedRenderModeError):
        engine.draw((16, 16), "sepia")
    engine.draw((16, 16), "color")


def test_bad_view_size(make_engine):
    engine = make_engine()
    with pytest.raises(ValueError):
        engine.draw((0, 10))


def test_surface_receives_frames(make_asset):
    frames = []
    engine = CellularAutomata(frames.append, make_asset(), (8, 8), device="cpu")
    image = engine.draw((8, 8))
    assert len(frames) == 1 and frames[0] is image
    engine.destroy()


def test_hex_rows_are_offset():
    rows, cols = _sample_index(4, 4, (8, 8), True, "cpu")
    assert rows[2, 0].item() == 1
    assert cols[0, 0].item() == 0
    assert cols[2, 0].item() == 3, "odd rows start with the wrapped half cell"
    assert cols[2, 1].item() == 0


# ---------------------------------------------------------------- lifecycle

def test_device_failure_surfaces_as_device_lost(make_engine, monkeypatch):
    engine = make_engine()

    def broken(field):
        raise RuntimeError("CUDA error: device-side assert triggered")

    monkeypatch.setattr(engine.updater, "run", broken)
    with pytest.raises(DeviceLostError):
        engine.step()
    with pytest.raises(DeviceLostError):
        engine.draw((8, 8))


def test_programming_errors_are_not_device_loss(make_engine, monkeypatch):
    engine = make_engine()

    def unfinished(field):
        raise NotImplementedError("no kernel for this dtype")

    monkeypatch.setattr(engine.updater, "run", unfinished)
    with pytest.raises(NotImplementedError):
        engine.step()
    engine.draw((8, 8))


def test_calls_after_destroy(make_engine):
    engine = make_engine()
    engine.destroy()
    for call in (engine.step, engine.disturb,
                 lambda: engine.draw((8, 8)),
                 lambda: engine.paint(0, 0, -1, 0),
                 lambda: engine.clear_circle(1, 1, 1, (8, 8)),
                 engine.destroy):
        with pytest.raises(EngineDestroyedError):
            call()


def test_set_params(make_engine):
    engine = make_engine()
    engine.set_params(fire_rate=0.9, alive_threshold=0.2, disturb_scale=0.3)
    assert engine.get_params() == {"fire_rate": 0.9, "alive_threshold": 0.2,
                                   "disturb_scale": 0.3}
    with pytest.raises(ValueError):
        engine.set_params(fire_rate=1.5)


def test_stats_count_live_cells_per_model(make_engine, make_asset):
    engine = make_engine(make_asset(n_models=2, names=["a", "b"]))
    engine.paint(0, 0, -1, 0)
    engine.paint(1, 1, 0, 1)
    stats = engine.stats
    # a seed keeps its whole 3x3 moore neighborhood alive
    assert stats["alive"] == 18
    assert stats["models"] == {"a": 17, "b": 1}
    assert stats["alive_pct"] == pytest.approx(18 / 64 * 100)
