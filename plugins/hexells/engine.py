"""
Neural Cellular Automata Engine

Owns the model bank, the double-buffered field and the three passes
(update, edit, render) and exposes the operations the host calls:

    step()                              one update pass + buffer swap
    draw(view_size, mode)               current buffer -> RGB image
    paint(x, y, radius, model_id)       stamp a model and a seed
    clear_circle(x, y, radius, view)    erase under a display-space brush
    disturb()                           jitter hidden state of live cells
    destroy()                           release everything

The engine runs no loop of its own and does no locking: the host calls it
from one context. Any torch failure during a call marks the engine as
lost and surfaces as DeviceLostError; the host has to rebuild it.
"""

import functools
import logging

import torch

from .edit import EditStage
from .errors import DeviceLostError, EngineDestroyedError, HexellsError
from .field import StateField
from .model_bank import ModelBank
from .presets import ENGINE_DEFAULTS, engine_slider_defs, resolve_device
from .render import RenderStage
from .topology import alive_mask, check_grid
from .update import UpdateStage

log = logging.getLogger(__name__)


def _device_call(method):
    """Reject calls after destroy/loss and turn torch failures into DeviceLostError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self._destroyed:
            raise EngineDestroyedError(f"{method.__name__}() called after destroy()")
        if self._lost is not None:
            raise DeviceLostError(f"device lost: {self._lost}")
        try:
            return method(self, *args, **kwargs)
        except (HexellsError, NotImplementedError, RecursionError):
            raise
        except RuntimeError as exc:
            self._lost = str(exc)
            log.error("Device lost during %s(): %s", method.__name__, exc)
            raise DeviceLostError(str(exc)) from exc

    return wrapper


class CellularAutomata:
    """Grid of cells updated by learned per-cell rules."""

    def __init__(self, surface, model_asset, grid_size, debug_hook=None,
                 on_ready=None, *, fire_rate=None, alive_threshold=None,
                 disturb_scale=None, seed=None, device=None):
        """
        Args:
            surface: Optional callable receiving each drawn (h, w, 3) uint8 frame
            model_asset: Decoded asset record (see ModelBank.load)
            grid_size: (width, height) in cells, or one int for a square grid
            debug_hook: Optional callable(engine, slider_defs) to expose
                tunable parameters to a settings surface
            on_ready: Optional callable(engine), fired once resources exist
            fire_rate: Per-step firing probability
            alive_threshold: Liveness threshold on the alive channel
            disturb_scale: Std of the noise added by disturb()
            seed: Seed for the fire mask and disturb noise streams
            device: torch device; defaults to the best available one

        Raises:
            AssetFormatError, UnsupportedModelCountError: bad asset
            ValueError: grid incompatible with the asset's topology
        """
        self._destroyed = False
        self._lost = None

        # Fail before allocating anything
        self.bank = ModelBank.load(model_asset)
        if isinstance(grid_size, int):
            grid_size = (grid_size, grid_size)
        width, height = int(grid_size[0]), int(grid_size[1])
        check_grid(self.bank.neighborhood, width, height)

        self.device = torch.device(device) if device is not None else resolve_device()
        self.surface = surface

        fire_rate = ENGINE_DEFAULTS["fire_rate"] if fire_rate is None else fire_rate
        alive_threshold = (ENGINE_DEFAULTS["alive_threshold"]
                           if alive_threshold is None else alive_threshold)
        disturb_scale = (ENGINE_DEFAULTS["disturb_scale"]
                         if disturb_scale is None else disturb_scale)
        _check_probability("fire_rate", fire_rate)

        self.field = StateField(width, height, self.bank.channel_n, self.device)
        self.field.reset(0.0)
        self.updater = UpdateStage(self.bank, self.device, fire_rate=fire_rate,
                                   alive_threshold=alive_threshold, seed=seed)
        self.editor = EditStage(self.bank, self.device,
                                alive_threshold=alive_threshold,
                                disturb_scale=disturb_scale,
                                seed=None if seed is None else seed + 1)
        self.renderer = RenderStage(self.bank, self.device,
                                    alive_threshold=alive_threshold)

        log.info("Engine ready: %dx%d grid, %d models on %s",
                 width, height, self.bank.count(), self.device)
        if debug_hook is not None:
            debug_hook(self, self.get_slider_defs())
        if on_ready is not None:
            on_ready(self)

    # ------------------------------------------------------------ info

    @property
    def model_names(self):
        return self.bank.names()

    @property
    def model_count(self):
        return self.bank.count()

    @property
    def grid_size(self):
        return (self.field.width, self.field.height)

    @property
    def generation(self):
        return self.updater.step_count

    @property
    def destroyed(self):
        return self._destroyed

    # ------------------------------------------------------------ passes

    @_device_call
    def step(self):
        """Advance one asynchronous update and make it current."""
        self.updater.run(self.field)
        self.field.swap()

    def step_n(self, n):
        for _ in range(n):
            self.step()

    @_device_call
    def draw(self, view_size, mode="color"):
        """Render the current buffer at view_size (physical pixels)."""
        rgb = self.renderer.draw(self.field, view_size, mode)
        if self.surface is not None:
            self.surface(rgb)
        return rgb

    @_device_call
    def paint(self, x, y, radius, model_id):
        self.editor.paint(self.field, x, y, radius, model_id)

    @_device_call
    def clear_circle(self, x, y, radius, view_size):
        if radius < 0:
            raise ValueError(f"radius must be >= 0, got {radius}")
        self.editor.clear_circle(self.field, x, y, radius, view_size,
                                 hex_offset=self.renderer.hex_offset)

    @_device_call
    def disturb(self):
        self.editor.disturb(self.field)

    # ------------------------------------------------------------ state access

    @_device_call
    def read_state(self):
        """Copy of the current buffer as numpy arrays (state, selector)."""
        buf = self.field.current_buffer()
        return buf.state.cpu().numpy().copy(), buf.selector.cpu().numpy().copy()

    @property
    def stats(self):
        if self._destroyed:
            raise EngineDestroyedError("stats read after destroy()")
        buf = self.field.current_buffer()
        alive = alive_mask(buf.state, self.bank.alive_channel, self.bank.neighborhood,
                           self.updater.alive_threshold)
        counts = torch.bincount(buf.selector[alive].long(),
                                minlength=self.bank.count()).tolist()
        total = self.field.width * self.field.height
        return {
            "generation": self.generation,
            "alive": int(alive.sum()),
            "alive_pct": float(alive.sum()) / total * 100,
            "models": dict(zip(self.bank.names(), counts)),
        }

    # ------------------------------------------------------------ tuning

    def set_params(self, fire_rate=None, alive_threshold=None, disturb_scale=None, **_kw):
        if self._destroyed:
            raise EngineDestroyedError("set_params() called after destroy()")
        if fire_rate is not None:
            _check_probability("fire_rate", fire_rate)
            self.updater.fire_rate = fire_rate
        if alive_threshold is not None:
            self.updater.alive_threshold = alive_threshold
            self.editor.alive_threshold = alive_threshold
            self.renderer.alive_threshold = alive_threshold
        if disturb_scale is not None:
            self.editor.disturb_scale = disturb_scale

    def get_params(self):
        return {
            "fire_rate": self.updater.fire_rate,
            "alive_threshold": self.updater.alive_threshold,
            "disturb_scale": self.editor.disturb_scale,
        }

    @classmethod
    def get_slider_defs(cls):
        return engine_slider_defs()

    # ------------------------------------------------------------ teardown

    def destroy(self):
        """Release buffers and parameters. Further calls raise EngineDestroyedError."""
        if self._destroyed:
            raise EngineDestroyedError("destroy() called twice")
        self.updater.release()
        self.editor.release()
        self.renderer.release()
        self.field.release()
        self.surface = None
        self._destroyed = True
        log.info("Engine destroyed")


def _check_probability(name, value):
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")
