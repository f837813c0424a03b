"""
Render Stage - projects the current buffer to an RGB image

The field is stretched over the whole view with nearest-cell sampling.
On hex grids odd rows are drawn half a cell to the right, matching the
neighbor layout. The same cell-center mapping is used by clear_circle()
so erasing lands exactly where the user sees the cells.

Modes:
  color   visible channels as RGB
  alive   alive channel as grayscale
  model   selector mapped through a colormap, dead cells dimmed (same
          liveness rule as the update pass)
  hidden  first three hidden channels squashed through a sigmoid
"""

import numpy as np
import torch

from .colormaps import get_colormap
from .errors import UnsupportedRenderModeError
from .topology import alive_mask

RENDER_MODES = ("color", "alive", "model", "hidden")


def _check_view(view_size):
    w, h = int(view_size[0]), int(view_size[1])
    if w <= 0 or h <= 0:
        raise ValueError(f"view size must be positive, got {view_size}")
    return w, h


def cell_centers(width, height, view_size, hex_offset=False, device=None):
    """Display-space (x, y) centers of every cell, each (height, width)."""
    vw, vh = _check_view(view_size)
    rows = torch.arange(height, device=device, dtype=torch.float32)
    cols = torch.arange(width, device=device, dtype=torch.float32)
    gy, gx = torch.meshgrid(rows, cols, indexing="ij")
    if hex_offset:
        gx = gx + 0.5 * (gy % 2)
    return (gx + 0.5) * vw / width, (gy + 0.5) * vh / height


def _sample_index(width, height, view_size, hex_offset, device):
    """Row and column of the cell under each display pixel."""
    vw, vh = _check_view(view_size)
    py = torch.arange(vh, device=device, dtype=torch.float32)
    px = torch.arange(vw, device=device, dtype=torch.float32)
    rows = ((py + 0.5) * height / vh).floor().long().clamp_(0, height - 1)
    fx = (px + 0.5) * width / vw
    if hex_offset:
        shift = 0.5 * (rows % 2).to(torch.float32)
        cols = (fx[None, :] - shift[:, None]).floor().long() % width
    else:
        cols = fx.floor().long().clamp_(0, width - 1)[None, :].expand(vh, vw)
    return rows[:, None].expand(vh, vw), cols


class RenderStage:

    def __init__(self, bank, device, hex_offset=None, alive_threshold=0.1):
        self.bank = bank
        self.device = torch.device(device)
        self.alive_threshold = alive_threshold
        self.hex_offset = (bank.neighborhood == "hex") if hex_offset is None else hex_offset
        self._index_cache = {}
        lut = get_colormap("model_wheel", bank.count())
        self._model_lut = torch.from_numpy(lut).to(self.device)

    def _index(self, field, view_size):
        key = (int(view_size[0]), int(view_size[1]))
        if key not in self._index_cache:
            # View sizes change rarely (window resize); keep the last few
            if len(self._index_cache) > 4:
                self._index_cache.clear()
            self._index_cache[key] = _sample_index(
                field.width, field.height, key, self.hex_offset, self.device)
        return self._index_cache[key]

    def _project(self, buf, mode):
        state = buf.state
        if mode == "color":
            rgb = state[:self.bank.visible_n].clamp(0.0, 1.0)
            if rgb.shape[0] < 3:
                pad = torch.zeros(3 - rgb.shape[0], *rgb.shape[1:], device=rgb.device)
                rgb = torch.cat([rgb, pad])
            return (rgb.permute(1, 2, 0) * 255.0).round().to(torch.uint8)
        if mode == "alive":
            gray = state[self.bank.alive_channel].clamp(0.0, 1.0)
            return (gray * 255.0).round().to(torch.uint8)[..., None].expand(-1, -1, 3)
        if mode == "model":
            colors = self._model_lut[buf.selector.long()]
            alive = alive_mask(state, self.bank.alive_channel, self.bank.neighborhood,
                               self.alive_threshold)
            dim = torch.where(alive, 255, 64).to(torch.int32)[..., None]
            return (colors.to(torch.int32) * dim // 255).to(torch.uint8)
        if mode == "hidden":
            hidden = self.bank.hidden_channels[:3]
            if not hidden:
                return torch.zeros(*state.shape[1:], 3, dtype=torch.uint8,
                                   device=state.device)
            h = torch.sigmoid(state[hidden])
            if h.shape[0] < 3:
                h = torch.cat([h, h[-1:].expand(3 - h.shape[0], -1, -1)])
            return (h.permute(1, 2, 0) * 255.0).round().to(torch.uint8)
        raise UnsupportedRenderModeError(
            f"Unsupported render mode: {mode!r}. Expected one of {RENDER_MODES}")

    @torch.no_grad()
    def draw(self, field, view_size, mode="color"):
        """Return the current buffer as a (view_h, view_w, 3) uint8 array."""
        if mode not in RENDER_MODES:
            raise UnsupportedRenderModeError(
                f"Unsupported render mode: {mode!r}. Expected one of {RENDER_MODES}")
        rows, cols = self._index(field, view_size)
        cell_rgb = self._project(field.current_buffer(), mode)
        return np.ascontiguousarray(cell_rgb[rows, cols].cpu().numpy())

    def release(self):
        self._index_cache.clear()
        self._model_lut = None
