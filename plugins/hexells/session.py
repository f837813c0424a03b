"""
Host Session - the interactive shell around the engine

Everything the original browser shell did besides drawing pixels:
presentation order of the models, swipe gestures, brush erasing, the
slideshow timer and the per-frame step/draw cadence. It has no pygame
dependency, so the viewer and the headless CLI share it.
"""

import logging
import random
import time

from .presets import (
    HOST_DEFAULTS, SWIPE_MAX_CROSS_RATIO, SWIPE_MAX_DURATION, SWIPE_MIN_DISTANCE,
    host_slider_defs, validate_power_preference,
)

log = logging.getLogger(__name__)


class Gesture:
    """Accumulated drag distance per direction since the pointer went down."""

    def __init__(self, pos, start_time):
        self.prev_pos = pos
        self.start_time = start_time
        self.left = 0.0
        self.right = 0.0
        self.up = 0.0
        self.down = 0.0

    def move(self, pos):
        x, y = pos
        x0, y0 = self.prev_pos
        self.left += max(x0 - x, 0)
        self.right += max(x - x0, 0)
        self.up += max(y0 - y, 0)
        self.down += max(y - y0, 0)
        self.prev_pos = pos

    def swipe(self, now):
        """-1 for a left swipe, +1 for a right swipe, 0 otherwise."""
        if now - self.start_time >= SWIPE_MAX_DURATION:
            return 0
        l, r, u, d = self.left, self.right, self.up, self.down
        if l > SWIPE_MIN_DISTANCE and max(r, u, d) < l * SWIPE_MAX_CROSS_RATIO:
            return -1
        if r > SWIPE_MIN_DISTANCE and max(l, u, d) < r * SWIPE_MAX_CROSS_RATIO:
            return 1
        return 0


class Session:

    def __init__(self, engine, options=None, rng=None, clock=time.monotonic):
        """
        Args:
            engine: A ready CellularAutomata
            options: Overrides for HOST_DEFAULTS
            rng: random.Random used to shuffle the model order
            clock: Time source in seconds
        """
        opts = dict(HOST_DEFAULTS)
        opts.update(options or {})
        unknown = set(opts) - set(HOST_DEFAULTS)
        if unknown:
            raise ValueError(f"Unknown session options: {sorted(unknown)}")
        validate_power_preference(opts["power_preference"])

        self.engine = engine
        self.brush_radius = opts["brush_radius"]
        self.step_per_frame = int(opts["step_per_frame"])
        self.time_per_model = float(opts["time_per_model"])
        self.responsive = bool(opts["responsive"])
        self.fps = opts["fps"]
        self.rng = rng or random.Random()
        self.clock = clock

        self.shuffled_model_ids = []
        self.cur_model_index = 0
        self.model_id = None
        self.gesture = None
        self._last_switch = None

    @property
    def model_name(self):
        return self.engine.model_names[self.model_id]

    @property
    def slider_defs(self):
        """Host controls for a settings surface (responsive mode only)."""
        return host_slider_defs() if self.responsive else []

    def setup(self):
        """Shuffle the presentation order and seed the first model."""
        ids = list(range(self.engine.model_count))
        self.rng.shuffle(ids)
        self.shuffled_model_ids = ids
        self.cur_model_index = 0
        self.model_id = ids[0]
        self.engine.paint(0, 0, -1, self.model_id)
        self._last_switch = self.clock()
        self.gesture = None

    # ------------------------------------------------------------ models

    def switch_model(self, swipe):
        n = len(self.shuffled_model_ids)
        self.cur_model_index = (self.cur_model_index + n + swipe) % n
        self.set_model(self.shuffled_model_ids[self.cur_model_index])

    def set_model(self, model_id):
        self.engine.paint(0, 0, -1, model_id)
        self.engine.disturb()
        self.model_id = model_id
        self._last_switch = self.clock()
        log.info("Model %d (%s)", model_id, self.model_name)

    def tick(self):
        """Slideshow mode: advance to the next model when its time is up."""
        if self.responsive or self._last_switch is None:
            return False
        if self.clock() - self._last_switch >= self.time_per_model:
            self.switch_model(1)
            return True
        return False

    # ------------------------------------------------------------ gestures

    def start_gesture(self, pos):
        self.gesture = Gesture(pos, self.clock())

    def cancel_gesture(self):
        self.gesture = None

    def touch(self, pos, view_size):
        """Pointer moved while pressed: track the gesture and erase under it."""
        if self.gesture is not None:
            self.gesture.move(pos)
        self.engine.clear_circle(pos[0], pos[1], self.brush_radius, view_size)

    def end_gesture(self):
        if self.gesture is None:
            return 0
        swipe = self.gesture.swipe(self.clock())
        self.gesture = None
        if swipe:
            self.switch_model(swipe)
        return swipe

    # ------------------------------------------------------------ frames

    def frame(self, view_size, dpr=1.0, mode="color"):
        """Run this frame's steps and render at physical resolution."""
        self.tick()
        for _ in range(self.step_per_frame):
            self.engine.step()
        w, h = view_size
        return self.engine.draw((round(w * dpr), round(h * dpr)), mode)

    def set_params(self, brush_radius=None, step_per_frame=None, **_kw):
        if brush_radius is not None:
            self.brush_radius = brush_radius
        if step_per_frame is not None:
            self.step_per_frame = int(step_per_frame)

    def destroy(self):
        self.gesture = None
        self.engine.destroy()
