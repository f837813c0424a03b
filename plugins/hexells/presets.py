"""
Engine and Host Defaults

Tunable values for the simulation engine and the interactive host, in one
place. The engine reads ENGINE_DEFAULTS, the session/viewer read
HOST_DEFAULTS. Device selection honors a power preference the same way a
browser canvas context would.
"""

import torch


ENGINE_DEFAULTS = {
    "fire_rate": 0.5,         # per-step chance a cell applies its delta
    "alive_threshold": 0.1,   # neighborhood max of the alive channel
    "disturb_scale": 0.1,     # std of hidden-channel noise in disturb()
}

HOST_DEFAULTS = {
    "brush_radius": 16,       # display pixels
    "step_per_frame": 1,
    "time_per_model": 20.0,   # seconds between automatic model switches
    "fps": 25,
    "responsive": False,      # interactive input vs. slideshow mode
    "grid_size": (160, 160),
    "power_preference": "default",
}

POWER_PREFERENCES = ("high-performance", "low-power", "default")

# Gesture classification (display pixels / seconds)
SWIPE_MIN_DISTANCE = 200
SWIPE_MAX_CROSS_RATIO = 0.25
SWIPE_MAX_DURATION = 1.0


def validate_power_preference(preference):
    if preference not in POWER_PREFERENCES:
        raise ValueError(f"Invalid power_preference: {preference!r}. "
                         f"Expected one of {POWER_PREFERENCES}")
    return preference


def resolve_device(preference="default"):
    """Pick a torch device for a power preference.

    "low-power" always stays on the CPU. The other preferences take the
    first available accelerator (CUDA, then MPS) and fall back to CPU.
    """
    validate_power_preference(preference)
    if preference == "low-power":
        return torch.device("cpu")
    if torch.cuda.is_available():
        return torch.device("cuda")
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


def engine_slider_defs():
    """Live-tunable engine parameters, in control-panel slider format."""
    return [
        {"key": "fire_rate", "label": "Fire rate", "section": "UPDATE",
         "min": 0.0, "max": 1.0, "default": ENGINE_DEFAULTS["fire_rate"],
         "fmt": ".2f"},
        {"key": "alive_threshold", "label": "Alive threshold", "section": "UPDATE",
         "min": 0.0, "max": 1.0, "default": ENGINE_DEFAULTS["alive_threshold"],
         "fmt": ".2f"},
        {"key": "disturb_scale", "label": "Disturb", "section": "EDIT",
         "min": 0.0, "max": 1.0, "default": ENGINE_DEFAULTS["disturb_scale"],
         "fmt": ".2f"},
    ]


def host_slider_defs():
    """Host-level controls exposed in responsive mode."""
    return [
        {"key": "brush_radius", "label": "Brush radius", "section": "INPUT",
         "min": 1, "max": 40, "default": HOST_DEFAULTS["brush_radius"],
         "fmt": ".0f"},
        {"key": "step_per_frame", "label": "Steps / frame", "section": "SPEED",
         "min": 0, "max": 6, "default": HOST_DEFAULTS["step_per_frame"],
         "fmt": ".0f", "step": 1},
    ]
