"""
Hexells Viewer - Entry Point

Usage:
    python -m hexells [asset.json] [--size N|WxH] [--window WxH] [options]

Examples:
    python -m hexells models.json
    python -m hexells models.json --size 96 --window 1000x1000
    python -m hexells --demo 4 --snap 200
    python -m hexells models.json --list

Options:
    --size N|WxH       Grid size in cells (default 160x160)
    --window WxH       Window size in pixels (default 800x800)
    --demo N           Use N untrained random models instead of an asset
    --snap N           Headless: run N steps per model, save PNGs, exit
    --seed S           Seed the fire mask, noise and model order
    --slideshow        Switch models on a timer instead of by swipe/keys
    --power P          high-performance | low-power | default
    --log-level L      DEBUG, INFO, WARNING (default INFO)
    --list             Print the model names and exit
"""

import json
import logging
import os
import random
import sys

from .engine import CellularAutomata
from .errors import HexellsError
from .logging_config import setup_logging
from .model_bank import random_asset
from .presets import HOST_DEFAULTS, resolve_device
from .session import Session


def load_asset(path):
    """Read a JSON model asset from disk."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _parse_size(text):
    if "x" in text:
        w, h = text.split("x")
        return int(w), int(h)
    n = int(text)
    return n, n


def snap(engine, session, steps, view_size=(640, 640)):
    """Headless mode: grow every model for N steps and save a PNG of each."""
    from PIL import Image

    screenshots_dir = os.path.join(os.getcwd(), "screenshots")
    os.makedirs(screenshots_dir, exist_ok=True)

    for _ in range(len(session.shuffled_model_ids)):
        name = session.model_name
        print(f"  {name}: running {steps} steps...", end="", flush=True)
        engine.step_n(steps)
        rgb = engine.draw(view_size, "color")
        path = os.path.join(screenshots_dir, f"hexells_{name}.png")
        Image.fromarray(rgb).save(path)
        print(f" saved: {path}")
        session.switch_model(1)


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    asset_path = None
    grid_size = HOST_DEFAULTS["grid_size"]
    win_w, win_h = 800, 800
    demo_models = 0
    snap_steps = 0
    seed = None
    responsive = True
    power = HOST_DEFAULTS["power_preference"]
    log_level = "INFO"
    list_only = False

    i = 0
    while i < len(args):
        arg = args[i]
        has_value = i + 1 < len(args)
        if arg == "--size" and has_value:
            grid_size = _parse_size(args[i + 1])
            i += 2
        elif arg == "--window" and has_value:
            win_w, win_h = _parse_size(args[i + 1])
            i += 2
        elif arg == "--demo" and has_value:
            demo_models = int(args[i + 1])
            i += 2
        elif arg == "--snap" and has_value:
            snap_steps = int(args[i + 1])
            i += 2
        elif arg == "--seed" and has_value:
            seed = int(args[i + 1])
            i += 2
        elif arg == "--power" and has_value:
            power = args[i + 1]
            i += 2
        elif arg == "--log-level" and has_value:
            log_level = args[i + 1].upper()
            i += 2
        elif arg == "--slideshow":
            responsive = False
            i += 1
        elif arg == "--list":
            list_only = True
            i += 1
        elif arg in ("--help", "-h"):
            print(__doc__)
            return 0
        elif not arg.startswith("--") and asset_path is None:
            asset_path = arg
            i += 1
        else:
            print(f"Unknown argument: {arg}")
            print("Use --help to see the options")
            return 2

    setup_logging(getattr(logging, log_level, logging.INFO))

    if asset_path is None and demo_models <= 0:
        print("No model asset given. Pass asset.json or --demo N.")
        return 2

    try:
        if asset_path is not None:
            asset = load_asset(asset_path)
        else:
            asset = random_asset(n_models=demo_models, seed=seed)
        engine = CellularAutomata(None, asset, grid_size, seed=seed,
                                  device=resolve_device(power))
    except (OSError, ValueError, HexellsError) as e:
        print(f"Could not start: {e}")
        return 1

    if list_only:
        print("\nModels:")
        for model_id, name in enumerate(engine.model_names):
            print(f"  {model_id:3d}  {name}")
        print()
        engine.destroy()
        return 0

    session = Session(engine, {"responsive": responsive, "power_preference": power},
                      rng=random.Random(seed))
    session.setup()

    if snap_steps > 0:
        w, h = engine.grid_size
        print(f"Headless snap mode: {w}x{h}, {snap_steps} steps per model")
        snap(engine, session, snap_steps)
        session.destroy()
        return 0

    from .viewer import Viewer

    print("Starting Hexells Viewer")
    print(f"  Models: {engine.model_count}")
    print(f"  Grid: {grid_size[0]}x{grid_size[1]}")
    print(f"  Window: {win_w}x{win_h}")
    print()

    Viewer(session, width=win_w, height=win_h).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
