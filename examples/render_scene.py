#!/usr/bin/env python3
"""Render one of the predefined scenes, as a still or an orbit animation.

Usage:
    python examples/render_scene.py SCENE [options]

Scenes:
    1, spheres   Glass, metal and diffuse spheres under a sky gradient
    2, cornell   The Cornell box
    3, balls     A thousand diffuse balls with depth of field

Options:
    --animate           Render a full camera orbit instead of a still
    --frames N          Number of frames in the orbit (default: 120)
    --width WIDTH       Image width in pixels (default: scene default)
    --height HEIGHT     Image height in pixels (default: scene default)
    --samples SAMPLES   Samples per pixel (default: scene default)
    --max-depth DEPTH   Maximum ray segments per path (default: 50)
    --seed SEED         Global random seed (default: 0)
    --workers N         CPU worker threads (default: all cores)
    --output PATH       Output file, or directory for --animate
    --format {png,ppm}  Output format (default: png)
    -v / -q             More / less logging

Example:
    python examples/render_scene.py cornell --width 256 --height 256 --samples 64
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

logger = logging.getLogger("render_scene")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render a predefined scene with the path tracer.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("scene", help="Scene to render: 1/spheres, 2/cornell or 3/balls")
    parser.add_argument("--animate", action="store_true", help="Render a camera orbit")
    parser.add_argument("--frames", type=int, default=120, help="Frames in the orbit (default: 120)")
    parser.add_argument("--width", type=int, default=None, help="Image width in pixels")
    parser.add_argument("--height", type=int, default=None, help="Image height in pixels")
    parser.add_argument("--samples", type=int, default=None, help="Samples per pixel")
    parser.add_argument("--max-depth", type=int, default=50, help="Max ray segments (default: 50)")
    parser.add_argument("--seed", type=int, default=0, help="Global random seed (default: 0)")
    parser.add_argument("--workers", type=int, default=None, help="CPU worker threads")
    parser.add_argument(
        "--batch-size", type=int, default=10, help="Samples per progress update (default: 10)"
    )
    parser.add_argument("--output", type=str, default=None, help="Output file or directory")
    parser.add_argument("--format", choices=("png", "ppm"), default="png", help="Output format")
    parser.add_argument(
        "--tone-map",
        choices=("none", "reinhard", "exposure"),
        default="none",
        help="Tone mapping operator (default: none)",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    return parser.parse_args(argv)


def configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def run(args: argparse.Namespace) -> Path:
    """Render the requested scene and write the output.

    Returns:
        The output file (still) or directory (animation).
    """
    from pathtracer.config import PRESETS, RenderConfig, init_taichi, resolve_preset_name

    name = resolve_preset_name(args.scene)
    info = PRESETS[name]

    config = RenderConfig(
        width=args.width or info.width,
        height=args.height or info.height,
        samples_per_pixel=args.samples or info.samples_per_pixel,
        max_depth=args.max_depth,
        seed=args.seed,
        num_workers=args.workers,
        batch_size=args.batch_size,
        tone_map=args.tone_map,
    )
    init_taichi(config)

    # Modules holding Taichi fields are imported after ti.init()
    from pathtracer.core.renderer import FrameBuffer, render_animation, render_frame
    from pathtracer.preview.export import frame_path, save_png, save_ppm
    from pathtracer.scene.presets import create_spheres_scene, get_preset

    save = save_png if args.format == "png" else save_ppm

    def write(frame: FrameBuffer, path: Path) -> None:
        save(frame, path, tone_map=config.tone_map, gamma=config.gamma, exposure=config.exposure)

    if args.animate and name == "spheres":
        scene, camera, background = create_spheres_scene(config.aspect_ratio, orbit=True)
    else:
        scene, camera, background = get_preset(name, config.aspect_ratio)

    start = time.perf_counter()
    if args.animate:
        out_dir = Path(args.output or "frames")

        def sink(index: int, frame: FrameBuffer) -> None:
            write(frame, frame_path(out_dir, index, args.format))

        count = render_animation(
            scene,
            camera,
            config,
            args.frames,
            sink,
            pivot=info.orbit_pivot,
            background=background,
        )
        logger.info("Wrote %d frames to %s", count, out_dir.absolute())
        output = out_dir
    else:
        output = Path(args.output or f"{name}.{args.format}")

        def progress(current: int, target: int) -> None:
            logger.debug("%d/%d samples", current, target)

        frame = render_frame(scene, camera, config, background=background, callback=progress)
        write(frame, output)
        logger.info("Saved to %s", output.absolute())

    logger.info("Total time: %.2fs", time.perf_counter() - start)
    return output


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    try:
        run(args)
    except Exception:
        logger.exception("Render failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
