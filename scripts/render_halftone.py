#!/usr/bin/env python3
"""Render a photograph as a halftone (PNG and/or SVG).

CLI wrapper around HalftoneEngine: decodes the image with PIL, loads the
render settings and engine config from YAML, and writes outputs atomically.

Usage:
    # CMYK PNG with the default screens
    python scripts/render_halftone.py --image photo.jpg --output_dir outputs/halftone

    # Hex dots, coarser screen, plus SVG and a 2x print raster
    python scripts/render_halftone.py --image photo.jpg --pattern hex --frequency 30 \
        --svg --print --output_dir outputs/halftone

    # Duotone from a settings file, grid sampler only
    python scripts/render_halftone.py --image photo.jpg --settings my_duotone.yaml --backend grid

Outputs:
    - <prefix>.png: RGBA halftone at source resolution
    - <prefix>_print.png: upscaled raster (--print)
    - <prefix>.svg: vector screen (--svg)
    - <prefix>_metadata.yaml: settings, backend and timings
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from src.halftone_engine import HalftoneEngine, HalftoneError
from src.halftone_engine.pattern_field import PATTERNS
from src.utils import fs, logging_config, validators

DEFAULT_SETTINGS = Path(__file__).resolve().parent.parent / "configs" / "settings.default.yaml"
DEFAULT_ENGINE = Path(__file__).resolve().parent.parent / "configs" / "engine.v1.yaml"


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render a halftone reproduction of an image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--image', type=str, required=True, help='Source image path')
    parser.add_argument('--settings', type=str, default=str(DEFAULT_SETTINGS),
                        help='Render settings YAML')
    parser.add_argument('--engine_config', type=str, default=str(DEFAULT_ENGINE),
                        help='Engine config YAML (engine.v1)')

    # Overrides
    parser.add_argument('--pattern', type=str, choices=PATTERNS, help='Dot pattern')
    parser.add_argument('--color_mode', type=str, choices=['cmyk', 'mono', 'duotone', 'tritone'],
                        help='Color mode')
    parser.add_argument('--frequency', type=float, help='Cells across width, all channels')
    parser.add_argument('--size', type=float, help='Dot size percent, all channels')
    parser.add_argument('--transparent', action='store_true', help='Transparent background')
    parser.add_argument('--backend', type=str, choices=['auto', 'field', 'grid'],
                        help='Override engine backend')

    # Outputs
    parser.add_argument('--output_dir', type=str, default='outputs/halftone', help='Output directory')
    parser.add_argument('--prefix', type=str, default='halftone', help='Output filename prefix')
    parser.add_argument('--no_png', action='store_true', help='Skip the source-resolution PNG')
    parser.add_argument('--print', dest='print_res', action='store_true',
                        help='Also write the upscaled print raster')
    parser.add_argument('--svg', action='store_true', help='Also write the SVG')

    # Logging
    parser.add_argument('--log_level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--log_file', type=str, default=None, help='Optional log file')
    parser.add_argument('--log_json', action='store_true', help='JSON lines in the log file')
    return parser.parse_args(argv)


def build_settings(args) -> validators.Settings:
    """Load the settings file and apply command-line overrides."""
    settings = validators.load_settings(args.settings)
    overrides = {}
    if args.pattern:
        overrides['pattern'] = args.pattern
    if args.color_mode:
        overrides['color_mode'] = args.color_mode
    if args.transparent:
        overrides['transparent_bg'] = True
    if overrides:
        data = settings.model_dump()
        data.update(overrides)
        settings = validators.Settings.model_validate(data)
    if args.frequency is not None or args.size is not None:
        settings = settings.with_global(frequency=args.frequency, size=args.size)
    return settings


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    logging_config.setup_logging(
        log_level=args.log_level,
        log_file=args.log_file,
        json=args.log_json,
        quiet_libs=['PIL'],
        context={'app': 'render'}
    )
    logging_config.install_excepthook()
    logger = logging.getLogger(__name__)

    try:
        settings = build_settings(args)
        engine_cfg = validators.load_engine_config(args.engine_config)
        if args.backend:
            engine_cfg = engine_cfg.model_copy(update={'backend': args.backend})
        image = fs.load_image_rgba(args.image)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 2

    output_dir = fs.ensure_dir(args.output_dir)
    logger.info(f"Source {args.image}: {image.shape[1]}x{image.shape[0]} px")
    logger.info(f"Pattern {settings.pattern}, mode {settings.color_mode}")

    timings = {}
    try:
        engine = HalftoneEngine(image, engine_cfg)

        if not args.no_png or args.print_res:
            start = time.perf_counter()
            raster = engine.render(settings)
            timings['render_s'] = time.perf_counter() - start

        if not args.no_png:
            png_path = output_dir / f"{args.prefix}.png"
            fs.atomic_save_image(raster, png_path)
            logger.info(f"Saved raster: {png_path}")

        if args.print_res:
            start = time.perf_counter()
            print_raster = engine.upscale_for_print(raster)
            timings['print_s'] = time.perf_counter() - start
            print_path = output_dir / f"{args.prefix}_print.png"
            fs.atomic_save_image(print_raster, print_path)
            logger.info(f"Saved print raster ({print_raster.shape[1]}x{print_raster.shape[0]}): {print_path}")

        if args.svg:
            start = time.perf_counter()
            svg = engine.export_svg(settings)
            timings['svg_s'] = time.perf_counter() - start
            svg_path = output_dir / f"{args.prefix}.svg"
            fs.atomic_write_text(svg_path, svg)
            logger.info(f"Saved SVG: {svg_path}")
    except HalftoneError as e:
        logger.error(f"Render failed: {e}")
        return 1

    metadata = {
        'source': str(args.image),
        'size_px': [int(image.shape[1]), int(image.shape[0])],
        'backend': engine.backend_name,
        'settings': settings.model_dump(mode='json'),
        'timings': {k: round(v, 4) for k, v in timings.items()},
    }
    fs.atomic_yaml_dump(metadata, output_dir / f"{args.prefix}_metadata.yaml")
    logging_config.shutdown()
    return 0


if __name__ == '__main__':
    sys.exit(main())
