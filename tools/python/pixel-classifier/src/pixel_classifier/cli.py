"""
Pixel Classifier — CLI Entry Point
===================================
Exposes :class:`~pixel_classifier.tool.PixelClassifierTool` as the
``geo-cloudscreen`` command.

Usage::

    geo-cloudscreen \\
        --bands-dir scene/ \\
        --sensor meris \\
        --start 2011-07-01T10:02:00 --stop 2011-07-01T10:45:00 \\
        --buffer-policy adaptive \\
        --diagnostics \\
        --output output/cloudscreen

Run ``geo-cloudscreen --help`` for the full option list.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import click

from shared.python.exceptions import CloudScreenError
from pixel_classifier.composite import NN_MODES
from pixel_classifier.config import SENSOR_DEFAULTS, ClassifierConfig, load_config
from pixel_classifier.consolidation import BUFFER_POLICIES
from pixel_classifier.tool import FLAGS_FILENAME, PixelClassifierTool

logger = logging.getLogger("cloudscreen.pixel_classifier.cli")


def _build_config(
    config_path: str | None,
    sensor: str | None,
    overrides: dict[str, object],
) -> ClassifierConfig:
    """Config file (or sensor defaults) with command-line overrides on top."""
    if config_path:
        config = load_config(config_path)
        if sensor and sensor != config.sensor:
            data = config.to_dict()
            data.pop("thresholds")
            config = ClassifierConfig.from_dict({**data, "sensor": sensor})
    else:
        config = ClassifierConfig.for_sensor(sensor or "meris")
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
    config.validate()
    return config


@click.command("geo-cloudscreen")
@click.option(
    "--bands-dir",
    "bands_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Directory with one <channel>.tif per input channel.",
)
@click.option(
    "--sensor",
    type=click.Choice(sorted(SENSOR_DEFAULTS)),
    default=None,
    help="Indicator profile (default: meris, or the config file's sensor).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON configuration file.",
)
@click.option(
    "--start",
    type=click.DateTime(),
    default=None,
    help="Scene start time (needed by seasonal NN layouts).",
)
@click.option(
    "--stop",
    type=click.DateTime(),
    default=None,
    help="Scene stop time.",
)
@click.option(
    "--buffer-policy",
    type=click.Choice(BUFFER_POLICIES),
    default=None,
    help="Cloud buffer policy.",
)
@click.option(
    "--buffer-width",
    type=int,
    default=None,
    help="Cloud buffer width in pixels (fixed policy).",
)
@click.option(
    "--nn-mode",
    type=click.Choice(NN_MODES),
    default=None,
    help="How an nn_score channel refines the composite flags.",
)
@click.option(
    "--tile-size",
    type=int,
    default=None,
    help="Tile edge length for consolidation.",
)
@click.option(
    "--workers",
    "max_workers",
    type=int,
    default=None,
    help="Number of worker threads.",
)
@click.option(
    "--diagnostics",
    "write_diagnostics",
    is_flag=True,
    default=False,
    help="Also write the indicator rasters (<name>_value.tif).",
)
@click.option(
    "--output",
    "output_dir",
    default="output",
    show_default=True,
    help="Directory for the output GeoTIFFs.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable DEBUG-level logging.",
)
def cli(
    bands_dir: str,
    sensor: str | None,
    config_path: str | None,
    start: datetime | None,
    stop: datetime | None,
    buffer_policy: str | None,
    buffer_width: int | None,
    nn_mode: str | None,
    tile_size: int | None,
    max_workers: int | None,
    write_diagnostics: bool,
    output_dir: str,
    verbose: bool,
) -> None:
    """Classify cloud, land, water and snow pixels of a satellite scene.

    Reads one GeoTIFF per channel from BANDS_DIR and writes the
    pixel_classif_flags.tif bitmask (plus optional diagnostics) to OUTPUT.

    \b
    Examples:
        # MERIS scene with default settings
        geo-cloudscreen --bands-dir scene/ --output out/

        # VGT scene, fixed 3-pixel buffer, diagnostics
        geo-cloudscreen --bands-dir vgt/ --sensor vgt \\
                        --buffer-policy fixed --buffer-width 3 --diagnostics
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    overrides: dict[str, object] = {
        "buffer_policy": buffer_policy,
        "buffer_width": buffer_width,
        "nn_mode": nn_mode,
        "tile_size": tile_size,
        "max_workers": max_workers,
        "write_diagnostics": write_diagnostics or None,
    }
    try:
        config = _build_config(config_path, sensor, overrides)
        tool = PixelClassifierTool(
            bands_dir=Path(bands_dir),
            output_dir=Path(output_dir),
            config=config,
            start=start,
            stop=stop,
            verbose=verbose,
        )
        tool.run()
    except CloudScreenError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"\nFlags written to: {Path(output_dir) / FLAGS_FILENAME}")
    if tool.results is not None:
        click.echo(f"  {tool.results.summary}")


if __name__ == "__main__":
    cli()
