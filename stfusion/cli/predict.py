"""
Predict Command - Fuse low and high resolution images.

Usage:
    stfusion predict --high 1=h1.tif --low 1=l1.tif --low 2=l2.tif \\
        --pair 1 --date 2 --output predicted_2.tif
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import click

from stfusion.core.exceptions import FusionError
from stfusion.core.raster import Rectangle

logger = logging.getLogger("stfusion.predict")


def parse_image_spec(value: str) -> Tuple[int, Path]:
    """Parse ``DATE=PATH``."""
    date, sep, path = value.partition("=")
    if not sep or not path:
        raise click.BadParameter(f"Expected DATE=PATH, got {value!r}")
    try:
        return int(date), Path(path)
    except ValueError:
        raise click.BadParameter(f"Date must be an integer in {value!r}")


@click.command("predict")
@click.option(
    "--algorithm",
    "-a",
    type=click.Choice(["starfm", "estarfm"], case_sensitive=False),
    default=None,
    help="Fusion algorithm (default: from configuration, starfm).",
)
@click.option("--high", "high_specs", multiple=True, required=True, help="High resolution image as DATE=PATH.")
@click.option("--low", "low_specs", multiple=True, required=True, help="Low resolution image as DATE=PATH.")
@click.option("--pair", "pair_dates", type=int, multiple=True, required=True, help="Reference date (one or two).")
@click.option("--date", "-d", "target_date", type=int, required=True, help="Date to predict.")
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(path_type=Path),
    required=True,
    help="Output GeoTIFF.",
)
@click.option("--threads", "-t", type=int, default=None, help="Number of worker threads.")
@click.option("--window-size", "-w", type=int, default=None, help="Search window width (odd).")
@click.option("--classes", "number_classes", type=float, default=None, help="Number of brightness classes.")
@click.option("--area", type=str, default=None, help="Prediction area as x,y,width,height.")
@click.option(
    "--mask",
    "mask_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Mask image of the prediction area (non-zero = predict).",
)
@click.option(
    "--copy-on-zero-diff",
    is_flag=True,
    default=False,
    help="Copy reference values where the low resolution image did not change.",
)
@click.pass_obj
def predict(
    ctx,
    algorithm: Optional[str],
    high_specs: Tuple[str, ...],
    low_specs: Tuple[str, ...],
    pair_dates: Tuple[int, ...],
    target_date: int,
    output_path: Path,
    threads: Optional[int],
    window_size: Optional[int],
    number_classes: Optional[float],
    area: Optional[str],
    mask_path: Optional[Path],
    copy_on_zero_diff: bool,
):
    """
    Predict a high resolution image at a target date.

    \b
    Examples:
        # Single pair STARFM
        stfusion predict --high 1=h1.tif --low 1=l1.tif --low 2=l2.tif \\
            --pair 1 --date 2 --output h2.tif

        # Double pair ESTARFM on 4 threads
        stfusion predict -a estarfm --high 1=h1.tif --high 3=h3.tif \\
            --low 1=l1.tif --low 2=l2.tif --low 3=l3.tif \\
            --pair 1 --pair 3 --date 2 --threads 4 --output h2.tif
    """
    from stfusion.execution.parallelizer import Parallelizer
    from stfusion.fusion.estarfm import EstarfmFusor
    from stfusion.fusion.starfm import StarfmFusor
    from stfusion.io.geotiff import load_store, read_raster, write_raster

    config = ctx.config
    if algorithm:
        config.algorithm = algorithm.lower()
    if threads is not None:
        config.parallel.number_of_threads = threads
    if window_size is not None:
        config.window_size = window_size
    if number_classes is not None:
        config.number_classes = number_classes
    if copy_on_zero_diff:
        config.copy_on_zero_diff = True

    prediction_area = None
    if area:
        try:
            prediction_area = Rectangle.from_string(area)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--area")

    entries: List[Tuple[str, int, Path]] = []
    for spec in high_specs:
        date, path = parse_image_spec(spec)
        entries.append((config.high_tag, date, path))
    for spec in low_specs:
        date, path = parse_image_spec(spec)
        entries.append((config.low_tag, date, path))

    click.echo(f"\n=== Prediction: {config.algorithm.upper()} ===")
    click.echo(f"  Pair dates: {list(pair_dates)}")
    click.echo(f"  Target date: {target_date}")
    click.echo(f"  Output: {output_path}")

    try:
        store, profile = load_store(entries)
        parallel_options = config.build_parallel_options(pair_dates, prediction_area)

        fusor = StarfmFusor() if config.algorithm == "starfm" else EstarfmFusor()
        driver = Parallelizer(fusor)
        driver.set_source_store(store)
        driver.configure(parallel_options)

        mask = None
        if mask_path is not None:
            mask_raster, _ = read_raster(mask_path)
            mask = mask_raster.data != 0

        result = driver.predict(target_date, mask)
        write_raster(output_path, result, profile, area=prediction_area)
    except FusionError as e:
        logger.error(f"Prediction failed: {e}")
        raise click.ClickException(str(e))

    click.echo(f"  Threads: {parallel_options.number_of_threads}")
    click.echo(f"  Size: {result.width}x{result.height}, {result.channels} channel(s)")
    click.echo("\nDone.")
