"""Command line entry point: build a season time series from GeoTIFF inputs."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from .config import ConfigurationError, RunConfig, RunPaths, load_run_config, load_run_paths
from .errors import BackendUnavailableError, InputValidationError
from .indices import available_indices
from .seasons.parcels import load_parcel_store
from .sources.base import SENTINEL1_FILTERS, sentinel2_filters
from .sources.geotiff import SENTINEL_SCALE_FACTOR, GeoTiffCompanionSource, GeoTiffRasterSource
from .timeseries import RunResult, TimeSeriesBuilder
from .zonal import Statistic

LOGGER = logging.getLogger(__name__)

FILTER_PRESETS = {
    "none": (),
    "sentinel1": SENTINEL1_FILTERS,
    "sentinel2": sentinel2_filters(),
}


def configure_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML run configuration. Command line options override its values.",
    )
    parser.add_argument("--parcels", type=Path, help="Parcel layer with one production column per year")
    parser.add_argument("--images-dir", type=Path, help="Directory of primary image GeoTIFFs")
    parser.add_argument(
        "--companions-dir",
        type=Path,
        help="Directory of cloud probability GeoTIFFs (optical indices only)",
    )
    parser.add_argument("--output", type=Path, help="Destination CSV with date,value columns")
    parser.add_argument(
        "--index",
        choices=list(available_indices()),
        help="Index to compute (default: NDVI)",
    )
    parser.add_argument("--start-year", type=int, help="First season start year")
    parser.add_argument(
        "--end-year",
        type=int,
        help="End of the year range; seasons run from start year to end year - 1",
    )
    parser.add_argument("--workers", type=int, help="Number of images processed in parallel")
    parser.add_argument(
        "--statistic",
        choices=[s.value for s in Statistic],
        help="Zonal reduction over the cultivated parcels (default: mean)",
    )
    parser.add_argument(
        "--scale",
        type=float,
        help=f"Factor applied to image bands on read, e.g. {SENTINEL_SCALE_FACTOR} for L2A digital numbers",
    )
    parser.add_argument(
        "--filters",
        choices=sorted(FILTER_PRESETS),
        default="none",
        help="Metadata filter preset applied to every image query",
    )
    parser.add_argument("--parcel-id-column", help="Parcel attribute used as parcel id")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="crop-series",
        description="Build a vegetation or radar index time series over cultivated parcels.",
    )
    configure_parser(parser)
    args = parser.parse_args(argv)

    if args.config is None:
        if args.start_year is None or args.end_year is None:
            parser.error("Provide --start-year and --end-year, or a --config file with year_range.")
        missing = [
            flag
            for flag, value in (
                ("--parcels", args.parcels),
                ("--images-dir", args.images_dir),
                ("--output", args.output),
            )
            if value is None
        ]
        if missing:
            parser.error(f"Missing required option(s) without --config: {', '.join(missing)}")
    return args


def build_run_config(args: argparse.Namespace) -> RunConfig:
    """Load the YAML configuration (if any) and apply command line overrides."""
    if args.config is not None:
        config = load_run_config(args.config, validate=False)
    else:
        config = RunConfig(start_year=args.start_year, end_year=args.end_year)

    overrides = {}
    if args.start_year is not None:
        overrides["start_year"] = args.start_year
    if args.end_year is not None:
        overrides["end_year"] = args.end_year
    if args.index is not None:
        overrides["index_kind"] = args.index
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    if args.statistic is not None:
        overrides["aggregation"] = replace(config.aggregation, statistic=args.statistic)
    if overrides:
        config = replace(config, **overrides)
    config.validate()
    return config


def build_run_paths(args: argparse.Namespace) -> RunPaths:
    paths = load_run_paths(args.config) if args.config is not None else RunPaths()
    return RunPaths(
        parcels_path=args.parcels or paths.parcels_path,
        images_dir=args.images_dir or paths.images_dir,
        companions_dir=args.companions_dir or paths.companions_dir,
        output_path=args.output or paths.output_path,
    )


def run_from_args(args: argparse.Namespace) -> RunResult:
    config = build_run_config(args)
    paths = build_run_paths(args)
    if paths.parcels_path is None or paths.images_dir is None or paths.output_path is None:
        raise ConfigurationError("parcels, images directory and output path must all be set")

    companion_source = None
    if paths.companions_dir is not None:
        companion_source = GeoTiffCompanionSource(paths.companions_dir, key=config.companion_key)

    raster_source = GeoTiffRasterSource(paths.images_dir, scale=args.scale)
    builder = TimeSeriesBuilder(
        config,
        raster_source=raster_source,
        parcel_store=load_parcel_store(paths.parcels_path, id_column=args.parcel_id_column),
        companion_source=companion_source,
        filters=FILTER_PRESETS[args.filters],
    )
    result = builder.run()
    result.series.write_csv(paths.output_path)
    LOGGER.info(
        "%d record(s) written; %d image(s) dropped, %d without data, %d season(s) skipped",
        len(result.series),
        result.dropped_images,
        result.no_data_images,
        result.skipped_seasons,
    )
    if raster_source.skipped:
        LOGGER.warning(
            "%d unusable raster file(s) ignored in %s", len(raster_source.skipped), paths.images_dir
        )
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper()))

    try:
        run_from_args(args)
    except (ConfigurationError, InputValidationError, FileNotFoundError) as e:
        logging.error("Configuration error: %s", e)
        return 1
    except BackendUnavailableError as e:
        logging.error("Backend unavailable: %s", e)
        return 2
    return 0


__all__ = [
    "FILTER_PRESETS",
    "configure_parser",
    "parse_args",
    "build_run_config",
    "build_run_paths",
    "run_from_args",
    "main",
]
