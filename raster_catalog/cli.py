#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Main entry point for the raster layer catalog tools.

Every tool takes its layer names first and the catalog path last, e.g.::

    raster-catalog stack red nir ndvi stacked /data/catalog
    raster-catalog pixels stacked labels /data/catalog
"""
import sys
import time
import argparse
from typing import Callable, Dict, List, Optional

from raster_catalog import __version__
from raster_catalog.catalog.catalog import CatalogHandle, LayerCatalog
from raster_catalog.catalog.zoom import finest_zoom
from raster_catalog.core.config import DEFAULT_TILE_SIZE, EXPORT_CONFIG, LOGGING_CONFIG, load_config
from raster_catalog.core.engine import LocalEngine
from raster_catalog.core.errors import CatalogError, EngineConfigurationError
from raster_catalog.core.io import (
    EXPORT_FORMATS, describe_layer, export_samples, read_predictions, save_layer_summary,
)
from raster_catalog.core.logging_config import setup_logging, get_module_logger
from raster_catalog.core.types import KeyClass, LayerId, ValueClass
from raster_catalog.layers.pixels import from_samples, sample_labels, to_samples
from raster_catalog.layers.stack import stack_layers

# Initialize logger
logger = get_module_logger(__name__)

USAGE = {
    "stack": "inputLayerName1 inputLayerName2 [inputLayerName3 ...] layerStackNameOut /path/to/catalog",
    "pixels": "layerNameIn layerNameOut /path/to/catalog",
    "export-samples": "layerNameIn /path/to/output/file /path/to/catalog",
    "import-predictions": "/path/to/predictions.csv referenceLayerName layerNameOut /path/to/catalog",
    "delete": "layerName /path/to/catalog",
    "list": "/path/to/catalog",
}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Parameters
    ----------
    argv : list of str, optional
        Arguments to parse, by default ``sys.argv[1:]``.

    Returns
    -------
    argparse.Namespace
        Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Stack, sample and manage tiled raster layers in a local catalog."
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: from configuration)"
    )

    parser.add_argument(
        "--config", "-c",
        help="Path to a YAML configuration file"
    )

    parser.add_argument(
        "--n-jobs", "-j",
        type=int,
        help="Number of parallel jobs (-1 = all cores, 1 = sequential)"
    )

    parser.add_argument(
        "--backend",
        help="joblib backend used for per-tile work (e.g. threading, loky, sequential)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"Raster Layer Catalog v{__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    stack_parser = subparsers.add_parser("stack", help="Stack several layers into one multiband layer")
    stack_parser.add_argument("args", nargs="*", metavar="ARG", help=USAGE["stack"])
    stack_parser.add_argument(
        "--tile-size", "-t",
        type=int,
        default=DEFAULT_TILE_SIZE,
        help=f"Output tile size in pixels (default: {DEFAULT_TILE_SIZE})"
    )

    pixels_parser = subparsers.add_parser(
        "pixels", help="Scatter a layer into pixel samples and gather the label band into a new layer"
    )
    pixels_parser.add_argument("args", nargs="*", metavar="ARG", help=USAGE["pixels"])
    pixels_parser.add_argument(
        "--label-band",
        type=int,
        help="Band holding the label (default: from configuration)"
    )

    export_parser = subparsers.add_parser("export-samples", help="Export the pixel samples of a layer")
    export_parser.add_argument("args", nargs="*", metavar="ARG", help=USAGE["export-samples"])
    export_parser.add_argument(
        "--format", "-f",
        choices=EXPORT_FORMATS,
        default="csv",
        help="Output format (default: csv)"
    )
    export_parser.add_argument(
        "--label-band",
        type=int,
        help="Band holding the label (default: from configuration)"
    )
    export_parser.add_argument(
        "--summary",
        help="Also save a JSON summary of the layer to this path"
    )

    import_parser = subparsers.add_parser(
        "import-predictions", help="Write per-pixel predictions onto the grid of a reference layer"
    )
    import_parser.add_argument("args", nargs="*", metavar="ARG", help=USAGE["import-predictions"])
    import_parser.add_argument(
        "--value-column",
        default="prediction",
        help="CSV column holding the values (default: prediction)"
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a layer, or one zoom level of it")
    delete_parser.add_argument("args", nargs="*", metavar="ARG", help=USAGE["delete"])
    delete_parser.add_argument(
        "--zoom", "-z",
        type=int,
        help="Delete only this zoom level"
    )

    list_parser = subparsers.add_parser("list", help="List the layers of a catalog")
    list_parser.add_argument("args", nargs="*", metavar="ARG", help=USAGE["list"])

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
    return args


def open_catalog(path: str, args: argparse.Namespace) -> LayerCatalog:
    """Open an existing catalog with an engine configured from the command line."""
    engine = LocalEngine(n_jobs=args.n_jobs, backend=args.backend)
    return LayerCatalog(CatalogHandle.open(path, create=False, engine=engine))


def run_stack(args: argparse.Namespace) -> int:
    names, output_name, catalog_path = args.args[:-2], args.args[-2], args.args[-1]
    catalog = open_catalog(catalog_path, args)

    start_time = time.time()
    output_id = stack_layers(catalog, names, output_name, tile_size=(args.tile_size, args.tile_size))
    logger.info(f"Stacked {len(names)} layers into {output_id} in {time.time() - start_time:.2f} seconds")
    return 0


def run_pixels(args: argparse.Namespace) -> int:
    layer_name, output_name, catalog_path = args.args
    label_band = EXPORT_CONFIG.get("label_band", 0) if args.label_band is None else args.label_band
    catalog = open_catalog(catalog_path, args)

    zoom = finest_zoom(catalog, layer_name)
    layer = catalog.read(LayerId(layer_name, zoom), KeyClass.SPATIAL, ValueClass.MULTIBAND)
    logger.info(f"Read {len(layer)} tiles of {layer.band_count} bands from {LayerId(layer_name, zoom)}")

    samples = to_samples(layer, label_band=label_band, engine=catalog.engine)
    labels = from_samples(sample_labels(samples), layer.metadata, engine=catalog.engine)

    output_id = LayerId(output_name, zoom)
    catalog.write(output_id, labels)
    logger.info(f"Wrote band {label_band} of {len(labels)} tiles to {output_id}")
    return 0


def run_export_samples(args: argparse.Namespace) -> int:
    layer_name, output_path, catalog_path = args.args
    label_band = EXPORT_CONFIG.get("label_band", 0) if args.label_band is None else args.label_band
    catalog = open_catalog(catalog_path, args)

    zoom = finest_zoom(catalog, layer_name)
    layer = catalog.read(LayerId(layer_name, zoom), value_class=ValueClass.MULTIBAND)

    samples = to_samples(layer, label_band=label_band, engine=catalog.engine)
    count = export_samples(samples, output_path, fmt=args.format, metadata=layer.metadata)
    logger.info(f"Exported {count} samples of {LayerId(layer_name, zoom)} to {output_path}")

    if args.summary:
        save_layer_summary(describe_layer(layer), args.summary)
    return 0


def run_import_predictions(args: argparse.Namespace) -> int:
    predictions_path, reference_name, output_name, catalog_path = args.args
    catalog = open_catalog(catalog_path, args)

    zoom = finest_zoom(catalog, reference_name)
    metadata = catalog.read_metadata(LayerId(reference_name, zoom))

    records = read_predictions(predictions_path, value_column=args.value_column)
    layer = from_samples(records, metadata, engine=catalog.engine)

    output_id = LayerId(output_name, zoom)
    catalog.write(output_id, layer)
    logger.info(f"Wrote {len(layer)} tiles of predictions to {output_id}")
    return 0


def run_delete(args: argparse.Namespace) -> int:
    layer_name, catalog_path = args.args
    catalog = open_catalog(catalog_path, args)

    if args.zoom is None:
        catalog.delete_all(layer_name)
    else:
        catalog.delete(LayerId(layer_name, args.zoom))
    return 0


def run_list(args: argparse.Namespace) -> int:
    (catalog_path,) = args.args
    catalog = open_catalog(catalog_path, args)

    for layer_id in catalog.layer_ids():
        header = catalog.read_header(layer_id)
        print(f"{layer_id.name} {layer_id.zoom} {header.key_class} {header.value_class}")
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace], int]] = {
    "stack": run_stack,
    "pixels": run_pixels,
    "export-samples": run_export_samples,
    "import-predictions": run_import_predictions,
    "delete": run_delete,
    "list": run_list,
}


def _arity_ok(command: str, args: List[str]) -> bool:
    if command == "stack":
        return len(args) >= 4
    return len(args) == len(USAGE[command].split())


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run a catalog command.

    Parameters
    ----------
    argv : list of str, optional
        Command line arguments, by default ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code.
    """
    args = parse_arguments(argv)

    if args.config:
        try:
            load_config(args.config)
        except (OSError, ValueError) as e:
            setup_logging(log_level=args.log_level)
            logger.error(f"Could not load configuration {args.config}: {e}")
            return 1

    setup_logging(log_level=args.log_level or LOGGING_CONFIG.get("level", "INFO"))

    if args.command is None:
        return 1

    if not _arity_ok(args.command, args.args):
        print(f"Run as: {USAGE[args.command]}")
        return 1

    try:
        return COMMANDS[args.command](args)

    except EngineConfigurationError as e:
        logger.error(str(e))
        logger.error("Try to run locally with: --n-jobs 1 --backend sequential")
        return 1

    except CatalogError as e:
        logger.error(str(e))
        return 1

    except Exception as e:
        logger.exception(f"Error during {args.command}: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
