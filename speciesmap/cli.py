#!/usr/bin/env python3
"""
SpeciesMap Command-Line Interface

Batch pipeline: state boundaries + occurrence CSV → per-state record counts
and two static maps.
"""

import argparse
import sys
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from . import config, geographic, occurrences, aggregation, visualization, utils
from .exceptions import SpeciesMapError

logger = logging.getLogger(__name__)


def _join_columns(cfg: config.PipelineConfig) -> List[str]:
    """Boundary attributes carried onto each occurrence point."""
    columns = [
        cfg.aggregation.group_key,
        cfg.boundary.abbreviation_column,
        cfg.boundary.name_column,
    ]
    return list(dict.fromkeys(columns))


def run_pipeline(
    boundary_path: Path,
    occurrence_path: Path,
    output_dir: Path,
    cfg: config.PipelineConfig,
) -> Dict[str, Any]:
    """
    Run the complete SpeciesMap pipeline.

    Parameters
    ----------
    boundary_path : Path
        State boundary dataset
    occurrence_path : Path
        Occurrence CSV
    output_dir : Path
        Output directory
    cfg : config.PipelineConfig
        Pipeline configuration

    Returns
    -------
    Dict[str, Any]
        Output paths ('species_map', 'counts_map', 'state_counts',
        'parameters') and row counts ('states', 'occurrences', 'joined',
        'summarized_states')

    Raises
    ------
    SpeciesMapError
        From the first stage that fails; nothing after it runs
    """
    start = time.time()
    bcfg, ocfg, jcfg, acfg, vcfg = (
        cfg.boundary, cfg.occurrence, cfg.join, cfg.aggregation, cfg.visualization
    )

    logger.info("=" * 80)
    logger.info("SpeciesMap Pipeline")
    logger.info("=" * 80)
    logger.info(f"Boundaries: {boundary_path}")
    logger.info(f"Occurrences: {occurrence_path}")
    logger.info(f"Output directory: {output_dir}")
    logger.info("")

    output_dir = utils.create_output_directory(output_dir)

    params_file = output_dir / "pipeline_parameters.json"
    cfg.to_json(params_file)

    # ========================================================================
    # PHASE 1: State Boundaries
    # ========================================================================
    logger.info("PHASE 1: Loading State Boundaries")
    logger.info("-" * 80)

    states = geographic.load_boundaries(
        boundary_path, name_column=bcfg.name_column, layer=bcfg.layer
    )
    states = geographic.reproject(states, bcfg.target_crs)
    states = geographic.filter_regions(states, bcfg.name_column, bcfg.excluded_regions)
    logger.info(f"  ✓ {len(states)} regions after exclusions")

    # ========================================================================
    # PHASE 2: Occurrence Records
    # ========================================================================
    logger.info("")
    logger.info("PHASE 2: Loading Occurrence Records")
    logger.info("-" * 80)

    records = occurrences.load_occurrences(
        occurrence_path,
        latitude_column=ocfg.latitude_column,
        longitude_column=ocfg.longitude_column,
        species_column=ocfg.species_column,
        sep=ocfg.separator,
        encoding=ocfg.encoding,
        chunksize=ocfg.chunksize,
        drop_duplicates=ocfg.drop_duplicates,
    )
    points = geographic.create_points_geodataframe(
        records, ocfg.longitude_column, ocfg.latitude_column, crs=ocfg.crs
    )
    del records
    points = geographic.reproject(points, bcfg.target_crs)
    logger.info(f"  ✓ {len(points)} occurrence points")

    # ========================================================================
    # PHASE 3: Spatial Join
    # ========================================================================
    logger.info("")
    logger.info("PHASE 3: Matching Points to States")
    logger.info("-" * 80)

    joined = geographic.spatial_join(
        points, states,
        how=jcfg.how,
        predicate=jcfg.predicate,
        tie_break=jcfg.tie_break,
        right_columns=_join_columns(cfg),
    )
    logger.info(f"  ✓ {len(joined)} joined rows")

    # ========================================================================
    # PHASE 4: Aggregation
    # ========================================================================
    logger.info("")
    logger.info("PHASE 4: Aggregating Records per State")
    logger.info("-" * 80)

    keep = [c for c in (bcfg.abbreviation_column, bcfg.name_column) if c != acfg.group_key]
    summary = aggregation.aggregate_regions(
        joined, states,
        key=acfg.group_key,
        include_empty=acfg.include_empty,
        keep_columns=keep,
    )

    counts_csv = output_dir / "state_counts.csv"
    summary.drop(columns=summary.geometry.name).to_csv(counts_csv, index=False)
    logger.info(f"  ✓ {len(summary)} states summarized, saved to {counts_csv}")

    # ========================================================================
    # PHASE 5: Maps
    # ========================================================================
    logger.info("")
    logger.info("PHASE 5: Rendering Maps")
    logger.info("-" * 80)

    species_column = ocfg.species_column
    if species_column not in points.columns:
        logger.warning(f"Species column '{species_column}' missing; all points drawn as 'Other'")
        points = points.assign(**{species_column: None})

    species_map = visualization.plot_records_species_map(
        states, points,
        output_dir / vcfg.species_map_filename,
        theme=vcfg.theme,
        species_col=species_column,
        top_n=vcfg.top_n_species,
        state_fill_color=vcfg.state_fill_color,
        state_edge_color=vcfg.state_edge_color,
        point_size=vcfg.point_size,
        point_alpha=vcfg.point_alpha,
    )
    counts_map = visualization.plot_state_counts_map(
        summary, states,
        output_dir / vcfg.counts_map_filename,
        theme=vcfg.theme,
        value_col=vcfg.heat_column,
        label_col=bcfg.abbreviation_column,
        low_color=vcfg.heat_low_color,
        high_color=vcfg.heat_high_color,
        state_edge_color=vcfg.state_edge_color,
    )
    logger.info(f"  ✓ Generated {species_map.name} and {counts_map.name}")

    logger.info("")
    logger.info("=" * 80)
    logger.info(f"✓ Pipeline completed in {utils.format_elapsed_time(time.time() - start)}")
    for path in (species_map, counts_map, counts_csv):
        logger.info(f"    - {path} ({utils.format_file_size(path.stat().st_size)})")
    logger.info("=" * 80)

    return {
        'species_map': species_map,
        'counts_map': counts_map,
        'state_counts': counts_csv,
        'parameters': params_file,
        'states': len(states),
        'occurrences': len(points),
        'joined': len(joined),
        'summarized_states': len(summary),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='speciesmap',
        description='SpeciesMap: map species occurrence records across the contiguous US states',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  speciesmap cb_2018_us_state_20m.shp occurrences.csv

  # Write to a specific directory at lower resolution
  speciesmap states.shp occurrences.csv --output-dir maps --dpi 150

  # Keep states without records in the counts map and table
  speciesmap states.shp occurrences.csv --include-empty-states

  # Use a configuration file (YAML or JSON)
  speciesmap states.shp occurrences.csv --config my_run.yaml

Notes:
  - Settings are applied in order: defaults, --config file,
    SPECIESMAP_* environment variables, command-line flags
        """
    )

    parser.add_argument('boundaries', type=Path, help='State boundary file (.shp, .gpkg, .geojson)')
    parser.add_argument('occurrences', type=Path, help='Occurrence CSV with decimalLatitude/decimalLongitude')

    parser.add_argument(
        '--output', '--output-dir',
        dest='output_dir',
        type=Path,
        default=None,
        help='Output directory (default: results)'
    )
    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='Configuration file (.yaml, .yml or .json)'
    )
    parser.add_argument(
        '--include-empty-states',
        action='store_true',
        default=None,
        help='Include states without records (records = 0) in the summary'
    )
    parser.add_argument(
        '--tie-break',
        choices=list(config.TIE_BREAK_POLICIES),
        default=None,
        help='Points on a shared border: count for every state (all) or the first (first)'
    )
    parser.add_argument(
        '--top-species',
        type=int,
        default=None,
        help='Species colored individually on the records map'
    )
    parser.add_argument(
        '--dpi',
        type=int,
        default=None,
        help='Output image resolution'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging verbosity (default: INFO)'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'SpeciesMap {__version__}'
    )
    return parser


def _resolve_config(args: argparse.Namespace) -> config.PipelineConfig:
    """Defaults, then config file, then environment, then command-line flags."""
    cfg = config.load_config_from_file(args.config) if args.config else config.get_default_config()
    cfg = cfg.update(**config.load_config_from_env())

    overrides = {
        'output_dir': args.output_dir,
        'log_level': args.log_level,
        'aggregation__include_empty': args.include_empty_states,
        'join__tie_break': args.tie_break,
        'visualization__top_n_species': args.top_species,
        'visualization__theme__dpi': args.dpi,
    }
    return cfg.update(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    for label, path in (("Boundary file", args.boundaries), ("Occurrence file", args.occurrences)):
        if not path.exists():
            print(f"Error: {label} not found: {path}", file=sys.stderr)
            return 1

    try:
        cfg = _resolve_config(args)
    except (ValueError, TypeError, FileNotFoundError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    output_dir = cfg.output_dir.resolve()
    log_file = output_dir / "speciesmap.log"
    try:
        utils.setup_logging(log_level=cfg.log_level, log_file=log_file)
    except OSError as e:
        print(f"Error: Cannot write to output directory {output_dir}: {e}", file=sys.stderr)
        return 1

    for warning in config.validate_config(cfg):
        logger.warning(warning)

    try:
        run_pipeline(args.boundaries, args.occurrences, output_dir, cfg)
        return 0

    except KeyboardInterrupt:
        print("\n\nPipeline interrupted by user", file=sys.stderr)
        return 130
    except SpeciesMapError as e:
        logger.error(f"{e.stage} failed: {e}")
        print(f"\nError: {e.stage} failed: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Pipeline failed with error: {e}", exc_info=True)
        print(f"\nError: Pipeline failed. Check log file: {log_file}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
