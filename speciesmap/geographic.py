"""
Boundary Loading, Reprojection and Spatial Joins

This module handles the vector side of the pipeline: reading state boundary
polygons, putting every layer in one coordinate reference system, removing
non-contiguous regions, turning occurrence records into points, and matching
those points to the polygon that contains them.

Key Features:
- Loads any vector format GeoPandas can read (shapefile, GeoPackage, GeoJSON)
- Reprojects layers with pyproj through GeoDataFrame.to_crs
- Filters regions by attribute value, preserving feature order
- Builds point geometries from longitude/latitude columns
- Performs point-in-polygon spatial joins with GeoPandas

Spatial Operations:
- Default Coordinate Reference System (CRS): WGS84 (EPSG:4326)
- Joins require both operands in the same CRS; nothing is reprojected
  implicitly
- Points matching several polygons are emitted once per polygon unless
  tie_break="first"

Edge Cases Handled:
1. Boundary file without CRS → loaded as-is, reprojection refuses it
2. Reprojecting into the CRS a layer already uses → unchanged copy
3. Missing/non-numeric/out-of-range coordinates → dropped with warning
4. Points outside all polygons → dropped (inner) or kept with nulls (left-outer)
5. Points on a shared border → matched to every touching polygon by default

Example Usage:
    >>> from speciesmap.geographic import (
    ...     load_boundaries, reproject, filter_regions,
    ...     create_points_geodataframe, spatial_join,
    ... )
    >>> states = load_boundaries("cb_2018_us_state_20m.shp")
    >>> states = reproject(states, 4326)
    >>> states = filter_regions(states, "NAME", {"Alaska", "Hawaii", "Puerto Rico"})
    >>> points = create_points_geodataframe(df, "decimalLongitude", "decimalLatitude")
    >>> joined = spatial_join(points, states[["STUSPS", "NAME", "geometry"]])
"""

from typing import Iterable, List, Optional, Union
from pathlib import Path
import logging

import pandas as pd
import geopandas as gpd
from pyproj import CRS
from pyproj.exceptions import CRSError

from .exceptions import LoadError, ReprojectionError, GeometrizationError, JoinError

logger = logging.getLogger(__name__)

CRSLike = Union[int, str, CRS]

JOIN_HOW = {
    'inner': 'inner',
    'left-outer': 'left',
    'left': 'left',
}

_LEFT_ORDER = "_left_order"
_RIGHT_INDEX = "index_right"


# ============================================================================
# CRS Helpers
# ============================================================================

def resolve_crs(crs: CRSLike) -> CRS:
    """
    Turn an EPSG code, CRS string or pyproj.CRS into a pyproj.CRS.

    Raises
    ------
    ReprojectionError
        If pyproj does not understand the input
    """
    try:
        return CRS.from_user_input(crs)
    except CRSError as e:
        raise ReprojectionError(f"Unsupported coordinate reference system '{crs}': {e}") from e


def describe_crs(gdf: gpd.GeoDataFrame) -> str:
    """
    Human-readable label for the CRS of a GeoDataFrame.

    Examples
    --------
    >>> describe_crs(states)
    'EPSG:4269'
    """
    if gdf.crs is None:
        return "undefined"
    epsg = gdf.crs.to_epsg()
    if epsg is not None:
        return f"EPSG:{epsg}"
    return gdf.crs.name


def same_crs(left: gpd.GeoDataFrame, right: gpd.GeoDataFrame) -> bool:
    """True if both layers declare a CRS and the CRSs are equal."""
    if left.crs is None or right.crs is None:
        return False
    return CRS.from_user_input(left.crs) == CRS.from_user_input(right.crs)


# ============================================================================
# Boundary Loader
# ============================================================================

def load_boundaries(
    boundary_path: Union[str, Path],
    name_column: Optional[str] = None,
    layer: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """
    Load region boundary polygons from a vector file.

    Parameters
    ----------
    boundary_path : str or Path
        Path to the boundary dataset (.shp, .gpkg, .geojson, ...)
    name_column : str, optional
        Attribute that must be present (e.g. 'NAME')
    layer : str, optional
        Layer to read from multi-layer sources

    Returns
    -------
    gpd.GeoDataFrame
        Boundary polygons with their declared CRS (not reprojected)

    Raises
    ------
    LoadError
        If the file does not exist, cannot be read, has no features, has no
        non-empty geometry, or lacks name_column

    Notes
    -----
    A shapefile's CRS comes from its .prj sidecar. Without it the layer is
    returned with crs=None and a warning; reproject() will refuse it.

    Examples
    --------
    >>> states = load_boundaries("cb_2018_us_state_20m.shp", name_column="NAME")
    >>> print(f"Loaded {len(states)} states in {describe_crs(states)}")
    """
    boundary_path = Path(boundary_path)

    if not boundary_path.exists():
        raise LoadError(f"Boundary file not found: {boundary_path}", stage="boundary_loader")

    logger.info(f"Loading boundaries from: {boundary_path}")

    try:
        kwargs = {'layer': layer} if layer is not None else {}
        boundaries = gpd.read_file(boundary_path, **kwargs)
    except Exception as e:
        # pyogrio/fiona raise their own exception types for corrupt files
        raise LoadError(
            f"Failed to read boundary file {boundary_path}: {e}", stage="boundary_loader"
        ) from e

    if len(boundaries) == 0:
        raise LoadError(f"Boundary file is empty: {boundary_path}", stage="boundary_loader")

    if 'geometry' not in boundaries.columns:
        raise LoadError(f"Boundary file has no geometry: {boundary_path}", stage="boundary_loader")

    has_geometry = boundaries.geometry.notna() & ~boundaries.geometry.is_empty
    if not has_geometry.any():
        raise LoadError(
            f"Boundary file has no readable geometry: {boundary_path}", stage="boundary_loader"
        )
    if not has_geometry.all():
        logger.warning(
            f"{(~has_geometry).sum()} boundary features have empty geometry and were kept as-is"
        )

    if name_column is not None and name_column not in boundaries.columns:
        available = [c for c in boundaries.columns if c != 'geometry']
        raise LoadError(
            f"Boundary file has no '{name_column}' column. Available columns: {available}",
            stage="boundary_loader",
        )

    if boundaries.crs is None:
        logger.warning("Boundary file has no CRS; it must be assigned before reprojection")

    logger.info(
        f"Loaded {len(boundaries)} boundary features "
        f"({', '.join(sorted(boundaries.geom_type.dropna().unique()))}) "
        f"in {describe_crs(boundaries)}"
    )

    return boundaries


# ============================================================================
# Reprojector
# ============================================================================

def reproject(gdf: gpd.GeoDataFrame, target_crs: CRSLike = 4326) -> gpd.GeoDataFrame:
    """
    Transform a layer into the target coordinate reference system.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Layer to transform
    target_crs : int, str or pyproj.CRS, default=4326
        Target CRS (WGS84)

    Returns
    -------
    gpd.GeoDataFrame
        New layer in target_crs with unchanged attributes. A layer that is
        already in target_crs is returned as an unchanged copy.

    Raises
    ------
    ReprojectionError
        If the source CRS is undefined, either CRS is unsupported, or the
        transformation fails

    Examples
    --------
    >>> states_wgs84 = reproject(states, 4326)
    >>> describe_crs(states_wgs84)
    'EPSG:4326'
    """
    target = resolve_crs(target_crs)

    if gdf.crs is None:
        raise ReprojectionError(
            "Cannot reproject a layer without a coordinate reference system"
        )

    source = resolve_crs(gdf.crs)
    if source == target:
        logger.debug(f"Layer already in {target.to_string()}, skipping reprojection")
        return gdf.copy()

    logger.info(f"Reprojecting {len(gdf)} features from {describe_crs(gdf)} to {target.to_string()}")

    try:
        return gdf.to_crs(target)
    except Exception as e:
        # pyproj raises ProjError/CRSError; shapely may raise on invalid coordinates
        raise ReprojectionError(
            f"Failed to reproject from {describe_crs(gdf)} to {target.to_string()}: {e}"
        ) from e


# ============================================================================
# Region Filter
# ============================================================================

def filter_regions(
    gdf: gpd.GeoDataFrame,
    column: str,
    excluded: Iterable[str],
) -> gpd.GeoDataFrame:
    """
    Remove features whose attribute value is in an exclusion set.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Region layer
    column : str
        Attribute to test (e.g. 'NAME')
    excluded : Iterable[str]
        Values to remove (e.g. {'Alaska', 'Hawaii', 'Puerto Rico'})

    Returns
    -------
    gpd.GeoDataFrame
        New layer without the excluded features, original order preserved

    Raises
    ------
    ValueError
        If column is not present

    Examples
    --------
    >>> lower48 = filter_regions(states, "NAME", {"Alaska", "Hawaii", "Puerto Rico"})
    """
    if column not in gdf.columns:
        raise ValueError(f"Column '{column}' not found in boundary layer")

    excluded = set(excluded)
    if not excluded:
        return gdf.copy()

    mask = gdf[column].isin(excluded)
    found = sorted(gdf.loc[mask, column].astype(str).unique())
    missing = sorted(excluded - set(found))

    logger.info(f"Excluding {mask.sum()} features: {', '.join(found) if found else 'none'}")
    if missing:
        logger.debug(f"Excluded values not present in layer: {', '.join(map(str, missing))}")

    return gdf[~mask].copy()


# ============================================================================
# Point Geometrizer
# ============================================================================

def create_points_geodataframe(
    df: pd.DataFrame,
    lon_col: str = 'decimalLongitude',
    lat_col: str = 'decimalLatitude',
    crs: CRSLike = 4326,
    keep_coordinates: bool = True,
) -> gpd.GeoDataFrame:
    """
    Create a GeoDataFrame of point geometries from longitude/latitude columns.

    Parameters
    ----------
    df : pd.DataFrame
        Table with coordinate columns
    lon_col : str, default='decimalLongitude'
        Name of longitude column
    lat_col : str, default='decimalLatitude'
        Name of latitude column
    crs : int, str or pyproj.CRS, default=4326
        Coordinate reference system of the raw coordinates
    keep_coordinates : bool, default=True
        Keep the coordinate columns as scalar attributes

    Returns
    -------
    gpd.GeoDataFrame
        One point per usable record, in input order

    Raises
    ------
    GeometrizationError
        If either coordinate column is missing or the CRS is unsupported

    Notes
    -----
    - Records with missing or non-numeric coordinates are dropped with a
      warning; they are never placed at (0, 0)
    - For geographic CRSs, coordinates outside -90 ≤ lat ≤ 90,
      -180 ≤ lon ≤ 180 are dropped with a warning too

    Examples
    --------
    >>> df = pd.DataFrame({
    ...     'species': ['Danaus plexippus', 'Vanessa cardui'],
    ...     'decimalLatitude': [35.2, 40.1],
    ...     'decimalLongitude': [-80.8, -105.3],
    ... })
    >>> gdf = create_points_geodataframe(df)
    """
    for label, col in (("Longitude", lon_col), ("Latitude", lat_col)):
        if col not in df.columns:
            raise GeometrizationError(f"{label} column '{col}' not found in table")

    try:
        crs = resolve_crs(crs)
    except ReprojectionError as e:
        raise GeometrizationError(str(e)) from e

    df_copy = df.copy()
    lon = pd.to_numeric(df_copy[lon_col], errors='coerce')
    lat = pd.to_numeric(df_copy[lat_col], errors='coerce')

    valid = lon.notna() & lat.notna()
    n_invalid = int((~valid).sum())
    if n_invalid:
        logger.warning(
            f"Dropping {n_invalid} records with missing or non-numeric coordinates"
        )

    if crs.is_geographic:
        in_range = lat.between(-90, 90) & lon.between(-180, 180)
        out_of_range = valid & ~in_range
        if out_of_range.any():
            logger.warning(
                f"Dropping {int(out_of_range.sum())} records with coordinates out of range "
                "[-180, 180] x [-90, 90]"
            )
        valid &= in_range

    df_copy = df_copy[valid]
    lon = lon[valid].astype(float)
    lat = lat[valid].astype(float)

    logger.info(f"Creating point geometries for {len(df_copy)}/{len(df)} records")

    if keep_coordinates:
        df_copy[lon_col] = lon
        df_copy[lat_col] = lat
    else:
        df_copy = df_copy.drop(columns=[lon_col, lat_col])

    # Point(x, y) = Point(lon, lat)
    geometry = gpd.points_from_xy(lon.to_numpy(), lat.to_numpy(), crs=crs)
    return gpd.GeoDataFrame(df_copy, geometry=geometry, crs=crs)


# ============================================================================
# Spatial Join Engine
# ============================================================================

def spatial_join(
    left: gpd.GeoDataFrame,
    right: gpd.GeoDataFrame,
    how: str = 'inner',
    predicate: str = 'intersects',
    tie_break: str = 'all',
    right_columns: Optional[List[str]] = None,
) -> gpd.GeoDataFrame:
    """
    Attach the attributes of containing polygons to each left feature.

    Parameters
    ----------
    left : gpd.GeoDataFrame
        Features to classify (usually occurrence points)
    right : gpd.GeoDataFrame
        Polygons providing attributes (usually states)
    how : str, default='inner'
        'inner' drops unmatched left features; 'left-outer' (or 'left')
        keeps them once with null right attributes
    predicate : str, default='intersects'
        Binary predicate passed to GeoPandas ('intersects', 'within', ...)
    tie_break : str, default='all'
        'all' emits one output feature per matching polygon;
        'first' keeps only the match with the lowest polygon position
    right_columns : List[str], optional
        Right attributes to attach (default: all)

    Returns
    -------
    gpd.GeoDataFrame
        Left geometry and attributes plus right attributes, ordered by left
        position then right position, with a fresh 0..n-1 index

    Raises
    ------
    JoinError
        If either layer has no CRS or the CRSs differ
    ValueError
        If how or tie_break is not recognized, or right_columns are missing

    Examples
    --------
    >>> joined = spatial_join(points, states[['STUSPS', 'NAME', 'geometry']])
    >>> joined['STUSPS'].value_counts()
    """
    if how not in JOIN_HOW:
        raise ValueError(f"how must be one of {sorted(JOIN_HOW)}, got '{how}'")
    if tie_break not in ('all', 'first'):
        raise ValueError(f"tie_break must be 'all' or 'first', got '{tie_break}'")

    if left.crs is None or right.crs is None:
        raise JoinError("Both layers need a coordinate reference system for a spatial join")
    if not same_crs(left, right):
        raise JoinError(
            f"CRS mismatch: left layer is {describe_crs(left)}, "
            f"right layer is {describe_crs(right)}; reproject before joining"
        )

    if right_columns is not None:
        missing = [c for c in right_columns if c not in right.columns]
        if missing:
            raise ValueError(f"Right layer is missing columns: {missing}")
        right = right[[c for c in right_columns if c != right.geometry.name] + [right.geometry.name]]

    left_prepared = left.reset_index(drop=True)
    left_prepared[_LEFT_ORDER] = range(len(left_prepared))
    right_prepared = right.reset_index(drop=True)

    logger.info(
        f"Spatial join ({how}, {predicate}): {len(left_prepared)} features "
        f"against {len(right_prepared)} polygons"
    )

    joined = gpd.sjoin(
        left_prepared,
        right_prepared,
        how=JOIN_HOW[how],
        predicate=predicate,
    )

    joined = joined.sort_values(
        [_LEFT_ORDER, _RIGHT_INDEX], na_position='last', kind='stable'
    )

    n_multi = int(joined[_LEFT_ORDER].duplicated().sum())
    if n_multi:
        if tie_break == 'first':
            logger.info(f"Keeping first polygon match for {n_multi} extra boundary matches")
            joined = joined.drop_duplicates(subset=_LEFT_ORDER, keep='first')
        else:
            logger.info(f"{n_multi} extra rows from features matching several polygons")

    n_matched = int(joined[_RIGHT_INDEX].notna().sum())
    n_unmatched = len(left_prepared) - int(
        joined.loc[joined[_RIGHT_INDEX].notna(), _LEFT_ORDER].nunique()
    )
    logger.info(
        f"Spatial join results: {n_matched} matched rows, "
        f"{n_unmatched} features outside all polygons"
    )

    joined = joined.drop(columns=[_LEFT_ORDER, _RIGHT_INDEX]).reset_index(drop=True)
    return joined
