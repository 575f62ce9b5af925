"""
Per-Region Aggregation

Summaries are computed in two explicit steps:

1. group_by(table, key) yields (key value, rows) pairs
2. summarize(rows, summaries) evaluates an ordered list of named summary
   functions on one group

Each summary function receives the group's rows and the summaries computed
so far for that group, so derived values (the square root of the count, for
example) are ordinary summary functions placed after the value they use.

aggregate_regions() ties the two together and puts the results back on the
original region polygons, producing one feature per region.

Zero-count regions:
    The joined table only contains regions that received at least one
    point. By default those regions are absent from the result; with
    include_empty=True they are added with every summary evaluated on an
    empty group (records = 0).

Example Usage:
    >>> from speciesmap.aggregation import aggregate_regions, count_unique, DEFAULT_SUMMARIES
    >>> summary = aggregate_regions(joined, states, key="STUSPS")
    >>> summary[["STUSPS", "records", "records_sqrt"]].head()
    >>>
    >>> summaries = DEFAULT_SUMMARIES + (("n_species", count_unique("species")),)
    >>> summary = aggregate_regions(joined, states, key="STUSPS", summaries=summaries)
"""

from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Iterator, Optional, Sequence, Tuple
import logging
import math

import pandas as pd
import geopandas as gpd

logger = logging.getLogger(__name__)

SummaryFunction = Callable[[pd.DataFrame, Dict[str, Any]], Any]
Summaries = Sequence[Tuple[str, SummaryFunction]]


# ============================================================================
# Summary Functions
# ============================================================================

def count_records(rows: pd.DataFrame, computed: Dict[str, Any]) -> int:
    """Number of rows in the group."""
    return int(len(rows))


def sqrt_of(name: str) -> SummaryFunction:
    """Summary returning the non-negative square root of an earlier summary."""
    def _sqrt(rows: pd.DataFrame, computed: Dict[str, Any]) -> float:
        return math.sqrt(computed[name])
    _sqrt.__name__ = f"sqrt_of_{name}"
    return _sqrt


def count_unique(column: str) -> SummaryFunction:
    """Summary counting distinct non-null values of a column."""
    def _nunique(rows: pd.DataFrame, computed: Dict[str, Any]) -> int:
        if column not in rows.columns:
            return 0
        return int(rows[column].nunique(dropna=True))
    _nunique.__name__ = f"count_unique_{column}"
    return _nunique


DEFAULT_SUMMARIES: Tuple[Tuple[str, SummaryFunction], ...] = (
    ("records", count_records),
    ("records_sqrt", sqrt_of("records")),
)


# ============================================================================
# Grouping
# ============================================================================

def group_by(table: pd.DataFrame, key: str) -> Iterator[Tuple[Hashable, pd.DataFrame]]:
    """
    Iterate over groups of rows sharing a key value.

    Groups are yielded in order of first appearance; rows with a null key
    (unmatched features from a left-outer join) belong to no group.

    Raises
    ------
    ValueError
        If key is not a column of table
    """
    if key not in table.columns:
        raise ValueError(f"Grouping column '{key}' not found in table")

    for value, rows in table.groupby(key, sort=False, dropna=True):
        yield value, rows


def summarize(rows: pd.DataFrame, summaries: Summaries = DEFAULT_SUMMARIES) -> Dict[str, Any]:
    """
    Evaluate summary functions on one group, in order.

    Parameters
    ----------
    rows : pd.DataFrame
        The group's rows (may be empty)
    summaries : sequence of (name, function)
        Summary functions; later ones may read earlier results

    Returns
    -------
    Dict[str, Any]
        Ordered mapping summary name -> value

    Examples
    --------
    >>> summarize(rows)
    OrderedDict([('records', 4), ('records_sqrt', 2.0)])
    """
    computed: Dict[str, Any] = OrderedDict()
    for name, fn in summaries:
        computed[name] = fn(rows, computed)
    return computed


# ============================================================================
# Region Aggregation
# ============================================================================

def aggregate_regions(
    joined: pd.DataFrame,
    regions: gpd.GeoDataFrame,
    key: str,
    summaries: Summaries = DEFAULT_SUMMARIES,
    include_empty: bool = False,
    keep_columns: Optional[Sequence[str]] = None,
) -> gpd.GeoDataFrame:
    """
    Summarize a joined table per region and attach the region polygons.

    Parameters
    ----------
    joined : pd.DataFrame
        Output of the spatial join, carrying the region key
    regions : gpd.GeoDataFrame
        Region polygons (pre-join) carrying the same key
    key : str
        Grouping attribute (e.g. 'STUSPS')
    summaries : sequence of (name, function)
        Summary functions (default: records, records_sqrt)
    include_empty : bool, default=False
        Add regions without joined rows, summaries evaluated on no rows
    keep_columns : sequence of str, optional
        Extra region attributes to carry over (e.g. ['NAME'])

    Returns
    -------
    gpd.GeoDataFrame
        One feature per region: key, keep_columns, summaries, geometry;
        in the order regions appear in the region layer and in its CRS

    Raises
    ------
    ValueError
        If key is missing from either input

    Notes
    -----
    If a key value appears on several region features, the first feature's
    geometry is used.
    """
    if key not in regions.columns:
        raise ValueError(f"Grouping column '{key}' not found in region layer")

    keep_columns = [c for c in (keep_columns or []) if c != key]
    missing = [c for c in keep_columns if c not in regions.columns]
    if missing:
        raise ValueError(f"Region layer is missing columns: {missing}")

    results = OrderedDict(
        (value, summarize(rows, summaries)) for value, rows in group_by(joined, key)
    )

    region_keys = set(regions[key].dropna())
    orphans = [value for value in results if value not in region_keys]
    if orphans:
        logger.warning(
            f"{len(orphans)} joined groups have no matching region polygon and were dropped: "
            f"{orphans[:10]}"
        )

    unique_regions = regions.drop_duplicates(subset=key, keep='first')
    unique_regions = unique_regions[unique_regions[key].notna()]

    if include_empty:
        empty = joined.iloc[0:0]
        n_empty = 0
        for value in unique_regions[key]:
            if value not in results:
                results[value] = summarize(empty, summaries)
                n_empty += 1
        logger.info(f"Added {n_empty} regions without records")
    else:
        unique_regions = unique_regions[unique_regions[key].isin(list(results))]

    summary_names = [name for name, _ in summaries]
    records = [
        [results[value][name] for name in summary_names]
        for value in unique_regions[key]
    ]
    summary_df = pd.DataFrame(records, columns=summary_names, index=unique_regions.index)

    geometry_name = regions.geometry.name
    out = pd.concat(
        [unique_regions[[key] + keep_columns], summary_df, unique_regions[[geometry_name]]],
        axis=1,
    )
    out = gpd.GeoDataFrame(out, geometry=geometry_name, crs=regions.crs).reset_index(drop=True)

    logger.info(f"Aggregated {len(joined)} joined rows into {len(out)} regions")
    return out


def get_region_counts(
    table: pd.DataFrame,
    key: str,
    sort_by: Optional[str] = 'count',
) -> Dict[Hashable, int]:
    """
    Count rows per region key.

    Parameters
    ----------
    table : pd.DataFrame
        Joined table
    key : str
        Region key column
    sort_by : str, default='count'
        Sort order: 'count' (descending), 'name' (alphabetical), or None

    Returns
    -------
    Dict[Hashable, int]
        Mapping region key -> number of rows

    Examples
    --------
    >>> get_region_counts(joined, "STUSPS")
    {'CA': 1204, 'TX': 877, 'FL': 650}
    """
    counts = {value: count_records(rows, {}) for value, rows in group_by(table, key)}

    if sort_by == 'count':
        counts = dict(sorted(counts.items(), key=lambda x: x[1], reverse=True))
    elif sort_by == 'name':
        counts = dict(sorted(counts.items(), key=lambda x: str(x[0])))

    return counts
