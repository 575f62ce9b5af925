"""
Static Map Rendering

This module composes geometry layers into static raster maps. A map is a
list of LayerSpec values drawn in order onto one matplotlib axes, styled by
a MapTheme value that is passed explicitly to every call.

Figure Types:
1. Records by Species Map (records_species_map.png)
   - State outlines as a light base layer
   - Occurrence points colored by species
   - Less frequent species grouped as "Other"
   - Legend with species colors

2. State Counts Map (state_counts_map.png)
   - Choropleth of per-state record counts (square-root scaled)
   - Sequential color scale from white to amber
   - State abbreviations as text labels
   - Colorbar legend

Layer kinds:
- "polygon": filled polygons, optionally color-encoded by a column
- "point": markers, optionally color-encoded by a column
- "label": text placed at each feature's representative point

Design Specifications:
- Later layers are drawn on top (z-order follows list position)
- Numeric color columns use a continuous colormap and a colorbar
- Text color columns use a colorblind-friendly categorical palette and a legend
- Theme font settings are applied inside a matplotlib rc_context so nothing
  leaks into other figures
- Default size 12 x 7 inches at 300 DPI

Example Usage:
    >>> from speciesmap.visualization import LayerSpec, render_map
    >>> from speciesmap.config import MapTheme
    >>> render_map(
    ...     [LayerSpec(states, kind="polygon", facecolor="#F2F2F2"),
    ...      LayerSpec(points, kind="point", column="species", legend=True)],
    ...     "map.png",
    ...     theme=MapTheme(dpi=150),
    ...     title="Occurrence records",
    ... )
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union
from pathlib import Path
import logging

import pandas as pd
import geopandas as gpd
from matplotlib.lines import Line2D
import matplotlib.pyplot as plt
import matplotlib.colors as mcolors
import seaborn as sns

from .config import MapTheme
from .exceptions import RenderError

logger = logging.getLogger(__name__)

LAYER_KINDS = ("polygon", "point", "label")
OTHER_CATEGORY = "Other"
OTHER_COLOR = "#BDBDBD"


@dataclass(frozen=True)
class LayerSpec:
    """
    One layer of a map and how to draw it.

    Attributes
    ----------
    data : gpd.GeoDataFrame
        Features to draw
    kind : str
        "polygon", "point" or "label"
    facecolor, edgecolor : str
        Fill and outline colors (ignored for encoded fills)
    alpha : float
        Transparency
    size : float
        Line width for polygons, marker area for points, font size for
        labels (labels fall back to the theme's label_size)
    column : Optional[str]
        Attribute used for color encoding
    cmap : Optional[Union[str, mcolors.Colormap]]
        Colormap for numeric encodings
    label_column : Optional[str]
        Attribute providing label text (kind="label")
    legend : bool
        Draw a legend (categorical) or colorbar (numeric)
    legend_title : Optional[str]
        Legend title or colorbar label
    """
    data: gpd.GeoDataFrame
    kind: str = "polygon"
    facecolor: str = "none"
    edgecolor: str = "black"
    alpha: float = 1.0
    size: Optional[float] = None
    column: Optional[str] = None
    cmap: Optional[Union[str, mcolors.Colormap]] = None
    label_column: Optional[str] = None
    legend: bool = False
    legend_title: Optional[str] = None


# ============================================================================
# Colors
# ============================================================================

def get_category_colors(n_categories: int) -> List[str]:
    """
    Generate colorblind-friendly color palette for categories.

    Parameters
    ----------
    n_categories : int
        Number of categories to assign colors

    Returns
    -------
    List[str]
        List of hex color codes
    """
    if n_categories <= 0:
        return []
    palette = sns.color_palette("colorblind", 10).as_hex()
    if n_categories > len(palette):
        palette = sns.color_palette("husl", n_categories).as_hex()
    return palette[:n_categories]


def make_sequential_cmap(low_color: str, high_color: str, name: str = "speciesmap_heat") -> mcolors.Colormap:
    """Two-color linear colormap, e.g. white to amber."""
    return mcolors.LinearSegmentedColormap.from_list(name, [low_color, high_color])


def _is_numeric(series: pd.Series) -> bool:
    return pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series)


# ============================================================================
# Layer Drawing
# ============================================================================

def _draw_polygons(ax, layer: LayerSpec, zorder: int, theme: MapTheme) -> None:
    linewidth = layer.size if layer.size is not None else 0.5
    if layer.column is None:
        layer.data.plot(
            ax=ax, facecolor=layer.facecolor, edgecolor=layer.edgecolor,
            linewidth=linewidth, alpha=layer.alpha, zorder=zorder,
        )
        return

    values = layer.data[layer.column]
    if _is_numeric(values):
        layer.data.plot(
            ax=ax, column=layer.column, cmap=layer.cmap or "viridis",
            edgecolor=layer.edgecolor, linewidth=linewidth, alpha=layer.alpha,
            zorder=zorder, legend=layer.legend,
            legend_kwds={"label": layer.legend_title or layer.column, "shrink": 0.6},
        )
    else:
        categories = sorted(values.dropna().astype(str).unique())
        colors = dict(zip(categories, get_category_colors(len(categories))))
        for category in categories:
            sub = layer.data[values.astype(str) == category]
            sub.plot(
                ax=ax, facecolor=colors[category], edgecolor=layer.edgecolor,
                linewidth=linewidth, alpha=layer.alpha, zorder=zorder, label=category,
            )
        if layer.legend:
            _add_category_legend(ax, colors, layer.legend_title, theme, marker="s")


def _draw_points(ax, layer: LayerSpec, zorder: int, theme: MapTheme) -> None:
    size = layer.size if layer.size is not None else 8.0
    xs = layer.data.geometry.x
    ys = layer.data.geometry.y

    if layer.column is None:
        ax.scatter(
            xs, ys, s=size, color=layer.facecolor, alpha=layer.alpha,
            edgecolors=layer.edgecolor, linewidths=0.2, zorder=zorder,
        )
        return

    values = layer.data[layer.column]
    if _is_numeric(values):
        sc = ax.scatter(
            xs, ys, s=size, c=values, cmap=layer.cmap or "viridis", alpha=layer.alpha,
            edgecolors=layer.edgecolor, linewidths=0.2, zorder=zorder,
        )
        if layer.legend:
            cbar = ax.figure.colorbar(sc, ax=ax, shrink=0.6)
            cbar.set_label(layer.legend_title or layer.column, fontsize=theme.legend_size)
        return

    labels = values.fillna(OTHER_CATEGORY).astype(str)
    categories = [c for c in sorted(labels.unique()) if c != OTHER_CATEGORY]
    colors = dict(zip(categories, get_category_colors(len(categories))))
    if (labels == OTHER_CATEGORY).any():
        colors[OTHER_CATEGORY] = OTHER_COLOR

    for category, color in colors.items():
        mask = (labels == category).to_numpy()
        ax.scatter(
            xs[mask], ys[mask], s=size, color=color, alpha=layer.alpha, label=category,
            edgecolors=layer.edgecolor, linewidths=0.2, zorder=zorder,
        )
    if layer.legend:
        _add_category_legend(ax, colors, layer.legend_title, theme, marker="o")


def _draw_labels(ax, layer: LayerSpec, zorder: int, theme: MapTheme) -> None:
    if layer.label_column is None or layer.label_column not in layer.data.columns:
        raise RenderError(f"Label layer needs an existing label_column, got '{layer.label_column}'")

    fontsize = layer.size if layer.size is not None else theme.label_size
    for geom, text in zip(layer.data.geometry, layer.data[layer.label_column]):
        if geom is None or geom.is_empty or pd.isna(text):
            continue
        anchor = geom.representative_point()
        ax.annotate(
            str(text), xy=(anchor.x, anchor.y), ha="center", va="center",
            fontsize=fontsize, color=layer.edgecolor, alpha=layer.alpha, zorder=zorder,
        )


def _add_category_legend(ax, colors: Dict[str, str], title: Optional[str], theme: MapTheme, marker: str) -> None:
    handles = [
        Line2D(
            [], [], marker=marker, linestyle="", markersize=7,
            markerfacecolor=color, markeredgecolor="black", markeredgewidth=0.3, label=name,
        )
        for name, color in colors.items()
    ]
    ax.legend(
        handles=handles, title=title, loc="lower left", bbox_to_anchor=(1.02, 0.0),
        frameon=False, fontsize=theme.legend_size, title_fontsize=theme.legend_size,
    )


_DRAWERS = {
    "polygon": _draw_polygons,
    "point": _draw_points,
    "label": _draw_labels,
}


# ============================================================================
# Map Composition
# ============================================================================

def render_map(
    layers: Sequence[LayerSpec],
    output_path: Union[str, Path],
    theme: MapTheme,
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> Path:
    """
    Draw layers in order and write the map to a raster file.

    Parameters
    ----------
    layers : Sequence[LayerSpec]
        Layers, bottom first
    output_path : str or Path
        Destination file (format from suffix, e.g. .png)
    theme : MapTheme
        Shared styling (background, fonts, figure size, dpi)
    title : str, optional
        Map title
    subtitle : str, optional
        Smaller line under the title

    Returns
    -------
    Path
        Path of the written image

    Raises
    ------
    RenderError
        If no layers are given, a layer kind is unknown, or the output
        path cannot be written in a format matplotlib supports
    """
    if not layers:
        raise RenderError("Cannot render a map without layers")
    for layer in layers:
        if layer.kind not in LAYER_KINDS:
            raise RenderError(f"Unknown layer kind '{layer.kind}'; expected one of {LAYER_KINDS}")

    out = Path(output_path)
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RenderError(f"Cannot create output directory {out.parent}: {e}") from e

    rc = {
        "font.family": theme.font_family,
        "axes.facecolor": theme.background,
        "figure.facecolor": theme.background,
        "savefig.facecolor": theme.background,
    }

    with plt.rc_context(rc):
        fig, ax = plt.subplots(figsize=theme.figsize)
        try:
            for zorder, layer in enumerate(layers, start=1):
                if len(layer.data) == 0:
                    logger.debug(f"Skipping empty {layer.kind} layer")
                    continue
                _DRAWERS[layer.kind](ax, layer, zorder, theme)

            if theme.hide_axes:
                ax.set_axis_off()

            if title:
                fig.suptitle(title, fontsize=theme.title_size, x=0.02, ha="left")
            if subtitle:
                ax.set_title(subtitle, fontsize=theme.subtitle_size, loc="left", color="#4D4D4D")

            try:
                fig.savefig(out, dpi=theme.dpi, bbox_inches="tight")
            except (OSError, ValueError) as e:
                # ValueError: unsupported image format suffix
                raise RenderError(f"Cannot write map to {out}: {e}") from e
        finally:
            plt.close(fig)

    logger.info(f"Saved map: {out}")
    return out


# ============================================================================
# Pipeline Maps
# ============================================================================

def plot_records_species_map(
    states: gpd.GeoDataFrame,
    points: gpd.GeoDataFrame,
    output_path: Union[str, Path],
    theme: MapTheme,
    species_col: str = "species",
    top_n: int = 8,
    state_fill_color: str = "#F2F2F2",
    state_edge_color: str = "#7F7F7F",
    point_size: float = 6.0,
    point_alpha: float = 0.7,
    title: str = "Occurrence records",
    subtitle: Optional[str] = None,
) -> Path:
    """
    Map occurrence points over state outlines, colored by species.

    The top_n most frequent species get their own color; the rest are drawn
    in grey as "Other".

    Parameters
    ----------
    states : gpd.GeoDataFrame
        State polygons (same CRS as points)
    points : gpd.GeoDataFrame
        Occurrence points with a species column
    output_path : str or Path
        Output image path
    theme : MapTheme
        Shared styling
    species_col : str
        Species column (default: 'species')
    top_n : int
        Number of species shown individually (default: 8)

    Returns
    -------
    Path
        Path of the written image
    """
    if species_col not in points.columns:
        raise ValueError(f"Column '{species_col}' not found in dataframe")

    counts = points[species_col].dropna().value_counts()
    top = sorted(counts.items(), key=lambda x: (-x[1], str(x[0])))[:top_n]
    top_species = {name for name, _ in top}

    shown = points[[species_col, points.geometry.name]].copy()
    shown["_species_group"] = shown[species_col].where(
        shown[species_col].isin(top_species), OTHER_CATEGORY
    )

    if subtitle is None:
        subtitle = f"{len(points):,} records, {counts.size:,} species"

    layers = [
        LayerSpec(states, kind="polygon", facecolor=state_fill_color,
                  edgecolor=state_edge_color, size=0.5),
        LayerSpec(shown, kind="point", column="_species_group", size=point_size,
                  alpha=point_alpha, edgecolor="none", legend=True, legend_title="Species"),
    ]
    return render_map(layers, output_path, theme, title=title, subtitle=subtitle)


def plot_state_counts_map(
    summary: gpd.GeoDataFrame,
    states: gpd.GeoDataFrame,
    output_path: Union[str, Path],
    theme: MapTheme,
    value_col: str = "records_sqrt",
    label_col: Optional[str] = "STUSPS",
    low_color: str = "#FFFFFF",
    high_color: str = "#FFBF00",
    state_edge_color: str = "#7F7F7F",
    title: str = "Occurrence records per state",
    subtitle: Optional[str] = None,
) -> Path:
    """
    Choropleth of per-state summaries with abbreviation labels.

    All states are drawn as outlines first, so states missing from the
    summary (no records) remain visible but uncolored.

    Parameters
    ----------
    summary : gpd.GeoDataFrame
        Output of aggregate_regions
    states : gpd.GeoDataFrame
        Full state layer used as the base
    output_path : str or Path
        Output image path
    theme : MapTheme
        Shared styling
    value_col : str
        Summary column that drives the fill (default: 'records_sqrt')
    label_col : str, optional
        Column with label text (default: 'STUSPS'); None disables labels
    low_color, high_color : str
        Color scale endpoints (default: white to amber)

    Returns
    -------
    Path
        Path of the written image
    """
    if value_col not in summary.columns:
        raise ValueError(f"Column '{value_col}' not found in dataframe")

    if subtitle is None and "records" in summary.columns:
        subtitle = f"{int(summary['records'].sum()):,} records in {len(summary)} states"

    legend_title = "sqrt(records)" if value_col == "records_sqrt" else value_col
    layers = [
        LayerSpec(states, kind="polygon", facecolor="white", edgecolor=state_edge_color, size=0.5),
        LayerSpec(summary, kind="polygon", column=value_col,
                  cmap=make_sequential_cmap(low_color, high_color),
                  edgecolor=state_edge_color, size=0.5, legend=True, legend_title=legend_title),
    ]
    if label_col is not None and label_col in summary.columns:
        layers.append(LayerSpec(summary, kind="label", label_column=label_col, edgecolor="#333333"))

    return render_map(layers, output_path, theme, title=title, subtitle=subtitle)
