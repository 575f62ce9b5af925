"""
Shared fixtures: synthetic state layers and occurrence tables.

The synthetic "states" are 1 x 1 degree boxes laid out on an 8 x 6 grid
starting at (-110, 30), so neighbouring states share borders, plus three
detached boxes named Alaska, Hawaii and Puerto Rico.
"""

import logging

import matplotlib
matplotlib.use("Agg")

import pytest
import pandas as pd
import geopandas as gpd
from shapely.geometry import box


GRID_COLUMNS = 8
GRID_ROWS = 6
GRID_ORIGIN = (-110.0, 30.0)

DETACHED = [
    ("Alaska", "AK", box(-150.0, 60.0, -149.0, 61.0)),
    ("Hawaii", "HI", box(-156.0, 19.0, -155.0, 20.0)),
    ("Puerto Rico", "PR", box(-67.0, 18.0, -66.0, 19.0)),
]


def grid_cell_center(i):
    """Center (lon, lat) of the i-th grid state."""
    row, col = divmod(i, GRID_COLUMNS)
    return GRID_ORIGIN[0] + col + 0.5, GRID_ORIGIN[1] + row + 0.5


def make_states(crs="EPSG:4326", include_detached=True):
    names, abbrevs, geoms = [], [], []
    for i in range(GRID_COLUMNS * GRID_ROWS):
        row, col = divmod(i, GRID_COLUMNS)
        x0 = GRID_ORIGIN[0] + col
        y0 = GRID_ORIGIN[1] + row
        names.append(f"State {i:02d}")
        abbrevs.append(f"S{i:02d}")
        geoms.append(box(x0, y0, x0 + 1, y0 + 1))

    if include_detached:
        for name, abbrev, geom in DETACHED:
            names.append(name)
            abbrevs.append(abbrev)
            geoms.append(geom)

    return gpd.GeoDataFrame({'NAME': names, 'STUSPS': abbrevs}, geometry=geoms, crs=crs)


def make_occurrences(n=100, species=("Danaus plexippus", "Vanessa cardui", "Papilio glaucus")):
    """n records at grid cell centers, assigned round-robin to 48 states."""
    rows = []
    for i in range(n):
        lon, lat = grid_cell_center(i % (GRID_COLUMNS * GRID_ROWS))
        rows.append({
            'gbifID': str(1000 + i),
            'species': species[i % len(species)],
            'decimalLatitude': lat,
            'decimalLongitude': lon,
        })
    return pd.DataFrame(rows)


@pytest.fixture
def states():
    """51 synthetic states in WGS84."""
    return make_states()


@pytest.fixture
def contiguous_states():
    """The 48 grid states in WGS84."""
    return make_states(include_detached=False)


@pytest.fixture
def occurrence_df():
    return make_occurrences()


@pytest.fixture
def boundary_shapefile(tmp_path):
    """51 synthetic states written as a NAD83 shapefile."""
    path = tmp_path / "states.shp"
    make_states(crs="EPSG:4269").to_file(path)
    return path


@pytest.fixture
def occurrence_csv(tmp_path):
    path = tmp_path / "occurrences.csv"
    make_occurrences().to_csv(path, index=False)
    return path


def without_crs(gdf):
    """Copy of a layer with no coordinate reference system."""
    return gpd.GeoDataFrame(
        pd.DataFrame(gdf.drop(columns=gdf.geometry.name)),
        geometry=list(gdf.geometry),
    )


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by setup_logging during a test."""
    yield
    package_logger = logging.getLogger("speciesmap")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
