"""
Unit tests for geographic.py module.

Tests boundary loading, reprojection, region filtering, point creation and
spatial joins using small synthetic layers written to temporary files.
"""

import pytest
import pandas as pd
import numpy as np
import geopandas as gpd
from shapely.geometry import Point, box

from speciesmap import geographic
from speciesmap.exceptions import (
    LoadError, ReprojectionError, GeometrizationError, JoinError,
)

from conftest import grid_cell_center, without_crs


# ============================================================================
# Boundary Loader
# ============================================================================

class TestLoadBoundaries:
    """Tests for reading boundary files."""

    def test_load_shapefile(self, boundary_shapefile):
        gdf = geographic.load_boundaries(boundary_shapefile, name_column="NAME")

        assert isinstance(gdf, gpd.GeoDataFrame)
        assert len(gdf) == 51
        assert {'NAME', 'STUSPS'} <= set(gdf.columns)
        assert gdf.crs.to_epsg() == 4269

    def test_load_geojson(self, tmp_path, states):
        path = tmp_path / "states.geojson"
        states.to_file(path, driver="GeoJSON")

        gdf = geographic.load_boundaries(path)
        assert len(gdf) == 51
        assert gdf.crs.to_epsg() == 4326

    def test_missing_file(self, tmp_path):
        with pytest.raises(LoadError) as exc_info:
            geographic.load_boundaries(tmp_path / "nope.shp")

        assert exc_info.value.stage == "boundary_loader"
        assert "not found" in str(exc_info.value)

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "broken.geojson"
        path.write_text("this is not geojson")

        with pytest.raises(LoadError):
            geographic.load_boundaries(path)

    def test_missing_name_column(self, boundary_shapefile):
        with pytest.raises(LoadError, match="STATE_NAME"):
            geographic.load_boundaries(boundary_shapefile, name_column="STATE_NAME")

    def test_describe_crs(self, states):
        assert geographic.describe_crs(states) == "EPSG:4326"
        assert geographic.describe_crs(without_crs(states)) == "undefined"


# ============================================================================
# Reprojector
# ============================================================================

class TestReproject:
    """Tests for CRS transformation."""

    def test_reproject_to_wgs84(self, boundary_shapefile):
        gdf = geographic.load_boundaries(boundary_shapefile)
        out = geographic.reproject(gdf, 4326)

        assert out.crs.to_epsg() == 4326
        assert len(out) == len(gdf)
        assert list(out['STUSPS']) == list(gdf['STUSPS'])

    def test_same_crs_returns_unchanged_copy(self, states):
        out = geographic.reproject(states, 4326)

        assert out is not states
        assert out.geom_equals(states).all()

    def test_reprojection_roundtrip_keeps_geometry(self, states):
        projected = geographic.reproject(states, 5070)
        back = geographic.reproject(projected, 4326)

        assert projected.crs.to_epsg() == 5070
        assert np.allclose(back.total_bounds, states.total_bounds, atol=1e-6)

    def test_undefined_crs(self, states):
        no_crs = without_crs(states)

        with pytest.raises(ReprojectionError) as exc_info:
            geographic.reproject(no_crs, 4326)
        assert exc_info.value.stage == "reproject"

    def test_unsupported_target(self, states):
        with pytest.raises(ReprojectionError):
            geographic.reproject(states, "EPSG:999999")


# ============================================================================
# Region Filter
# ============================================================================

class TestFilterRegions:
    """Tests for attribute-based exclusion."""

    def test_excludes_non_contiguous(self, states):
        out = geographic.filter_regions(states, "NAME", {"Alaska", "Hawaii", "Puerto Rico"})

        assert len(out) == 48
        assert not out['NAME'].isin(["Alaska", "Hawaii", "Puerto Rico"]).any()

    def test_order_preserved(self, states):
        out = geographic.filter_regions(states, "NAME", {"State 03"})
        expected = [n for n in states['NAME'] if n != "State 03"]
        assert list(out['NAME']) == expected

    def test_absent_values_ignored(self, states):
        out = geographic.filter_regions(states, "NAME", {"Atlantis"})
        assert len(out) == len(states)

    def test_empty_exclusion_set(self, states):
        out = geographic.filter_regions(states, "NAME", set())
        assert len(out) == len(states)
        assert out is not states

    def test_missing_column(self, states):
        with pytest.raises(ValueError, match="REGION"):
            geographic.filter_regions(states, "REGION", {"Alaska"})


# ============================================================================
# Point Geometrizer
# ============================================================================

class TestCreatePoints:
    """Tests for building point geometries from coordinate columns."""

    def test_basic(self, occurrence_df):
        gdf = geographic.create_points_geodataframe(occurrence_df)

        assert len(gdf) == len(occurrence_df)
        assert gdf.crs.to_epsg() == 4326
        assert (gdf.geom_type == "Point").all()
        # x is longitude, y is latitude
        assert gdf.geometry.iloc[0].x == occurrence_df['decimalLongitude'].iloc[0]
        assert gdf.geometry.iloc[0].y == occurrence_df['decimalLatitude'].iloc[0]

    def test_attributes_kept(self, occurrence_df):
        gdf = geographic.create_points_geodataframe(occurrence_df)
        assert list(gdf['species']) == list(occurrence_df['species'])

    def test_drop_coordinate_columns(self, occurrence_df):
        gdf = geographic.create_points_geodataframe(occurrence_df, keep_coordinates=False)
        assert 'decimalLatitude' not in gdf.columns
        assert 'decimalLongitude' not in gdf.columns

    def test_missing_column(self):
        df = pd.DataFrame({'decimalLatitude': [40.0]})

        with pytest.raises(GeometrizationError, match="decimalLongitude") as exc_info:
            geographic.create_points_geodataframe(df)
        assert exc_info.value.stage == "geometrize"

    def test_invalid_values_dropped(self, caplog):
        df = pd.DataFrame({
            'decimalLatitude': [40.0, None, 'abc', 95.0],
            'decimalLongitude': [-100.0, -100.0, -100.0, -100.0],
        })

        with caplog.at_level("WARNING", logger="speciesmap.geographic"):
            gdf = geographic.create_points_geodataframe(df)

        assert len(gdf) == 1
        assert gdf.geometry.iloc[0].equals(Point(-100.0, 40.0))
        assert "out of range" in caplog.text

    def test_projected_crs_skips_range_check(self):
        df = pd.DataFrame({'x': [500000.0], 'y': [4000000.0]})
        gdf = geographic.create_points_geodataframe(df, lon_col='x', lat_col='y', crs=5070)
        assert len(gdf) == 1
        assert gdf.crs.to_epsg() == 5070

    def test_bad_crs(self, occurrence_df):
        with pytest.raises(GeometrizationError):
            geographic.create_points_geodataframe(occurrence_df, crs="not a crs")


# ============================================================================
# Spatial Join Engine
# ============================================================================

class TestSpatialJoin:
    """Tests for point-in-polygon joins."""

    @pytest.fixture
    def two_states(self):
        return gpd.GeoDataFrame(
            {'STUSPS': ['AA', 'BB']},
            geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)],
            crs=4326,
        )

    @pytest.fixture
    def points(self):
        return gpd.GeoDataFrame(
            {'id': ['inside_a', 'border', 'outside', 'inside_b']},
            geometry=[Point(0.5, 0.5), Point(1.0, 0.5), Point(5.0, 5.0), Point(1.5, 0.5)],
            crs=4326,
        )

    def test_inner_join_ties_all(self, points, two_states):
        joined = geographic.spatial_join(points, two_states)

        # border point matches both states; outside point is dropped
        assert list(joined['id']) == ['inside_a', 'border', 'border', 'inside_b']
        assert list(joined['STUSPS']) == ['AA', 'AA', 'BB', 'BB']
        assert list(joined.index) == [0, 1, 2, 3]
        assert '_left_order' not in joined.columns
        assert 'index_right' not in joined.columns

    def test_tie_break_first(self, points, two_states):
        joined = geographic.spatial_join(points, two_states, tie_break='first')

        assert list(joined['id']) == ['inside_a', 'border', 'inside_b']
        assert list(joined['STUSPS']) == ['AA', 'AA', 'BB']

    def test_left_outer_keeps_unmatched(self, points, two_states):
        joined = geographic.spatial_join(points, two_states, how='left-outer', tie_break='first')

        assert list(joined['id']) == ['inside_a', 'border', 'outside', 'inside_b']
        assert pd.isna(joined.loc[joined['id'] == 'outside', 'STUSPS']).all()

    def test_within_excludes_border(self, points, two_states):
        joined = geographic.spatial_join(points, two_states, predicate='within')
        assert list(joined['id']) == ['inside_a', 'inside_b']

    def test_keeps_left_geometry(self, points, two_states):
        joined = geographic.spatial_join(points, two_states)
        assert (joined.geom_type == "Point").all()
        assert joined.crs.to_epsg() == 4326

    def test_right_columns(self, contiguous_states):
        x, y = grid_cell_center(9)
        pts = gpd.GeoDataFrame({'n': [1]}, geometry=[Point(x, y)], crs=4326)

        joined = geographic.spatial_join(pts, contiguous_states, right_columns=['STUSPS'])
        assert 'NAME' not in joined.columns
        assert joined['STUSPS'].iloc[0] == 'S09'

    def test_crs_mismatch(self, points, two_states):
        with pytest.raises(JoinError, match="CRS mismatch") as exc_info:
            geographic.spatial_join(points, two_states.to_crs(3857))
        assert exc_info.value.stage == "spatial_join"

    def test_missing_crs(self, points, two_states):
        with pytest.raises(JoinError):
            geographic.spatial_join(without_crs(points), two_states)

    def test_invalid_how(self, points, two_states):
        with pytest.raises(ValueError):
            geographic.spatial_join(points, two_states, how='outer')

    def test_every_contained_point_matches_its_state(self, contiguous_states):
        centers = [grid_cell_center(i) for i in range(48)]
        pts = gpd.GeoDataFrame(
            {'n': range(48)},
            geometry=[Point(x, y) for x, y in centers],
            crs=4326,
        )

        joined = geographic.spatial_join(pts, contiguous_states)
        assert len(joined) == 48
        assert list(joined['STUSPS']) == [f"S{i:02d}" for i in range(48)]
