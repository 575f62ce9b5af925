"""
Unit tests for speciesmap.config module.

Tests defaults, validation, nested updates, file round trips and
environment overrides.
"""

import json
from pathlib import Path

import pytest
import yaml

from speciesmap import config
from speciesmap.config import (
    BoundaryConfig,
    JoinConfig,
    MapTheme,
    PipelineConfig,
    VisualizationConfig,
    get_default_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)


class TestDefaults:

    def test_default_values(self):
        cfg = get_default_config()

        assert cfg.boundary.target_crs == 4326
        assert cfg.boundary.excluded_regions == ("Alaska", "Hawaii", "Puerto Rico")
        assert cfg.occurrence.latitude_column == "decimalLatitude"
        assert cfg.occurrence.longitude_column == "decimalLongitude"
        assert cfg.join.how == "inner"
        assert cfg.join.tie_break == "all"
        assert cfg.aggregation.group_key == "STUSPS"
        assert cfg.aggregation.include_empty is False
        assert cfg.visualization.theme.figsize == (12, 7)
        assert cfg.visualization.heat_low_color == "#FFFFFF"
        assert cfg.visualization.heat_high_color == "#FFBF00"
        assert cfg.visualization.species_map_filename == "records_species_map.png"
        assert cfg.visualization.counts_map_filename == "state_counts_map.png"
        assert cfg.output_dir == Path("results")

    def test_frozen(self):
        cfg = get_default_config()
        with pytest.raises(AttributeError):
            cfg.log_level = "DEBUG"

    def test_defaults_produce_no_warnings(self):
        assert validate_config(get_default_config()) == []


class TestValidation:

    def test_invalid_join_mode(self):
        with pytest.raises(ValueError, match="how"):
            JoinConfig(how="outer")

    def test_invalid_tie_break(self):
        with pytest.raises(ValueError):
            JoinConfig(tie_break="random")

    def test_low_dpi(self):
        with pytest.raises(ValueError, match="dpi"):
            MapTheme(dpi=10)

    def test_same_output_filenames(self):
        with pytest.raises(ValueError):
            VisualizationConfig(species_map_filename="map.png", counts_map_filename="map.png")

    def test_excluded_regions_normalized(self):
        assert BoundaryConfig(excluded_regions=["Alaska"]).excluded_regions == ("Alaska",)
        assert BoundaryConfig(excluded_regions="Hawaii").excluded_regions == ("Hawaii",)

    def test_invalid_log_level(self):
        with pytest.raises(ValueError):
            PipelineConfig(log_level="LOUD")

    def test_warnings(self):
        cfg = get_default_config().update(join__how="left-outer", visualization__theme__dpi=1200)
        warnings = validate_config(cfg)
        assert any("Left-outer" in w for w in warnings)
        assert any("dpi" in w for w in warnings)


class TestUpdate:

    def test_nested_update(self):
        cfg = get_default_config().update(
            aggregation__include_empty=True,
            visualization__theme__dpi=150,
            output_dir="maps",
        )

        assert cfg.aggregation.include_empty is True
        assert cfg.visualization.theme.dpi == 150
        assert cfg.output_dir == Path("maps")

    def test_original_unchanged(self):
        cfg = get_default_config()
        cfg.update(join__tie_break="first")
        assert cfg.join.tie_break == "all"

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration key"):
            get_default_config().update(join__colour="red")

    def test_update_is_validated(self):
        with pytest.raises(ValueError):
            get_default_config().update(join__how="sideways")


class TestFiles:

    def test_yaml_roundtrip(self, tmp_path):
        cfg = get_default_config().update(visualization__theme__dpi=120, join__tie_break="first")
        path = tmp_path / "config.yaml"
        cfg.to_yaml(path)

        loaded = load_config_from_file(path)
        assert loaded == cfg

    def test_json_roundtrip(self, tmp_path):
        cfg = get_default_config().update(boundary__excluded_regions=("Alaska",))
        path = tmp_path / "config.json"
        cfg.to_json(path)

        with open(path) as f:
            data = json.load(f)
        assert data["boundary"]["excluded_regions"] == ["Alaska"]
        assert load_config_from_file(path) == cfg

    def test_partial_yaml(self, tmp_path):
        path = tmp_path / "partial.yml"
        path.write_text(yaml.safe_dump({"aggregation": {"include_empty": True}}))

        cfg = load_config_from_file(path)
        assert cfg.aggregation.include_empty is True
        assert cfg.join == JoinConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config_from_file(path)

    def test_template(self, tmp_path):
        path = tmp_path / "template.yaml"
        config.create_config_template(path)
        assert load_config_from_file(path) == get_default_config()


class TestEnvironment:

    def test_env_overrides(self):
        environ = {
            "SPECIESMAP_AGGREGATION__INCLUDE_EMPTY": "true",
            "SPECIESMAP_VISUALIZATION__THEME__DPI": "150",
            "SPECIESMAP_BOUNDARY__EXCLUDED_REGIONS": "Alaska, Hawaii",
            "SPECIESMAP_JOIN__TIE_BREAK": "first",
            "PATH": "/usr/bin",
        }
        overrides = load_config_from_env(environ)

        assert overrides == {
            "aggregation__include_empty": True,
            "visualization__theme__dpi": 150,
            "boundary__excluded_regions": ("Alaska", "Hawaii"),
            "join__tie_break": "first",
        }

        cfg = get_default_config().update(**overrides)
        assert cfg.visualization.theme.dpi == 150
        assert cfg.boundary.excluded_regions == ("Alaska", "Hawaii")

    def test_comma_separator_not_split(self):
        overrides = load_config_from_env({"SPECIESMAP_OCCURRENCE__SEPARATOR": ","})
        assert overrides == {"occurrence__separator": ","}

        cfg = get_default_config().update(**overrides)
        assert cfg.occurrence.separator == ","

    def test_single_item_list(self):
        overrides = load_config_from_env({"SPECIESMAP_BOUNDARY__EXCLUDED_REGIONS": "Alaska,"})
        assert overrides == {"boundary__excluded_regions": ("Alaska",)}

    def test_no_overrides(self):
        assert load_config_from_env({"HOME": "/root"}) == {}
