"""
Configuration Management for SpeciesMap

This module provides the configuration system for the state occurrence mapping
pipeline using frozen dataclasses. The configuration system supports:

1. Default parameter values for the contiguous United States workflow
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation at construction time
5. Hierarchical configuration with component-specific settings

Configuration Structure:
- BoundaryConfig: State boundary columns, target CRS and excluded regions
- OccurrenceConfig: Occurrence CSV columns and streaming parameters
- JoinConfig: Spatial join mode, predicate and overlap policy
- AggregationConfig: Grouping key and zero-count policy
- MapTheme: Shared visual styling applied to every rendered map
- VisualizationConfig: Map-specific styling, color scale and file names
- PipelineConfig: Master configuration combining all components

Key Design Principles:
- Immutable configuration objects (frozen dataclasses)
- The map theme is a value handed to each render call, never global state
- Easy override mechanism for custom runs

Example Usage:
    >>> from speciesmap.config import get_default_config, load_config_from_file
    >>>
    >>> config = get_default_config()
    >>> print(config.boundary.target_crs)
    4326
    >>>
    >>> config = load_config_from_file("my_run.yaml")
    >>>
    >>> custom_config = config.update(
    ...     aggregation__include_empty=True,
    ...     visualization__theme__dpi=150,
    ... )
"""

from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Union, Tuple
import os
import json
import logging

import yaml

logger = logging.getLogger(__name__)

# Regions outside the contiguous 48 states (plus DC) in Census boundary files
CONTIGUOUS_EXCLUSIONS: Tuple[str, ...] = ("Alaska", "Hawaii", "Puerto Rico")

JOIN_MODES = ("inner", "left-outer")
JOIN_PREDICATES = ("intersects", "within", "contains", "covered_by", "touches", "overlaps", "crosses")
TIE_BREAK_POLICIES = ("all", "first")

ENV_PREFIX = "SPECIESMAP_"


# ============================================================================
# Boundary Configuration
# ============================================================================

@dataclass(frozen=True)
class BoundaryConfig:
    """
    Configuration for loading and preparing state boundary polygons.

    Attributes
    ----------
    name_column : str
        Attribute holding the full region name (default: "NAME")

    abbreviation_column : str
        Attribute holding the postal abbreviation (default: "STUSPS")

    target_crs : Union[int, str]
        CRS every layer is reprojected to (default: 4326, WGS 84)

    excluded_regions : Tuple[str, ...]
        Values of name_column removed before the join
        (default: Alaska, Hawaii, Puerto Rico)

    layer : Optional[str]
        Layer name for multi-layer sources such as GeoPackages

    Notes
    -----
    The defaults match the US Census Bureau cartographic boundary files
    (cb_*_us_state_*.shp).
    """
    name_column: str = "NAME"
    abbreviation_column: str = "STUSPS"
    target_crs: Union[int, str] = 4326
    excluded_regions: Tuple[str, ...] = CONTIGUOUS_EXCLUSIONS
    layer: Optional[str] = None

    def __post_init__(self):
        """Validate configuration parameters."""
        if isinstance(self.excluded_regions, str):
            object.__setattr__(self, 'excluded_regions', (self.excluded_regions,))
        elif isinstance(self.excluded_regions, (list, set, frozenset)):
            object.__setattr__(self, 'excluded_regions', tuple(self.excluded_regions))
        if not self.name_column:
            raise ValueError("name_column must not be empty")
        if not self.abbreviation_column:
            raise ValueError("abbreviation_column must not be empty")
        if isinstance(self.target_crs, bool) or not isinstance(self.target_crs, (int, str)):
            raise ValueError("target_crs must be an EPSG code or a CRS string")


# ============================================================================
# Occurrence Configuration
# ============================================================================

@dataclass(frozen=True)
class OccurrenceConfig:
    """
    Configuration for reading the species occurrence table.

    Attributes
    ----------
    latitude_column : str
        Latitude column (default: "decimalLatitude", Darwin Core)

    longitude_column : str
        Longitude column (default: "decimalLongitude", Darwin Core)

    species_column : str
        Species name column (default: "species")

    separator : str
        Field delimiter (default: ",")

    encoding : str
        File encoding (default: "utf-8", falls back to latin-1)

    chunksize : int
        Rows per chunk when streaming the file (default: 100000)

    crs : Union[int, str]
        CRS of the raw coordinates (default: 4326)

    drop_duplicates : bool
        Drop fully duplicated rows after loading (default: False)
    """
    latitude_column: str = "decimalLatitude"
    longitude_column: str = "decimalLongitude"
    species_column: str = "species"
    separator: str = ","
    encoding: str = "utf-8"
    chunksize: int = 100_000
    crs: Union[int, str] = 4326
    drop_duplicates: bool = False

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.chunksize < 1:
            raise ValueError("chunksize must be at least 1")
        if not self.separator:
            raise ValueError("separator must not be empty")
        if self.latitude_column == self.longitude_column:
            raise ValueError("latitude_column and longitude_column must differ")


# ============================================================================
# Spatial Join Configuration
# ============================================================================

@dataclass(frozen=True)
class JoinConfig:
    """
    Configuration for matching occurrence points to state polygons.

    Attributes
    ----------
    how : str
        "inner" drops points outside every polygon, "left-outer" keeps them
        with null state attributes (default: "inner")

    predicate : str
        Geometric relationship tested against each polygon (default: "intersects")

    tie_break : str
        What to emit when a point matches several polygons:
        - "all": one output row per matching polygon (default)
        - "first": only the match with the lowest polygon position

    Notes
    -----
    "intersects" counts points lying exactly on a shared border. Combined
    with tie_break="all" such a point is counted once for each state it
    touches.
    """
    how: str = "inner"
    predicate: str = "intersects"
    tie_break: str = "all"

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.how not in JOIN_MODES:
            raise ValueError(f"how must be one of {JOIN_MODES}, got '{self.how}'")
        if self.predicate not in JOIN_PREDICATES:
            raise ValueError(f"Invalid predicate: {self.predicate}")
        if self.tie_break not in TIE_BREAK_POLICIES:
            raise ValueError(f"tie_break must be one of {TIE_BREAK_POLICIES}")


# ============================================================================
# Aggregation Configuration
# ============================================================================

@dataclass(frozen=True)
class AggregationConfig:
    """
    Configuration for per-state summaries.

    Attributes
    ----------
    group_key : str
        Attribute the joined table is grouped by (default: "STUSPS")

    include_empty : bool
        Keep states without any occurrence as records = 0 (default: False).
        When False, such states are absent from the color-coded layer and
        only appear as outlines.
    """
    group_key: str = "STUSPS"
    include_empty: bool = False

    def __post_init__(self):
        if not self.group_key:
            raise ValueError("group_key must not be empty")


# ============================================================================
# Visualization Configuration
# ============================================================================

@dataclass(frozen=True)
class MapTheme:
    """
    Visual styling shared by every rendered map.

    Attributes
    ----------
    background : str
        Figure and axes background color (default: "white")

    hide_axes : bool
        Suppress axis ticks, labels, spines and grid (default: True)

    font_family : str
        Font family (default: "sans-serif")

    title_size, subtitle_size, label_size, legend_size : int
        Font sizes in points

    figsize : Tuple[float, float]
        Figure size in inches (default: (12, 7))

    dpi : int
        Raster resolution (default: 300)
    """
    background: str = "white"
    hide_axes: bool = True
    font_family: str = "sans-serif"
    title_size: int = 18
    subtitle_size: int = 12
    label_size: int = 7
    legend_size: int = 9
    figsize: Tuple[float, float] = (12, 7)
    dpi: int = 300

    def __post_init__(self):
        """Validate configuration parameters."""
        if isinstance(self.figsize, list):
            object.__setattr__(self, 'figsize', tuple(self.figsize))
        if len(self.figsize) != 2 or min(self.figsize) <= 0:
            raise ValueError("figsize must be two positive numbers")
        if self.dpi < 50:
            raise ValueError("dpi must be at least 50")
        for name in ("title_size", "subtitle_size", "label_size", "legend_size"):
            if getattr(self, name) < 4:
                raise ValueError(f"{name} must be at least 4")


@dataclass(frozen=True)
class VisualizationConfig:
    """
    Configuration for the two output maps.

    Attributes
    ----------
    theme : MapTheme
        Shared styling passed to every render call

    heat_low_color, heat_high_color : str
        Endpoints of the state count color scale (default: white to amber)

    heat_column : str
        Summary column used to color states (default: "records_sqrt")

    state_fill_color, state_edge_color : str
        Base layer styling for state outlines

    point_size : float
        Marker size for occurrence points

    point_alpha : float
        Marker transparency

    top_n_species : int
        Species shown individually on the records map; the rest are "Other"

    species_map_filename, counts_map_filename : str
        Output file names
    """
    theme: MapTheme = field(default_factory=MapTheme)
    heat_low_color: str = "#FFFFFF"
    heat_high_color: str = "#FFBF00"
    heat_column: str = "records_sqrt"
    state_fill_color: str = "#F2F2F2"
    state_edge_color: str = "#7F7F7F"
    point_size: float = 6.0
    point_alpha: float = 0.7
    top_n_species: int = 8
    species_map_filename: str = "records_species_map.png"
    counts_map_filename: str = "state_counts_map.png"

    def __post_init__(self):
        """Validate configuration parameters."""
        if isinstance(self.theme, dict):
            object.__setattr__(self, 'theme', MapTheme(**self.theme))
        if not 0 <= self.point_alpha <= 1:
            raise ValueError("point_alpha must be between 0 and 1")
        if self.point_size <= 0:
            raise ValueError("point_size must be positive")
        if self.top_n_species < 1:
            raise ValueError("top_n_species must be at least 1")
        if self.species_map_filename == self.counts_map_filename:
            raise ValueError("species_map_filename and counts_map_filename must differ")


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for the complete SpeciesMap pipeline.

    Attributes
    ----------
    boundary : BoundaryConfig
    occurrence : OccurrenceConfig
    join : JoinConfig
    aggregation : AggregationConfig
    visualization : VisualizationConfig

    log_level : str
        Logging level (default: "INFO")

    output_dir : Path
        Base output directory (default: "results")
    """
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)
    occurrence: OccurrenceConfig = field(default_factory=OccurrenceConfig)
    join: JoinConfig = field(default_factory=JoinConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)
    log_level: str = "INFO"
    output_dir: Path = field(default_factory=lambda: Path("results"))

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.output_dir, str):
            object.__setattr__(self, 'output_dir', Path(self.output_dir))

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Create a new configuration with updated values.

        Supports nested updates using double underscore notation, at any
        depth: config.update(visualization__theme__dpi=150)

        Parameters
        ----------
        **kwargs
            Configuration parameters to update

        Returns
        -------
        PipelineConfig
            New configuration object with updates

        Raises
        ------
        ValueError
            If a key does not name an existing configuration field
        """
        config = self
        for key, value in kwargs.items():
            config = _replace_nested(config, key.split('__'), value)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a nested dictionary."""
        return asdict(self)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to YAML file.

        Parameters
        ----------
        output_path : Union[str, Path]
            Output file path
        """
        config_dict = _to_serializable(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {path}")

    def to_json(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to JSON file.

        Parameters
        ----------
        output_path : Union[str, Path]
            Output file path
        """
        config_dict = _to_serializable(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to {path}")


# ============================================================================
# Helper Functions
# ============================================================================

def _replace_nested(obj: Any, parts: List[str], value: Any) -> Any:
    """Return a copy of a dataclass tree with one (possibly nested) field replaced."""
    name = parts[0]
    if not hasattr(obj, '__dataclass_fields__') or name not in obj.__dataclass_fields__:
        raise ValueError(f"Unknown configuration key: {'__'.join(parts)}")
    if len(parts) == 1:
        return replace(obj, **{name: value})
    return replace(obj, **{name: _replace_nested(getattr(obj, name), parts[1:], value)})


def get_default_config() -> PipelineConfig:
    """
    Get default pipeline configuration.

    Examples
    --------
    >>> config = get_default_config()
    >>> config.aggregation.group_key
    'STUSPS'
    """
    return PipelineConfig()


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Automatically detects file format based on extension. Sections that are
    missing from the file keep their defaults.

    Parameters
    ----------
    config_path : Union[str, Path]
        Path to configuration file (.yaml, .yml, or .json)

    Returns
    -------
    PipelineConfig
        Loaded configuration

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ValueError
        If file format is not supported
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
    elif suffix == '.json':
        with open(path, 'r') as f:
            config_dict = json.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}")

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict)


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """
    Convert dictionary to PipelineConfig object.

    Handles nested configuration structures; list values are converted to
    tuples by the component __post_init__ hooks.
    """
    config_dict = dict(config_dict)
    sections = {
        'boundary': BoundaryConfig,
        'occurrence': OccurrenceConfig,
        'join': JoinConfig,
        'aggregation': AggregationConfig,
        'visualization': VisualizationConfig,
    }

    nested_configs = {}
    for name, cls in sections.items():
        if name in config_dict:
            nested_configs[name] = cls(**(config_dict.pop(name) or {}))

    return PipelineConfig(**nested_configs, **config_dict)


def _to_serializable(obj: Any) -> Any:
    """Recursively convert Path objects and tuples for YAML/JSON output."""
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _to_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_to_serializable(item) for item in obj]
    else:
        return obj


def load_config_from_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Environment variables should be prefixed with SPECIESMAP_ and use double
    underscores for nesting:

    SPECIESMAP_AGGREGATION__INCLUDE_EMPTY=true
    SPECIESMAP_VISUALIZATION__THEME__DPI=150

    Returns
    -------
    Dict[str, Any]
        Configuration overrides suitable for PipelineConfig.update()

    Examples
    --------
    >>> overrides = load_config_from_env({'SPECIESMAP_LOG_LEVEL': 'DEBUG'})
    >>> config = get_default_config().update(**overrides)
    """
    environ = os.environ if environ is None else environ
    overrides = {}

    for key, value in environ.items():
        if key.startswith(ENV_PREFIX):
            config_key = key[len(ENV_PREFIX):].lower()
            overrides[config_key] = _parse_env_value(value)

    if overrides:
        logger.debug(f"Loaded {len(overrides)} configuration overrides from environment")

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ['true', 'yes']:
        return True
    if value.lower() in ['false', 'no']:
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    # Comma-separated lists, e.g. excluded regions. A bare "," stays a separator.
    if ',' in value:
        items = tuple(item.strip() for item in value.split(',') if item.strip())
        if items:
            return items

    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Checks for settings that are legal but probably unintended.

    Parameters
    ----------
    config : PipelineConfig
        Configuration to validate

    Returns
    -------
    List[str]
        List of warning messages (empty if no issues)
    """
    warnings = []

    if config.aggregation.group_key not in (
        config.boundary.abbreviation_column, config.boundary.name_column
    ):
        warnings.append(
            f"Grouping key '{config.aggregation.group_key}' is neither the boundary "
            "name nor abbreviation column; make sure it exists in the boundary file."
        )

    if config.join.how == "left-outer":
        warnings.append(
            "Left-outer join keeps points outside every state; they are excluded "
            "from per-state counts."
        )

    if config.join.predicate != "intersects" and config.join.tie_break == "all":
        warnings.append(
            f"Predicate '{config.join.predicate}' may drop points lying exactly on "
            "a state border."
        )

    if str(config.boundary.target_crs) not in ("4326", "EPSG:4326"):
        warnings.append(
            f"Target CRS {config.boundary.target_crs} is not WGS 84; occurrence "
            "coordinates will be reprojected before the join."
        )

    if config.visualization.theme.dpi > 600:
        warnings.append(
            f"dpi ({config.visualization.theme.dpi}) is very high; output images "
            "will be large."
        )

    return warnings


def create_config_template(output_path: Union[str, Path], format: str = "yaml") -> None:
    """
    Write the default configuration to a file for editing.

    Parameters
    ----------
    output_path : Union[str, Path]
        Output file path
    format : str
        File format: "yaml" or "json" (default: "yaml")
    """
    config = get_default_config()

    if format.lower() == "yaml":
        config.to_yaml(output_path)
    elif format.lower() == "json":
        config.to_json(output_path)
    else:
        raise ValueError(f"Unsupported format: {format}")

    logger.info(f"Created configuration template: {output_path}")
