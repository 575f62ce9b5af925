"""
SpeciesMap: Occurrence Records Mapped onto the Contiguous United States

SpeciesMap is a Python package that takes a state boundary dataset and a
table of species occurrence records (GBIF-style decimalLatitude /
decimalLongitude) and produces per-state record counts and two static maps.

Core functionality includes:
- Boundary loading, reprojection to WGS84 and removal of non-contiguous regions
- Occurrence CSV loading with coordinate validation
- Point-in-polygon spatial join of records to states
- Per-state record counts (records, records_sqrt)
- Species point map and state count choropleth rendering
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import exceptions
from . import config
from . import occurrences
from . import geographic
from . import aggregation
from . import visualization
from . import utils

__all__ = [
    "exceptions",
    "config",
    "occurrences",
    "geographic",
    "aggregation",
    "visualization",
    "utils",
]
