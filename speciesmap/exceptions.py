"""
Exception Hierarchy for SpeciesMap

Every failure the pipeline can raise derives from SpeciesMapError and carries
the name of the stage that failed, so the command-line interface can report
where a run stopped without inspecting the exception type.

Error Taxonomy:
- LoadError: input file missing, unreadable, or without usable geometry
- ParseError: delimited text with an invalid structure
- ReprojectionError: undefined or unsupported coordinate reference system
- GeometrizationError: coordinate columns absent from the occurrence table
- JoinError: spatial join operands in different coordinate reference systems
- RenderError: no layers to draw or an unwritable output path
"""

from typing import Optional


class SpeciesMapError(Exception):
    """Base class for all pipeline errors."""

    stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class LoadError(SpeciesMapError):
    """Raised when an input file cannot be found or read."""
    stage = "load"


class ParseError(SpeciesMapError):
    """Raised when a delimited file is structurally invalid."""
    stage = "parse"


class ReprojectionError(SpeciesMapError):
    """Raised when a coordinate reference system is undefined or unsupported."""
    stage = "reproject"


class GeometrizationError(SpeciesMapError):
    """Raised when point geometries cannot be built from a table."""
    stage = "geometrize"


class JoinError(SpeciesMapError):
    """Raised when spatial join operands do not share a CRS."""
    stage = "spatial_join"


class RenderError(SpeciesMapError):
    """Raised when a map cannot be drawn or written."""
    stage = "render"
