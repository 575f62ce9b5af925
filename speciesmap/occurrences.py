"""
Occurrence Table Parsing

This module reads species occurrence exports (GBIF / Darwin Core style CSV
files) into a pandas DataFrame ready for point geometrization.

Key Responsibilities:
1. Stream large delimited files in chunks so that only the rows that survive
   coordinate filtering are held in memory
2. Validate that the header contains the required coordinate columns
3. Coerce decimalLatitude/decimalLongitude to floats and drop rows where
   either is missing or non-numeric
4. Report data quality statistics (rows read, rows dropped, species present)

Important Notes:
- All non-coordinate columns are kept as raw strings.
- Dropping rows with unusable coordinates is a data-quality filter and is
  always logged with counts; it never raises.
- Structurally invalid files (rows longer than the header, empty file,
  missing coordinate columns in the header) raise ParseError.
- Rows shorter than the header are read with the trailing fields missing;
  a row cut off before its coordinates is dropped as a missing coordinate.

Example Usage:
    >>> from speciesmap.occurrences import load_occurrences, get_species_counts
    >>> df = load_occurrences("occurrences.csv")
    >>> get_species_counts(df, top_n=3)
    {'Danaus plexippus': 812, 'Vanessa cardui': 455, 'Papilio glaucus': 301}
"""

from typing import Dict, List, Optional, Union
from pathlib import Path
import logging
import warnings

import numpy as np
import pandas as pd

from .exceptions import LoadError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_LATITUDE_COLUMN = "decimalLatitude"
DEFAULT_LONGITUDE_COLUMN = "decimalLongitude"
DEFAULT_SPECIES_COLUMN = "species"

STAGE = "occurrence_loader"


# ============================================================================
# Occurrence CSV Parsing
# ============================================================================

def load_occurrences(
    csv_path: Union[str, Path],
    latitude_column: str = DEFAULT_LATITUDE_COLUMN,
    longitude_column: str = DEFAULT_LONGITUDE_COLUMN,
    species_column: Optional[str] = DEFAULT_SPECIES_COLUMN,
    sep: str = ",",
    encoding: str = "utf-8",
    usecols: Optional[List[str]] = None,
    chunksize: int = 100_000,
    drop_duplicates: bool = False,
) -> pd.DataFrame:
    """
    Parse an occurrence CSV and keep only records with numeric coordinates.

    Parameters
    ----------
    csv_path : Union[str, Path]
        Path to the delimited occurrence file (header row required)
    latitude_column : str
        Latitude column name (default: 'decimalLatitude')
    longitude_column : str
        Longitude column name (default: 'decimalLongitude')
    species_column : Optional[str]
        Species column used for quality statistics. Missing species column
        is logged, not an error.
    sep : str
        Field delimiter (default: ',')
    encoding : str
        File encoding (default: 'utf-8', falls back to 'latin-1' if needed)
    usecols : Optional[List[str]]
        Subset of columns to read. Coordinate columns are always added.
    chunksize : int
        Rows per chunk (default: 100000)
    drop_duplicates : bool
        Drop fully duplicated records after loading (default: False)

    Returns
    -------
    pd.DataFrame
        Records with float coordinate columns and string metadata columns,
        indexed 0..n-1 in file order

    Raises
    ------
    LoadError
        If the file does not exist or cannot be read
    ParseError
        If the file is empty, lacks the coordinate columns, or has
        rows with more fields than the header

    Examples
    --------
    >>> df = load_occurrences("occurrences.csv")
    >>> df[['species', 'decimalLatitude', 'decimalLongitude']].head()
    """
    path = Path(csv_path)

    if not path.exists():
        raise LoadError(f"Occurrence file not found: {path}", stage=STAGE)

    required = [latitude_column, longitude_column]
    if usecols is not None:
        usecols = list(dict.fromkeys(list(usecols) + required))

    logger.info(f"Reading occurrence file: {path}")

    try:
        chunks, stats = _read_filtered_chunks(
            path, required, sep, encoding, usecols, chunksize
        )
    except UnicodeDecodeError:
        logger.warning(f"{encoding} decoding failed, trying latin-1")
        chunks, stats = _read_filtered_chunks(
            path, required, sep, 'latin-1', usecols, chunksize
        )

    df = pd.concat(chunks, ignore_index=True)

    if drop_duplicates:
        n_before = len(df)
        df = df.drop_duplicates(ignore_index=True)
        stats['duplicates_dropped'] = n_before - len(df)

    stats['records_kept'] = len(df)
    _log_data_quality(df, stats, species_column)

    return df


def _read_filtered_chunks(
    path: Path,
    required: List[str],
    sep: str,
    encoding: str,
    usecols: Optional[List[str]],
    chunksize: int,
):
    """Stream the file chunk by chunk, dropping unusable coordinates as we go."""
    stats = {
        'rows_read': 0,
        'missing_coordinates': 0,
        'non_numeric_coordinates': 0,
    }
    chunks = []

    try:
        with warnings.catch_warnings():
            # index_col=False reports rows longer than the header as ParserWarning
            warnings.simplefilter("error", pd.errors.ParserWarning)
            reader = pd.read_csv(
                path,
                sep=sep,
                encoding=encoding,
                dtype=str,  # Read all as strings initially
                usecols=usecols,
                index_col=False,
                chunksize=chunksize,
            )
            with reader:
                for i, chunk in enumerate(reader):
                    if i == 0:
                        validate_required_columns(chunk, required)
                    stats['rows_read'] += len(chunk)
                    chunks.append(_filter_coordinates(chunk, required, stats))
    except pd.errors.ParserWarning as e:
        raise ParseError(
            f"Malformed occurrence file {path}: rows have more fields than the header ({e})",
            stage=STAGE,
        ) from e
    except pd.errors.EmptyDataError as e:
        raise ParseError(f"Occurrence file is empty: {path}", stage=STAGE) from e
    except pd.errors.ParserError as e:
        raise ParseError(f"Malformed occurrence file {path}: {e}", stage=STAGE) from e
    except UnicodeDecodeError:
        raise
    except ValueError as e:
        # usecols naming columns that are absent from the header
        raise ParseError(f"Cannot read occurrence file {path}: {e}", stage=STAGE) from e
    except OSError as e:
        raise LoadError(f"Cannot open occurrence file {path}: {e}", stage=STAGE) from e

    if stats['rows_read'] == 0:
        raise ParseError(f"Occurrence file has a header but no records: {path}", stage=STAGE)

    return chunks, stats


def _filter_coordinates(chunk: pd.DataFrame, required: List[str], stats: Dict[str, int]) -> pd.DataFrame:
    """Coerce coordinate columns to float and drop rows that are not numeric."""
    keep = pd.Series(True, index=chunk.index)
    for col in required:
        raw = chunk[col].str.strip()
        missing = (raw.isna() | (raw == '')).fillna(True).astype(bool)
        numeric = pd.Series(
            pd.to_numeric(raw, errors='coerce').to_numpy(dtype=float, na_value=np.nan),
            index=raw.index,
        ).replace([np.inf, -np.inf], np.nan)
        non_numeric = ~missing & numeric.isna()

        stats['missing_coordinates'] += int((missing & keep).sum())
        stats['non_numeric_coordinates'] += int((non_numeric & keep).sum())

        chunk[col] = numeric
        keep &= numeric.notna()

    return chunk[keep]


def validate_required_columns(
    df: pd.DataFrame,
    required_columns: List[str]
) -> bool:
    """
    Validate that DataFrame contains required columns.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to validate
    required_columns : List[str]
        List of required column names

    Returns
    -------
    bool
        True if all required columns present

    Raises
    ------
    ParseError
        If any required columns are missing
    """
    missing_columns = [col for col in required_columns if col not in df.columns]

    if missing_columns:
        available_cols = sorted(df.columns.tolist())
        logger.error(
            f"Missing required columns: {missing_columns}\n"
            f"Available columns: {available_cols[:20]}..."
        )
        raise ParseError(
            f"Occurrence file is missing required columns: {missing_columns}. "
            f"Found {len(df.columns)} columns total.",
            stage=STAGE,
        )

    logger.debug(f"All required columns present: {required_columns}")
    return True


def _log_data_quality(
    df: pd.DataFrame,
    stats: Dict[str, int],
    species_column: Optional[str],
) -> None:
    """Log data quality statistics for an occurrence table."""
    stats = dict(stats)
    stats['total_columns'] = len(df.columns)

    if species_column is not None:
        if species_column in df.columns:
            stats['species_present'] = int(df[species_column].notna().sum())
            stats['distinct_species'] = int(df[species_column].nunique())
        else:
            logger.warning(f"Species column '{species_column}' not found")

    dropped = stats['missing_coordinates'] + stats['non_numeric_coordinates']
    if dropped:
        logger.warning(
            f"Dropped {dropped}/{stats['rows_read']} records without numeric coordinates"
        )

    logger.info("Data quality summary:")
    for key, value in stats.items():
        logger.info(f"  {key}: {value}")


# ============================================================================
# Summaries
# ============================================================================

def get_species_counts(
    df: pd.DataFrame,
    species_column: str = DEFAULT_SPECIES_COLUMN,
    top_n: Optional[int] = None,
) -> Dict[str, int]:
    """
    Count records per species, most frequent first.

    Ties are ordered by species name so the result is deterministic.

    Parameters
    ----------
    df : pd.DataFrame
        Occurrence table
    species_column : str
        Species column (default: 'species')
    top_n : Optional[int]
        Only return the top_n most frequent species

    Returns
    -------
    Dict[str, int]
        Mapping species name -> record count

    Examples
    --------
    >>> get_species_counts(df, top_n=2)
    {'Danaus plexippus': 812, 'Vanessa cardui': 455}
    """
    if species_column not in df.columns:
        raise ValueError(f"Species column '{species_column}' not found in DataFrame")

    counts = df[species_column].dropna().value_counts()
    ordered = sorted(counts.items(), key=lambda x: (-x[1], str(x[0])))
    if top_n is not None:
        ordered = ordered[:top_n]

    return {name: int(n) for name, n in ordered}
