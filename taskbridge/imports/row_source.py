"""
Read uploaded return reports (.xlsx/.xls, .csv, .xml) into plain row dicts.

Cells pandas reads as missing (NaN/NaT) come back as None. Headers are kept
as they appear in the file; normalization resolves the variants.
"""

import os
from io import BytesIO
from typing import Dict, List

import pandas as pd

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xls", ".csv", ".xml")


class UnsupportedFormatError(ValueError):
    pass


def _dataframe_from_bytes(content: bytes, extension: str) -> pd.DataFrame:
    buffer = BytesIO(content)
    if extension in (".xlsx", ".xls"):
        # first sheet, header on the first row
        return pd.read_excel(buffer, sheet_name=0, engine="openpyxl" if extension == ".xlsx" else None)
    if extension == ".csv":
        # keep text as text so "R$ 1.234,56" and leading zeros survive
        return pd.read_csv(buffer, dtype=str, keep_default_na=True, skipinitialspace=True)
    if extension == ".xml":
        return pd.read_xml(buffer, parser="etree")
    raise UnsupportedFormatError(
        f"Unsupported file format '{extension}'. Use {', '.join(SUPPORTED_EXTENSIONS)}"
    )


def dataframe_to_rows(df: pd.DataFrame) -> List[Dict]:
    """DataFrame -> list of dicts with None for missing cells and stripped header names."""
    df = df.rename(columns=lambda c: str(c).strip())
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def read_rows(content: bytes, filename: str) -> List[Dict]:
    """
    Parse an uploaded file into row dicts.

    Raises:
        UnsupportedFormatError: unknown extension
        ValueError: file could not be read or has no rows
    """
    extension = os.path.splitext(filename or "")[1].lower()
    try:
        df = _dataframe_from_bytes(content, extension)
    except UnsupportedFormatError:
        raise
    except Exception as e:
        logger.warning("Failed to read import file", filename=filename, error=str(e), error_type=type(e).__name__)
        raise ValueError(f"Could not read {filename}: {e}") from e

    rows = dataframe_to_rows(df)
    if not rows:
        raise ValueError("File is empty or unreadable")
    logger.info("Import file read", filename=filename, rows=len(rows), columns=len(df.columns))
    return rows
