"""
Tabular report output (CSV or Excel).
"""

import logging
from pathlib import Path
from typing import Any, Dict, Sequence

import pandas as pd

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


def write_table(rows: Sequence[Dict[str, Any]], columns: Sequence[str], path: str, sheet_name: str = "report") -> Path:
    """
    Write rows to a CSV or Excel file, chosen by the file extension.
    
    Args:
        rows: Row dictionaries
        columns: Column order; missing keys become empty cells
        path: Output file path
        sheet_name: Sheet name for Excel output
        
    Returns:
        Path of the written file
    """
    out = Path(path)
    if out.parent and not out.parent.exists():
        out.parent.mkdir(parents=True, exist_ok=True)
    
    columns = list(columns)
    df = pd.DataFrame([{c: row.get(c, "") for c in columns} for row in rows], columns=columns)
    
    if out.suffix.lower() in EXCEL_SUFFIXES:
        df.to_excel(out, index=False, sheet_name=sheet_name, engine="openpyxl")
    else:
        df.to_csv(out, index=False)
    
    logger.info(f"Wrote {len(df)} rows to {out}")
    return out
