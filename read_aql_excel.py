"""Convert an AQL reference workbook into a sampling-plan JSON file.

The sheet is expected to hold a header row with a sample-size column (e.g.
"Sample Size" or "n") followed by one column per quality level ("1.0%",
"1.5", ...), each cell an "Ac/Re" pair such as "1/2".  Blank cells mean the
level is not stocked for that sample size.

Usage: python read_aql_excel.py <workbook.xlsx|.csv> [--sheet NAME] [--out plan.json]
"""

import argparse
import json
import sys
from pathlib import Path

import pandas as pd
from marshmallow import ValidationError

from qcengine.models.sampling_plan import SamplingPlan

SAMPLE_SIZE_HEADERS = ("sample size", "sample_size", "samplesize", "n")


def _normalize_level(raw) -> str:
    """Level label such as "1.0%" from a header cell like "1", "0.65" or "1.5%"."""
    text = str(raw).strip().rstrip("%").strip()
    try:
        number = f"{float(text):g}"
    except ValueError:
        return str(raw).strip()
    if "." not in number:
        number += ".0"
    return number + "%"


def _find_header_row(df: pd.DataFrame):
    for i in range(len(df)):
        row = df.iloc[i].astype(str).str.strip().str.lower()
        if row.isin(SAMPLE_SIZE_HEADERS).any():
            return i
    return None


def frame_to_plan(df: pd.DataFrame) -> dict:
    """Turn a raw sheet (no header inference) into {bucket: {level: "Ac/Re"}}."""
    header_row = _find_header_row(df)
    if header_row is None:
        raise ValueError("No 'Sample Size' header found")

    header = df.iloc[header_row].astype(str).str.strip()
    size_col = header.str.lower().isin(SAMPLE_SIZE_HEADERS).idxmax()

    plan = {}
    for _, row in df.iloc[header_row + 1:].iterrows():
        size = pd.to_numeric(row[size_col], errors="coerce")
        if pd.isna(size):
            continue
        levels = {}
        for col, label in header.items():
            if col == size_col or not label or label.lower() == "nan":
                continue
            cell = row[col]
            if pd.isna(cell) or not str(cell).strip():
                continue
            levels[_normalize_level(label)] = str(cell).strip().replace(" ", "")
        plan[str(int(size))] = levels
    return plan


def read_sheet(path: Path, sheet_name=None) -> pd.DataFrame:
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path, header=None, dtype=str)
    xls = pd.ExcelFile(path)
    sheet = sheet_name or xls.sheet_names[0]
    print(f"Reading sheet: {sheet}")
    return pd.read_excel(xls, sheet_name=sheet, header=None, dtype=str)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("path", help="AQL workbook (.xlsx) or .csv export")
    parser.add_argument("--sheet", help="sheet name (default: first sheet)")
    parser.add_argument("--out", default="sampling_plan.json", help="output JSON path")
    args = parser.parse_args()

    path = Path(args.path)
    if not path.exists():
        print(f"Error: File not found -> {path}")
        sys.exit(1)

    try:
        df = read_sheet(path, args.sheet)
    except Exception as exc:
        print(f"Failed to open {path}: {exc}")
        sys.exit(1)

    try:
        plan = SamplingPlan.from_dict(frame_to_plan(df))
    except (ValueError, ValidationError) as exc:
        print(f"Sheet is not a valid sampling plan: {exc}")
        sys.exit(1)

    out_path = Path(args.out)
    out_path.write_text(json.dumps(plan.to_dict(), indent=2), encoding="utf-8")
    print(f"(saved: {out_path}) buckets: {', '.join(str(b) for b in plan.buckets)}")


if __name__ == "__main__":
    main()
