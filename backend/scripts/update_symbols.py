"""Build symbols.json from an instruments CSV

Usage:
    # from a published CSV (e.g. a Google Sheets export)
    python -m scripts.update_symbols --source "https://.../export?format=csv"

    # from a local Kite instruments dump
    python -m scripts.update_symbols --source instruments.csv --output data/symbols.json
"""

import argparse
import json
import logging
from io import StringIO
from pathlib import Path

import pandas as pd
import requests

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("update_symbols")


def read_csv(source: str) -> pd.DataFrame:
    """CSV from a URL or local path"""
    if source.startswith(("http://", "https://")):
        resp = requests.get(
            source,
            headers={"User-Agent": "Mozilla/5.0", "Accept": "text/csv,*/*"},
            timeout=60,
        )
        resp.raise_for_status()
        return pd.read_csv(StringIO(resp.text), dtype=str)
    return pd.read_csv(source, dtype=str)


def build_symbols(df: pd.DataFrame) -> list[dict]:
    """[{symbol, name, exchange}] deduped on exchange:symbol, sorted by symbol"""
    missing = {"tradingsymbol", "exchange", "name"} - set(df.columns)
    if missing:
        raise ValueError(f"CSV is missing columns: {sorted(missing)}")

    out = pd.DataFrame({
        "symbol": df["tradingsymbol"].fillna("").str.strip(),
        "name": df["name"].fillna("").str.strip(),
        "exchange": df["exchange"].fillna("").str.strip(),
    })
    out = out[(out["symbol"] != "") & (out["exchange"] != "") & (out["name"] != "")]
    out = out.drop_duplicates(subset=["exchange", "symbol"], keep="last")
    out = out.sort_values("symbol", kind="stable")
    return out.to_dict(orient="records")


def main() -> None:
    parser = argparse.ArgumentParser(description="Build symbols.json")
    parser.add_argument("--source", required=True, help="CSV URL or path")
    parser.add_argument("--output", default="data/symbols.json", help="output JSON path")
    args = parser.parse_args()

    symbols = build_symbols(read_csv(args.source))
    if not symbols:
        raise SystemExit("No rows found (check column names)")

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(symbols, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Wrote %d symbols to %s", len(symbols), output)


if __name__ == "__main__":
    main()
