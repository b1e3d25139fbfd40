import json

import pandas as pd
import pytest

from scripts import update_symbols


def test_build_symbols_dedupes_and_sorts() -> None:
    df = pd.DataFrame({
        "instrument_token": ["1", "2", "3", "4", "5"],
        "tradingsymbol": ["TCS", " INFY ", "TCS", "SBIN", ""],
        "name": ["TCS OLD", "INFOSYS", "TATA CONSULTANCY", "SBI", "BLANK"],
        "exchange": ["NSE", "NSE", "NSE", "BSE", "NSE"],
    })

    symbols = update_symbols.build_symbols(df)

    assert symbols == [
        {"symbol": "INFY", "name": "INFOSYS", "exchange": "NSE"},
        {"symbol": "SBIN", "name": "SBI", "exchange": "BSE"},
        {"symbol": "TCS", "name": "TATA CONSULTANCY", "exchange": "NSE"},
    ]


def test_build_symbols_missing_columns() -> None:
    with pytest.raises(ValueError):
        update_symbols.build_symbols(pd.DataFrame({"symbol": ["TCS"]}))


def test_main_writes_json(tmp_path, monkeypatch) -> None:
    source = tmp_path / "instruments.csv"
    source.write_text("tradingsymbol,name,exchange\nTCS,TATA CONSULTANCY,NSE\n", encoding="utf-8")
    output = tmp_path / "out" / "symbols.json"
    monkeypatch.setattr(
        "sys.argv", ["update_symbols", "--source", str(source), "--output", str(output)],
    )

    update_symbols.main()

    assert json.loads(output.read_text(encoding="utf-8")) == [
        {"symbol": "TCS", "name": "TATA CONSULTANCY", "exchange": "NSE"},
    ]
