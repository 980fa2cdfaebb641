from __future__ import annotations

from pathlib import Path
from typing import List

import pandas as pd
from loguru import logger

from tradeflex.core.types import Bar, to_decimal

log = logger.bind(component="data")

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close", "volume")


def read_frame(path: str | Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"bar file not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df = pd.read_parquet(path)
    elif suffix in (".csv", ".txt"):
        df = pd.read_csv(path)
    else:
        raise ValueError(f"unsupported bar file format '{suffix}' (expected .csv or .parquet)")

    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name} is missing columns: {', '.join(missing)}")

    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df.sort_values("timestamp", kind="stable").reset_index(drop=True)


def load_bars(path: str | Path, symbol: str) -> List[Bar]:
    """Load OHLCV rows for one symbol, ordered by timestamp, prices as Decimal."""
    df = read_frame(path)
    bars = [
        Bar(
            symbol=symbol,
            timestamp=row.timestamp.to_pydatetime(),
            open=to_decimal(str(row.open)),
            high=to_decimal(str(row.high)),
            low=to_decimal(str(row.low)),
            close=to_decimal(str(row.close)),
            volume=to_decimal(str(row.volume)),
        )
        for row in df.itertuples(index=False)
    ]
    log.info(f"Loaded {len(bars)} bars for {symbol} from {path}")
    return bars
