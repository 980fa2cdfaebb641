from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, PositiveInt, field_validator


class GeneralConfig(BaseModel):
    seed: int = 42
    symbol: str = "BTC/USD"
    capital: Decimal = Field(default=Decimal("100000"), ge=0)
    # Optional [start, end] replay window (ISO timestamps, UTC)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timeframe: str = "1m"

    @field_validator("start", "end")
    @classmethod
    def _utc_window(cls, v: Optional[datetime], info) -> Optional[datetime]:
        # Naive timestamps are read as UTC, like bar timestamps
        if v is not None and v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if info.field_name != "end":
            return v
        start = info.data.get("start")
        if v is not None and start is not None and v < start:
            raise ValueError("general.end must not precede general.start")
        return v


class DataConfig(BaseModel):
    provider: Literal["random_walk", "file"] = "random_walk"
    path: Optional[str] = None
    # Random-walk parameters (ignored for file data)
    bars: PositiveInt = 2000
    start_price: Decimal = Field(default=Decimal("30000"), gt=0)
    steps_per_bar: PositiveInt = 20
    drift: float = 0.0
    volatility: float = Field(default=0.02, gt=0)


class BrokerConfig(BaseModel):
    fee_rate: Decimal = Field(default=Decimal("0.005"), ge=0, lt=1)
    verbose: bool = False


class StrategyConfig(BaseModel):
    name: str = "sma"
    params: Dict[str, Any] = Field(default_factory=dict)


class OptimizerConfig(BaseModel):
    top_n: PositiveInt = 10
    rank_by: str = "total_return_pct"
    max_workers: Optional[PositiveInt] = None
    # Per-strategy axis overrides, e.g. {"sma": {"fast_period": [3, 5], "slow_period": [20, 50]}}
    grids: Dict[str, Dict[str, List[Any]]] = Field(default_factory=dict)


class BacktestReportConfig(BaseModel):
    output_dir: str = "logs/reports"


class BacktestConfig(BaseModel):
    report: BacktestReportConfig = Field(default_factory=BacktestReportConfig)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)

    @staticmethod
    def load(path: str | Path) -> "AppConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return AppConfig(**data)
