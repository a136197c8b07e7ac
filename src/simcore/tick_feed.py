"""
Tick Feed
=========
Market data input for the simulation core:
- PriceTick events and their validation
- Parsing of raw feed payloads (plain or exchange mini-ticker keys)
- OHLCV loading from CSV/DataFrame
- ReplayFeed turning historical bars into a tick stream
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union
import math

import pandas as pd

from .errors import ValidationError

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']


@dataclass(frozen=True)
class PriceTick:
    """A single price/volume observation for a symbol"""
    symbol: str
    price: float
    volume: float
    timestamp: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


def to_datetime(value) -> datetime:
    """
    Coerce a timestamp to a datetime.

    Accepts datetime, pandas Timestamp, ISO strings and epoch
    numbers (milliseconds when larger than 1e11, else seconds).
    """
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        return pd.Timestamp(value).to_pydatetime()
    raise ValidationError(f"Unsupported timestamp: {value!r}")


def validate_tick(tick: PriceTick) -> PriceTick:
    """
    Check a tick before it enters the pipeline.

    Raises:
        ValidationError: empty symbol, non-finite or non-positive price,
            negative volume, or missing timestamp
    """
    if not isinstance(tick.symbol, str) or not tick.symbol.strip():
        raise ValidationError(f"Tick has no symbol: {tick!r}")
    try:
        price = float(tick.price)
        volume = float(tick.volume)
    except (TypeError, ValueError):
        raise ValidationError(f"{tick.symbol}: price/volume are not numeric")
    if not math.isfinite(price) or price <= 0:
        raise ValidationError(f"{tick.symbol}: price must be positive, got {tick.price}")
    if not math.isfinite(volume) or volume < 0:
        raise ValidationError(f"{tick.symbol}: volume must be non-negative, got {tick.volume}")
    if not isinstance(tick.timestamp, datetime):
        raise ValidationError(f"{tick.symbol}: timestamp must be a datetime")
    return tick


def parse_tick(payload: Dict) -> PriceTick:
    """
    Build a PriceTick from a raw feed payload.

    Supports {symbol, price, volume, timestamp} and the exchange
    mini-ticker layout {s, c, v, E}.

    Raises:
        ValidationError: payload is missing fields or holds bad values
    """
    try:
        if 's' in payload and 'c' in payload:
            symbol = payload['s']
            price = float(payload['c'])
            volume = float(payload.get('v', 0))
            raw_ts = payload.get('E')
        else:
            symbol = payload['symbol']
            price = float(payload['price'])
            volume = float(payload.get('volume', 0))
            raw_ts = payload.get('timestamp')
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed tick payload {payload!r}: {e}")

    timestamp = to_datetime(raw_ts) if raw_ts is not None else datetime.now(timezone.utc)
    tick = PriceTick(symbol=str(symbol).upper(), price=price, volume=volume, timestamp=timestamp)
    return validate_tick(tick)


def load_ohlcv(source: Union[str, Path, pd.DataFrame, List[dict]], symbol: str = None) -> pd.DataFrame:
    """
    Load and normalize OHLCV bars.

    Args:
        source: CSV path, DataFrame or list of bar dicts
        symbol: Symbol assigned when the data has no 'symbol' column

    Returns:
        DataFrame with timestamp/open/high/low/close/volume/symbol columns,
        timestamps as pandas datetimes, in stable timestamp order
    """
    if isinstance(source, (str, Path)):
        df = pd.read_csv(source)
        logger.info(f"Loaded {len(df)} bars from {source}")
    elif isinstance(source, pd.DataFrame):
        df = source.copy()
    else:
        df = pd.DataFrame(list(source))

    df.columns = [str(c).lower() for c in df.columns]
    if 'timestamp' not in df.columns:
        for alt in ('date', 'time', 'datetime'):
            if alt in df.columns:
                df = df.rename(columns={alt: 'timestamp'})
                break

    if 'close' not in df.columns or 'timestamp' not in df.columns:
        raise ValidationError("OHLCV data needs at least 'timestamp' and 'close' columns")

    for col in ('open', 'high', 'low'):
        if col not in df.columns:
            df[col] = df['close']
    if 'volume' not in df.columns:
        df['volume'] = 0.0
    if 'symbol' not in df.columns:
        df['symbol'] = (symbol or 'UNKNOWN').upper()

    df['timestamp'] = pd.to_datetime(df['timestamp'])
    df = df.sort_values('timestamp', kind='mergesort').reset_index(drop=True)
    return df[OHLCV_COLUMNS + ['symbol']]


class ReplayFeed:
    """
    Replays OHLCV bars as a stream of PriceTicks.

    Each bar becomes one tick at its close price. Rows keep their
    timestamp order, symbols interleaved as they appear.
    """

    def __init__(self, bars: Union[str, Path, pd.DataFrame, List[dict]], symbol: str = None):
        """
        Initialize ReplayFeed.

        Args:
            bars: Anything load_ohlcv accepts
            symbol: Symbol for single-symbol data without a 'symbol' column
        """
        self.bars = load_ohlcv(bars, symbol=symbol)
        logger.info(f"[OK] ReplayFeed initialized ({len(self.bars)} bars, "
                    f"symbols: {', '.join(self.symbols)})")

    @property
    def symbols(self) -> List[str]:
        return sorted(self.bars['symbol'].unique().tolist())

    def __len__(self) -> int:
        return len(self.bars)

    def __iter__(self) -> Iterator[PriceTick]:
        for row in self.bars.itertuples(index=False):
            yield PriceTick(
                symbol=row.symbol,
                price=float(row.close),
                volume=float(row.volume),
                timestamp=row.timestamp.to_pydatetime()
            )

    def first_tick(self) -> Optional[PriceTick]:
        return next(iter(self), None)
