from datetime import datetime
from typing import List, Optional

from perpsim.schemas.common import CamelModel
from perpsim.schemas.position import PositionOut


class TokenOut(CamelModel):
    id: str
    symbol: str
    name: str
    image: Optional[str] = None
    current_price: Optional[float] = None
    price_change_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None
    is_pinned: bool = False
    last_updated: Optional[datetime] = None


class Candle(CamelModel):
    t: int
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float


class Indicators(CamelModel):
    ema20: Optional[float] = None
    ema50: Optional[float] = None
    rsi14: Optional[float] = None


class TradeViewOut(CamelModel):
    token: TokenOut
    timeframe: str
    candles: List[Candle]
    indicators: Indicators
    positions: List[PositionOut]
    balance: float
