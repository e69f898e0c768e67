import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from quotes_exporter.errors import InvalidQuoteValue, UpstreamProtocolError


class AssetType(str, Enum):
    # valores são os prefixos aceitos em ?symbols=stock:AAA,BBB
    STOCK = "stock"
    MUTUAL_FUND = "fund"


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    name: str
    price: float
    volume: Optional[float] = None


class SymbolGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_type: AssetType
    symbols: Tuple[str, ...]


class QuoteRequest(BaseModel):
    """Forma já interpretada de uma chamada a /price. Vive só durante a requisição."""

    model_config = ConfigDict(frozen=True)

    groups: Tuple[SymbolGroup, ...]

    def lookups(self) -> Iterator[Tuple[AssetType, str]]:
        for group in self.groups:
            for symbol in group.symbols:
                yield group.asset_type, symbol

    @property
    def count(self) -> int:
        return sum(len(g.symbols) for g in self.groups)


@dataclass(frozen=True)
class QuoteOutcome:
    """Resultado de uma tentativa: `quote` no sucesso, `error` na falha."""

    asset_type: AssetType
    symbol: str
    quote: Optional[Quote] = None
    error: Optional[Exception] = None
    cached: bool = False
    duration: float = 0.0
    stale_error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.quote is not None


class HealthOut(BaseModel):
    status: str
    time_utc: str


def parse_price(raw: Any, symbol: str) -> float:
    """Converte o preço vindo do upstream; zero ou não finito é anomalia, não cotação."""
    if raw is None or isinstance(raw, bool):
        raise UpstreamProtocolError(f"missing price for {symbol}", symbol=symbol)
    if isinstance(raw, str):
        raw = raw.strip().strip("$").replace(",", "")
    try:
        value = float(raw)
    except (TypeError, ValueError) as err:
        raise UpstreamProtocolError(f"unparseable price for {symbol}: {raw!r}", symbol=symbol) from err
    if math.isnan(value) or math.isinf(value):
        raise InvalidQuoteValue(f"non-finite price for {symbol}: {value}", symbol=symbol)
    if value <= 0:
        raise InvalidQuoteValue(f"query returned price={value} for {symbol}", symbol=symbol)
    return value


def parse_volume(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None
    return value
