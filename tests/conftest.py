import pytest

from quotes_exporter.errors import UpstreamUnavailable
from quotes_exporter.models.quote import Quote, parse_price, parse_volume
from quotes_exporter.services.providers import QuoteSource


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSource(QuoteSource):
    """Upstream em memória: símbolo -> dict (name/price/volume) ou exceção."""

    def __init__(self, data):
        self.data = data
        self.calls = []

    async def resolve(self, symbol: str) -> Quote:
        self.calls.append(symbol)
        row = self.data.get(symbol.upper())
        if row is None:
            raise UpstreamUnavailable(f"no route to upstream for {symbol}", symbol=symbol)
        if isinstance(row, Exception):
            raise row
        return Quote(
            symbol=symbol.upper(),
            name=row["name"],
            price=parse_price(row["price"], symbol),
            volume=parse_volume(row.get("volume")),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def market():
    return {
        "AAPL": {"name": "Apple Inc.", "price": 150.25, "volume": 51234567},
        "MSFT": {"name": "Microsoft Corporation", "price": "412.10", "volume": 18000000},
        "GOOG": {"name": "Alphabet Inc.", "price": 171.5},
        "VTIAX": {"name": "Vanguard Total Intl Stock Index Admiral", "price": 33.87},
    }


@pytest.fixture
def source(market):
    return FakeSource(market)


@pytest.fixture
def fake_source_factory():
    return FakeSource
