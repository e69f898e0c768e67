import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import httpx
import yfinance as yf

from quotes_exporter.config import Settings
from quotes_exporter.errors import UpstreamProtocolError, UpstreamUnavailable
from quotes_exporter.models.quote import AssetType, Quote, parse_price, parse_volume

log = logging.getLogger(__name__)

HTTP_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) quotes-exporter/1.0",
    "Accept": "text/plain, application/json, */*",
}


class QuoteSource(ABC):
    """Upstream de cotações: devolve um `Quote` ou levanta um `UpstreamError`."""

    @abstractmethod
    async def resolve(self, symbol: str) -> Quote: ...

    def cache_key(self, symbol: str) -> str:
        # Uma chave por chamada ao upstream; símbolos não diferenciam maiúsculas.
        return symbol.upper()


# ---------------- Yahoo (yfinance) ----------------
# Campos de preço por tipo de ativo; fundos nem sempre trazem regularMarketPrice.
_YAHOO_PRICE_FIELDS = {
    AssetType.STOCK: ("regularMarketPrice", "currentPrice"),
    AssetType.MUTUAL_FUND: ("regularMarketPrice", "navPrice", "previousClose"),
}


def _fetch_yahoo_sync(symbol: str) -> Dict[str, Any]:
    t = yf.Ticker(symbol)
    try:
        info = t.info
    except Exception as err:
        raise UpstreamUnavailable(f"yahoo lookup failed for {symbol}: {err}", symbol=symbol) from err
    if not info:
        raise UpstreamProtocolError(f"empty data from yahoo for {symbol}, assuming not found", symbol=symbol)
    return info


def _parse_yahoo(symbol: str, info: Dict[str, Any], price_fields: Sequence[str]) -> Quote:
    raw = next((info[f] for f in price_fields if info.get(f) is not None), None)
    price = parse_price(raw, symbol)
    return Quote(
        symbol=info.get("symbol") or symbol,
        name=info.get("shortName") or info.get("longName") or symbol,
        price=price,
        volume=parse_volume(info.get("regularMarketVolume")),
    )


class YahooQuoteSource(QuoteSource):
    """Uma chamada ao Yahoo por símbolo; yfinance é bloqueante, então roda no executor."""

    def __init__(self, asset_type: AssetType = AssetType.STOCK, timeout: float = 4.0):
        self.asset_type = asset_type
        self.timeout = timeout
        self.price_fields = _YAHOO_PRICE_FIELDS[asset_type]

    def cache_key(self, symbol: str) -> str:
        # Ações e fundos seguem caminhos diferentes de leitura de preço.
        return f"{self.asset_type.value}:{symbol.upper()}"

    async def resolve(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        loop = asyncio.get_running_loop()
        try:
            info = await asyncio.wait_for(
                loop.run_in_executor(None, _fetch_yahoo_sync, symbol), timeout=self.timeout
            )
        except asyncio.TimeoutError as err:
            raise UpstreamUnavailable(f"yahoo timed out after {self.timeout}s for {symbol}", symbol=symbol) from err
        return _parse_yahoo(symbol, info, self.price_fields)


# ---------------- Stonks (texto puro) ----------------
STONKS_URL = "https://stonks.scd31.com/{symbol}"


def _parse_stonks(symbol: str, body: str) -> Quote:
    # Primeira linha da resposta, ex. para AMD:
    # AMD: $127.03 +5.55%
    result = body.split("\n")[0].rstrip("\r\n")
    log.debug("Results from stonks for %s: %s", symbol, result)

    if not result:
        raise UpstreamProtocolError(f"empty results from upstream for {symbol}", symbol=symbol)
    if not result.startswith(symbol + ":"):
        raise UpstreamProtocolError(f"missing symbol name on output (invalid symbol?): {result}", symbol=symbol)
    tok = result.split(" ")
    if len(tok) < 2:
        raise UpstreamProtocolError(f"error parsing quote results: {result}", symbol=symbol)
    price = parse_price(tok[1].strip("$,"), symbol)
    return Quote(symbol=symbol, name=symbol, price=price)


class StonksQuoteSource(QuoteSource):
    def __init__(
        self,
        timeout: float = 4.0,
        url: str = STONKS_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.url = url
        self._transport = transport

    async def resolve(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=HTTP_HEADERS, transport=self._transport
            ) as client:
                r = await client.get(self.url.format(symbol=symbol), params={"f": "i3"})
        except httpx.HTTPError as err:
            raise UpstreamUnavailable(f"stonks lookup failed for {symbol}: {err!r}", symbol=symbol) from err
        if r.status_code != 200:
            raise UpstreamUnavailable(f"stonks returned HTTP {r.status_code} for {symbol}", symbol=symbol)
        return _parse_stonks(symbol, r.text)


def build_sources(settings: Settings) -> Dict[AssetType, QuoteSource]:
    """Um QuoteSource por tipo de ativo; a chave de cache acompanha esse mapeamento."""
    if settings.provider == "stonks":
        source = StonksQuoteSource(timeout=settings.upstream_timeout)
        return {t: source for t in AssetType}
    return {t: YahooQuoteSource(t, timeout=settings.upstream_timeout) for t in AssetType}
