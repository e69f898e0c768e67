import asyncio
import logging
import time
from typing import Iterator, List, Mapping

from prometheus_client.core import GaugeMetricFamily, Metric

from quotes_exporter.errors import UpstreamProtocolError
from quotes_exporter.models.quote import AssetType, Quote, QuoteOutcome, QuoteRequest
from quotes_exporter.services.accounting import Accounting
from quotes_exporter.services.cache import MemoCache
from quotes_exporter.services.providers import QuoteSource

log = logging.getLogger(__name__)

LABELS = ["symbol", "name"]


class QuoteCollector:
    """
    Coletor de uma única requisição a /price.

    `run()` consulta cada símbolo (via cache) e atualiza a contabilidade;
    `collect()` é o gancho do prometheus_client e só emite o que `run()` obteve.
    Não deve ser reutilizado entre requisições.
    """

    def __init__(
        self,
        request: QuoteRequest,
        sources: Mapping[AssetType, QuoteSource],
        cache: MemoCache[Quote],
        accounting: Accounting,
        report_volume: bool = False,
        max_concurrency: int = 5,
    ):
        self.request = request
        self.sources = sources
        self.cache = cache
        self.accounting = accounting
        self.report_volume = report_volume
        self.max_concurrency = max_concurrency
        self.outcomes: List[QuoteOutcome] = []

    async def run(self) -> List[QuoteOutcome]:
        self.accounting.record_query()

        # Concorre N em N para não estourar o rate-limit do upstream
        sem = asyncio.Semaphore(self.max_concurrency)

        async def one(asset_type: AssetType, symbol: str) -> QuoteOutcome:
            async with sem:
                return await self._lookup(asset_type, symbol)

        self.outcomes = list(await asyncio.gather(*[one(t, s) for t, s in self.request.lookups()]))
        return self.outcomes

    async def _lookup(self, asset_type: AssetType, symbol: str) -> QuoteOutcome:
        source = self.sources[asset_type]

        start = time.perf_counter()
        hit = await self.cache.lookup(source.cache_key(symbol), lambda: source.resolve(symbol))
        duration = time.perf_counter() - start
        self.accounting.observe(duration)

        error = hit.error
        if error is None and hit.value is None:
            error = UpstreamProtocolError(f"empty data from symbol lookup for {symbol}, assuming not found", symbol=symbol)
        if error is not None:
            self.accounting.record_failure()
            kind = getattr(error, "kind", type(error).__name__)
            log.error("Error looking up %s (%s): %s%s", symbol, kind, error, " (cached)" if hit.cached else "")
            return QuoteOutcome(asset_type, symbol, error=error, cached=hit.cached, duration=duration)

        q = hit.value
        if hit.stale_error is not None:
            # Upstream falhou; o valor antigo ainda é servido, mas a falha conta.
            self.accounting.record_failure()
            log.warning("Error looking up %s (%s): %s, serving last good quote",
                        symbol, getattr(hit.stale_error, "kind", type(hit.stale_error).__name__), hit.stale_error)
        log.info("Retrieved %s (%s), price: %f, volume: %s%s",
                 q.symbol, q.name, q.price, q.volume, " (cached)" if hit.cached else "")
        return QuoteOutcome(asset_type, symbol, quote=q, cached=hit.cached, duration=duration,
                            stale_error=hit.stale_error)

    def collect(self) -> Iterator[Metric]:
        price = GaugeMetricFamily("quotes_exporter_price", "Asset Price.", labels=LABELS)
        volume = GaugeMetricFamily("quotes_exporter_volume", "Asset Volume.", labels=LABELS)

        # Símbolos repetidos na requisição geram uma única série.
        seen = set()
        for outcome in self.outcomes:
            if not outcome.ok:
                continue
            q = outcome.quote
            if (q.symbol, q.name) in seen:
                continue
            seen.add((q.symbol, q.name))
            price.add_metric([q.symbol, q.name], q.price)
            if self.report_volume:
                volume.add_metric([q.symbol, q.name], q.volume or 0.0)

        yield price
        if self.report_volume:
            yield volume
