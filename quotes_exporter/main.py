import argparse
import dataclasses
import html
import logging
import os
from datetime import datetime, timezone
from typing import List, Mapping, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest

from quotes_exporter.config import PROVIDERS, Settings
from quotes_exporter.errors import MalformedRequest
from quotes_exporter.models.quote import AssetType, HealthOut, Quote
from quotes_exporter.resolver import SymbolResolver
from quotes_exporter.services.accounting import Accounting
from quotes_exporter.services.cache import MemoCache
from quotes_exporter.services.collector import QuoteCollector
from quotes_exporter.services.providers import QuoteSource, build_sources

# ===== Logging estruturado =====
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s | %(levelname)s | quotes-exporter | %(message)s"
)
log = logging.getLogger("quotes_exporter")

# Exemplos exibidos na página inicial, por modo
_EXAMPLES = {
    False: ["AMZN,GOOG,SNAP", "VTIAX"],
    True: ["stock:AMZN,GOOG,SNAP", "fund:VTIAX"],
}


def _help_html(base_url: str, typed: bool) -> str:
    # base_url vem do header Host; escapar antes de ir para o HTML
    base = html.escape(base_url.rstrip("/"))
    out = [
        "<h1>Prometheus Quotes Exporter</h1>",
        "<p>To fetch quotes, your URL must be formatted as:</p>",
    ]
    if typed:
        out.append(f"{base}/price?symbols=type:AAAA,BBBB,CCCC")
        out.append('<p>The "type" designator above could be "stock" or "fund" to indicate<br>')
        out.append("the symbols following refer to stocks or mutual funds, respectively.</p>")
    else:
        out.append(f"{base}/price?symbols=AAAA,BBBB,CCCC")
        out.append("<p>The symbols parameter may also be repeated.</p>")
    out.append("<p><b>Examples:</b></p><ul>")
    for s in _EXAMPLES[typed]:
        out.append(f'<li><a href="{base}/price?symbols={s}">{base}/price?symbols={s}</a></li>')
    out.append("</ul>")
    return "".join(out)


def create_app(
    settings: Settings,
    sources: Optional[Mapping[AssetType, QuoteSource]] = None,
    cache: Optional[MemoCache[Quote]] = None,
    accounting: Optional[Accounting] = None,
) -> FastAPI:
    """Monta o app com todas as dependências injetadas; nada é lido de globais nas rotas."""
    sources = sources if sources is not None else build_sources(settings)
    cache = cache if cache is not None else MemoCache(
        settings.cache_ttl, settings.cache_retention, maxsize=settings.cache_maxsize
    )
    accounting = accounting if accounting is not None else Accounting()
    resolver = SymbolResolver(typed=settings.typed_symbols)

    app = FastAPI(title="Quotes Exporter", version="1.0.0")
    app.state.settings = settings
    app.state.cache = cache
    app.state.accounting = accounting

    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request):
        return HTMLResponse(_help_html(str(request.base_url), settings.typed_symbols))

    @app.get("/health", response_model=HealthOut)
    async def health():
        return HealthOut(status="ok", time_utc=datetime.now(timezone.utc).isoformat())

    @app.get("/price")
    async def price(request: Request):
        try:
            quote_request = resolver.parse(request.query_params.getlist("symbols"))
        except MalformedRequest as e:
            log.warning("Rejected %s: %s", request.url, e)
            return PlainTextResponse(f"{e}\n", status_code=400)

        collector = QuoteCollector(
            quote_request,
            sources,
            cache,
            accounting,
            report_volume=settings.report_volume,
            max_concurrency=settings.max_concurrency,
        )
        await collector.run()

        # Registry efêmero: as cotações desta requisição + contadores do exporter.
        registry = CollectorRegistry()
        registry.register(collector)
        accounting.register(registry)
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app


# =========================
# CLI
# =========================
def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quotes-exporter",
        description="Prometheus exporter for stock and mutual fund quotes",
    )
    parser.add_argument("--host", help="Address to listen on.")
    parser.add_argument("--port", type=int, help="Port to listen for HTTP requests.")
    parser.add_argument("--volume", action=argparse.BooleanOptionalAction, default=None,
                        help="Export asset volume (--no-volume to disable).")
    parser.add_argument("--typed", action=argparse.BooleanOptionalAction, default=None,
                        help="Require type prefixes (stock:, fund:) in the symbols parameter.")
    parser.add_argument("--provider", choices=PROVIDERS, help="Upstream quote provider.")
    parser.add_argument("--cache-ttl", type=float, help="Seconds a quote is served from cache.")
    parser.add_argument("--cache-retention", type=float,
                        help="Seconds a quote is kept as fallback when the upstream fails.")
    parser.add_argument("--timeout", type=float, help="Upstream timeout in seconds.")
    return parser


_FLAG_TO_FIELD = {
    "host": "host",
    "port": "port",
    "volume": "report_volume",
    "typed": "typed_symbols",
    "provider": "provider",
    "cache_ttl": "cache_ttl",
    "cache_retention": "cache_retention",
    "timeout": "upstream_timeout",
}


def settings_from_args(argv: Optional[List[str]] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    parser = create_parser()
    args = parser.parse_args(argv)
    overrides = {
        field: getattr(args, flag)
        for flag, field in _FLAG_TO_FIELD.items()
        if getattr(args, flag) is not None
    }
    try:
        return dataclasses.replace(Settings.from_env(env), **overrides)
    except ValueError as e:
        parser.error(str(e))


def app_from_env() -> FastAPI:
    """Para `uvicorn quotes_exporter.main:app_from_env --factory`."""
    return create_app(Settings.from_env())


def run(argv: Optional[List[str]] = None) -> None:
    settings = settings_from_args(argv)
    logging.getLogger().setLevel(settings.log_level)
    log.info("Listening on port %d (provider=%s, volume=%s, typed=%s)",
             settings.port, settings.provider, settings.report_volume, settings.typed_symbols)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
