from typing import Iterable, List, Optional

from quotes_exporter.errors import MalformedRequest
from quotes_exporter.models.quote import AssetType, QuoteRequest, SymbolGroup

# Prefixos aceitos no modo tipado: ?symbols=stock:AMZN,GOOG&symbols=fund:VTIAX
_TYPE_PREFIXES = {t.value: t for t in AssetType}


def _split(value: str) -> List[str]:
    # "AAPL, MSFT,,GOOG" -> ["AAPL", "MSFT", "GOOG"]
    return [s.strip() for s in value.split(",") if s.strip()]


def _require(values: Optional[Iterable[str]]) -> List[str]:
    if values is None:
        raise MalformedRequest('missing "symbols" in query')
    values = [v for v in values if v is not None]
    if not any(v.strip() for v in values):
        raise MalformedRequest('empty "symbols" in query')
    return values


def parse_symbols(values: Optional[Iterable[str]]) -> QuoteRequest:
    """
    Modo simples: todas as ocorrências de `symbols` são concatenadas,
    aceitando repetição e/ou vírgulas. Duplicatas são mantidas.
    """
    symbols: List[str] = []
    for value in _require(values):
        symbols.extend(_split(value))
    if not symbols:
        raise MalformedRequest('no symbols in query')
    return QuoteRequest(groups=(SymbolGroup(asset_type=AssetType.STOCK, symbols=tuple(symbols)),))


def parse_typed_symbols(values: Optional[Iterable[str]]) -> QuoteRequest:
    """
    Modo tipado: cada ocorrência é `<tipo>:<sym1>,<sym2>`. O prefixo é
    comparado com distinção de maiúsculas; qualquer ocorrência inválida
    rejeita a requisição inteira.
    """
    groups: List[SymbolGroup] = []
    for value in _require(values):
        prefix, sep, rest = value.partition(":")
        if not sep:
            raise MalformedRequest(f"missing type prefix in query: {value}")
        asset_type = _TYPE_PREFIXES.get(prefix)
        if asset_type is None:
            raise MalformedRequest(f"unknown type in query: {value}")
        symbols = _split(rest)
        if not symbols:
            raise MalformedRequest(f"no symbols after type prefix: {value}")
        groups.append(SymbolGroup(asset_type=asset_type, symbols=tuple(symbols)))
    return QuoteRequest(groups=tuple(groups))


class SymbolResolver:
    def __init__(self, typed: bool = False):
        self.typed = typed

    def parse(self, values: Optional[Iterable[str]]) -> QuoteRequest:
        if self.typed:
            return parse_typed_symbols(values)
        return parse_symbols(values)
