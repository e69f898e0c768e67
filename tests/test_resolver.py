import pytest

from quotes_exporter.errors import MalformedRequest
from quotes_exporter.models.quote import AssetType
from quotes_exporter.resolver import SymbolResolver, parse_symbols, parse_typed_symbols


@pytest.mark.parametrize("values,exp", [
    (["AAPL"], ["AAPL"]),
    (["AAPL,MSFT,GOOG"], ["AAPL", "MSFT", "GOOG"]),
    (["AAPL", "MSFT"], ["AAPL", "MSFT"]),
    (["AAPL,MSFT", "GOOG"], ["AAPL", "MSFT", "GOOG"]),
    (["AAPL,AAPL", "AAPL"], ["AAPL", "AAPL", "AAPL"]),
    (["aapl, msft"], ["aapl", "msft"]),
    (["AAPL,,MSFT,"], ["AAPL", "MSFT"]),
])
def test_symbol_resolution(values, exp):
    req = parse_symbols(values)
    assert [s for _, s in req.lookups()] == exp
    assert req.count == len(exp)
    assert {t for t, _ in req.lookups()} == {AssetType.STOCK}


@pytest.mark.parametrize("values", [None, [], [""], ["  "], [",,"], ["", ""]])
def test_missing_or_empty_symbols_rejected(values):
    with pytest.raises(MalformedRequest):
        parse_symbols(values)


def test_typed_groups_keep_order_and_duplicates():
    req = parse_typed_symbols(["stock:AMZN,GOOG", "fund:VTIAX", "stock:AMZN"])

    assert [(g.asset_type, g.symbols) for g in req.groups] == [
        (AssetType.STOCK, ("AMZN", "GOOG")),
        (AssetType.MUTUAL_FUND, ("VTIAX",)),
        (AssetType.STOCK, ("AMZN",)),
    ]
    assert req.count == 4


@pytest.mark.parametrize("values", [
    ["AAPL"],                      # sem prefixo
    ["bond:AAPL"],                 # tipo desconhecido
    ["Stock:AAPL"],                # prefixo diferencia maiúsculas
    ["stock:"],                    # grupo vazio
    ["stock:AAPL", "MSFT"],        # uma ocorrência inválida derruba tudo
    [""],
    None,
])
def test_typed_rejects_malformed(values):
    with pytest.raises(MalformedRequest):
        parse_typed_symbols(values)


def test_resolver_mode():
    assert SymbolResolver().parse(["stock:AAPL"]).count == 1
    assert [s for _, s in SymbolResolver().parse(["stock:AAPL"]).lookups()] == ["stock:AAPL"]
    with pytest.raises(MalformedRequest):
        SymbolResolver(typed=True).parse(["AAPL"])
