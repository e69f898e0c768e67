from typing import Optional


class ExporterError(Exception):
    """Raiz de todos os erros do exporter."""


class MalformedRequest(ExporterError):
    """Parâmetro `symbols` ausente, vazio ou com prefixo de tipo inválido.

    Fatal para a requisição inteira: nenhuma consulta upstream é feita.
    """


# =========================
# Erros por símbolo
# =========================
class UpstreamError(ExporterError):
    """Falha ao resolver um único símbolo. Nunca aborta os demais."""

    kind = "upstream"

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class UpstreamUnavailable(UpstreamError):
    """Falha de rede/transporte, status HTTP de erro ou timeout."""

    kind = "unavailable"


class UpstreamProtocolError(UpstreamError):
    """Resposta sem os campos esperados ou com preço não numérico."""

    kind = "protocol"


class InvalidQuoteValue(UpstreamError):
    """Cotação estruturalmente válida mas com preço zero, negativo ou não finito."""

    kind = "invalid_value"
