import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

from cachetools import TLRUCache

log = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: Optional[V]
    error: Optional[Exception]
    computed_at: float
    fresh_until: float
    hard_expire_at: float
    # falha do último recálculo quando o valor servido é o antigo
    stale_error: Optional[Exception] = None


@dataclass(frozen=True)
class Lookup(Generic[V]):
    value: Optional[V]
    cached: bool
    error: Optional[Exception]
    stale_error: Optional[Exception] = None


def _entry_ttu(key, entry: CacheEntry, now: float) -> float:
    return entry.hard_expire_at


class MemoCache(Generic[V]):
    """
    Memoiza chamadas ao upstream por chave.

    - Dentro da janela de frescor: devolve o resultado guardado (sucesso ou erro)
      sem chamar o upstream.
    - Fora dela: recalcula. Chamadas concorrentes para a mesma chave
      compartilham uma única tarefa em voo.
    - Se o recálculo falhar e ainda houver um sucesso dentro da retenção,
      serve o valor antigo em vez de alternar entre erro e valor, mas a falha
      continua visível em `stale_error`.
    - Nada é servido depois de `hard_expire_at`.
    """

    def __init__(
        self,
        freshness: float,
        retention: float,
        maxsize: int = 4096,
        clock: Callable[[], float] = time.monotonic,
    ):
        if freshness <= 0:
            raise ValueError("freshness must be positive")
        if retention < freshness:
            raise ValueError("retention must be >= freshness")
        self.freshness = freshness
        self.retention = retention
        self._clock = clock
        self._entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_ttu, timer=clock)
        self._inflight: Dict[str, "asyncio.Future[CacheEntry[V]]"] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: str) -> Optional[CacheEntry[V]]:
        return self._entries.get(key)

    async def lookup(self, key: str, compute: Callable[[], Awaitable[V]]) -> Lookup[V]:
        entry = self._entries.get(key)
        if entry is not None and self._clock() < entry.fresh_until:
            return Lookup(entry.value, True, entry.error, entry.stale_error)

        task = self._inflight.get(key)
        leader = task is None
        if leader:
            task = asyncio.ensure_future(self._refresh(key, compute))
            self._inflight[key] = task

        # shield: se o cliente abandonar a requisição, a consulta termina e popula o cache
        entry = await asyncio.shield(task)
        stale = entry.stale_error is not None
        return Lookup(entry.value, stale or not leader, entry.error, entry.stale_error)

    async def _refresh(self, key: str, compute: Callable[[], Awaitable[V]]) -> CacheEntry[V]:
        try:
            try:
                value = await compute()
            except Exception as err:
                return self._store_failure(key, err)
            now = self._clock()
            entry = CacheEntry(
                value=value,
                error=None,
                computed_at=now,
                fresh_until=now + self.freshness,
                hard_expire_at=now + self.retention,
            )
            self._entries[key] = entry
            return entry
        finally:
            self._inflight.pop(key, None)

    def _store_failure(self, key: str, err: Exception) -> CacheEntry[V]:
        now = self._clock()
        stale = self._entries.get(key)
        if stale is not None and stale.error is None:
            log.warning("Refresh of %s failed (%s: %s), serving value from %.0fs ago",
                        key, type(err).__name__, err, now - stale.computed_at)
            entry = CacheEntry(
                value=stale.value,
                error=None,
                computed_at=stale.computed_at,
                fresh_until=min(now + self.freshness, stale.hard_expire_at),
                hard_expire_at=stale.hard_expire_at,
                stale_error=err,
            )
            self._entries[key] = entry
            return entry

        # Erros também ficam em cache, mas só pela janela de frescor.
        entry = CacheEntry(
            value=None,
            error=err,
            computed_at=now,
            fresh_until=now + self.freshness,
            hard_expire_at=now + self.freshness,
        )
        self._entries[key] = entry
        return entry
