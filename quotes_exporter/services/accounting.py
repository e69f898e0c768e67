from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Summary


@dataclass(frozen=True)
class AccountingSnapshot:
    queries: float
    failures: float
    duration_sum: float
    duration_count: float


def _sample(metric, suffix: str) -> float:
    for family in metric.collect():
        for sample in family.samples:
            if sample.name.endswith(suffix):
                return sample.value
    return 0.0


class Accounting:
    """
    Contadores do próprio exporter, compartilhados por todas as requisições.

    Os objetos do prometheus_client já são thread-safe; cada requisição
    registra estes mesmos contadores no seu registry efêmero.
    """

    def __init__(self, namespace: str = "quotes_exporter"):
        self.queries = Counter(
            "queries", "Count of completed queries",
            namespace=namespace, registry=None,
        )
        self.failures = Counter(
            "failed_queries", "Count of failed queries",
            namespace=namespace, registry=None,
        )
        self.duration = Summary(
            "query_duration_seconds", "Duration of queries to the upstream API",
            namespace=namespace, registry=None,
        )

    def record_query(self) -> None:
        self.queries.inc()

    def record_failure(self) -> None:
        self.failures.inc()

    def observe(self, seconds: float) -> None:
        self.duration.observe(seconds)

    def register(self, registry: CollectorRegistry) -> None:
        for metric in (self.queries, self.duration, self.failures):
            registry.register(metric)

    def snapshot(self) -> AccountingSnapshot:
        return AccountingSnapshot(
            queries=_sample(self.queries, "_total"),
            failures=_sample(self.failures, "_total"),
            duration_sum=_sample(self.duration, "_sum"),
            duration_count=_sample(self.duration, "_count"),
        )
