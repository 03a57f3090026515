"""Error taxonomy for metric computation.

A cache miss is not an error and a degenerate derivation (too few samples,
zero denominator) is a null value with a reason. Only caller contract
violations and upstream failures raise.
"""


class MetricsError(Exception):
    """Base class for metric computation failures."""

    code = "metrics_error"


class MetricContractError(MetricsError, ValueError):
    """Malformed filters, an unknown window, or a window the metric does not support."""

    code = "contract_violation"


class UnknownMetricError(MetricContractError):
    code = "unknown_metric"


class AggregateSourceError(MetricsError):
    """The raw aggregate source failed; the computation is abandoned and nothing is cached."""

    code = "upstream_failure"
