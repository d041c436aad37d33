"""OpenTelemetry メトリクス定義"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("k1s0_toggles", version="0.1.0")

evaluations_total = _meter.create_counter(
    name="toggles_evaluations_total",
    description="Total number of feature evaluations",
    unit="1",
)

fetch_total = _meter.create_counter(
    name="toggles_fetch_total",
    description="Total number of successful flag fetches",
    unit="1",
)

fetch_errors_total = _meter.create_counter(
    name="toggles_fetch_errors_total",
    description="Total number of errors observed by the toggles client",
    unit="1",
)

token_renewals_total = _meter.create_counter(
    name="toggles_token_renewals_total",
    description="Total number of access token exchanges",
    unit="1",
)
