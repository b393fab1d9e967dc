# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for deliveries and e-mail change requests.

Metrics exposed:
    - ``fm_deliveries_total``: Counter of terminal pipeline outcomes per stage tag.
    - ``fm_bytes_sent_total``: Counter of attachment bytes delivered.
    - ``fm_change_requests_total``: Counter of change-request transitions per status.

Example:
    Accessing metrics via the REST API::

        GET /metrics

    The bot process has no REST API and serves its registry on a port of
    its own, see :meth:`DeliveryMetrics.serve`.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest, start_http_server


class DeliveryMetrics:
    """Prometheus metrics collector for filemailer.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        deliveries: Counter of finished deliveries labeled by final stage.
        bytes_sent: Counter of delivered attachment bytes.
        change_requests: Counter of change-request transitions by status.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry."""
        self.registry = registry or CollectorRegistry()
        self.deliveries = Counter(
            "fm_deliveries_total",
            "Finished delivery attempts",
            ["stage"],
            registry=self.registry,
        )
        self.bytes_sent = Counter(
            "fm_bytes_sent_total",
            "Attachment bytes delivered",
            registry=self.registry,
        )
        self.change_requests = Counter(
            "fm_change_requests_total",
            "E-mail change request transitions",
            ["status"],
            registry=self.registry,
        )

    def observe_delivery(self, stage: str, size: int | None = None) -> None:
        """Count a finished delivery and, on success, its size."""
        self.deliveries.labels(stage=stage).inc()
        if size:
            self.bytes_sent.inc(size)

    def observe_change(self, status: str) -> None:
        """Count a change-request creation or decision."""
        self.change_requests.labels(status=status).inc()

    def generate_latest(self) -> bytes:
        """Return the latest metrics snapshot in Prometheus text format."""
        return generate_latest(self.registry)

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Expose this registry at ``http://addr:port/metrics`` from a daemon thread."""
        start_http_server(port, addr=addr, registry=self.registry)
