"""Prometheus instrumentation component.

Spawns an HTTP server in a background thread, exposing the metrics of an
IRCClient on a Prometheus/OpenMetrics-compatible /metrics endpoint.

Note that there is a terminology clash: Prometheus calls this a "client", and
the Python module is called "prometheus_client", but this is definitely an HTTP
server, and as such we call the class here PrometheusServer.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import configparser
import http.server
import socket
import threading

import prometheus_client
import structlog


class PrometheusServer(http.server.ThreadingHTTPServer):
    """A Prometheus HTTP server, serving a single metrics registry."""

    log = structlog.get_logger("irclink.prometheus")
    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        config: configparser.SectionProxy,
        registry: prometheus_client.CollectorRegistry = prometheus_client.REGISTRY,
    ) -> None:
        listen_address = config.get("listen_address", fallback="::")
        if ":" in listen_address:
            self.address_family = socket.AF_INET6
        listen_port = config.getint("listen_port", fallback=9200)
        super().__init__((listen_address, listen_port), prometheus_client.MetricsHandler.factory(registry))
        # update address/port based on what bind() returned
        self.address, self.port = str(self.server_address[0]), self.server_address[1]
        self._thread: threading.Thread | None = None
        self.log.info("Listening for Prometheus HTTP", listen_address=self.address, listen_port=self.port)

    def server_bind(self) -> None:
        """Bind to an IP address, listening to both IPv4/IPv6 on IPv6 sockets."""
        if self.address_family == socket.AF_INET6:
            self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        super().server_bind()

    def start(self) -> None:
        """Serve requests in a background (daemon) thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(name="prometheus", target=self.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread, if any, and close the socket."""
        if self._thread is not None:
            self.shutdown()
            self._thread.join()
            self._thread = None
        self.server_close()
