from __future__ import annotations

import argparse
from dataclasses import replace
import logging
import os
import signal
import sys
import threading
from typing import Sequence

from nvme_exporter.config import AppConfig, load_config, parse_listen_addr
from nvme_exporter.errors import ConfigError
from nvme_exporter.http_server import MetricsHTTPServer
from nvme_exporter.logging_utils import configure_logging, resolve_log_level
from nvme_exporter.mqtt_client import MqttSink
from nvme_exporter.reconciler import Reconciler
from nvme_exporter.scheduler import ExponentialBackoff, PollScheduler
from nvme_exporter.sink import LOOP_RUNS_COUNTER, MetricsSink, MultiSink, PrometheusSink
from nvme_exporter.source import NvmeCliSource

logger = logging.getLogger("nvme_exporter")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export nvme smart-log metrics in prometheus format")
    parser.add_argument(
        "--config",
        help="Path to CFG configuration file (defaults and environment only when omitted)",
    )
    parser.add_argument(
        "--listen-addr",
        help="Address to serve metrics on, overrides the configured listen_addr",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle, print the metrics to stdout, then exit",
    )
    return parser


def build_sinks(config: AppConfig) -> tuple[MetricsSink, MqttSink | None]:
    prometheus = PrometheusSink()
    if not config.mqtt.enabled:
        return prometheus, None
    mqtt_sink = MqttSink(config.mqtt)
    return MultiSink(prometheus, mqtt_sink), mqtt_sink


def install_signal_handlers(stop_event: threading.Event) -> None:
    def handle(signum: int, frame: object) -> None:
        if stop_event.is_set():
            logger.warning("Force exit app")
            os._exit(1)
        logger.info("Received %s, terminating app", signal.Signals(signum).name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handle)


def run_once(reconciler: Reconciler, sink: MetricsSink) -> int:
    success = reconciler.run_cycle()
    if success:
        sink.increment_counter(LOOP_RUNS_COUNTER)
    else:
        logger.warning("Poll cycle completed with errors.")
    sys.stdout.write(sink.export().decode("utf-8"))
    return 0 if success else 1


def serve(config: AppConfig, reconciler: Reconciler, sink: MetricsSink) -> int:
    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    server = MetricsHTTPServer(config.exporter.listen_addr, sink)
    try:
        server.bind()
    except OSError as exc:
        logger.error("Failed to listen on %s: %s", server.get_addr(), exc)
        return 1

    def run_server() -> None:
        logger.info("http server started on %s", server.get_addr())
        try:
            server.run()
        except Exception:
            logger.exception("server run exited")

    server_thread = threading.Thread(target=run_server, name="http-server", daemon=True)
    server_thread.start()

    scheduler = PollScheduler(
        reconciler.run_cycle,
        check_interval=config.exporter.check_interval_s,
        backoff=ExponentialBackoff.from_config(config.backoff),
        sink=sink,
        stop_event=stop_event,
    )
    poller_thread = threading.Thread(target=scheduler.run, name="poller")
    poller_thread.start()

    while not stop_event.wait(0.5):
        if not server_thread.is_alive():
            logger.warning("http server unexpectedly closed")
            stop_event.set()
            break

    logger.info("terminating http server")
    if server.shutdown():
        logger.info("http server exited properly")
    else:
        logger.error("http server did not drain within %ss", server.shutdown_timeout)

    logger.info("waiting for poller to complete")
    poller_thread.join()
    logger.info("successfully exited")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    try:
        config = load_config(args.config)
        if args.listen_addr:
            parse_listen_addr(args.listen_addr)
            config = replace(
                config, exporter=replace(config.exporter, listen_addr=args.listen_addr)
            )
    except (ConfigError, FileNotFoundError) as exc:
        logger.error("processing config: %s", exc)
        return 2

    sink, mqtt_sink = build_sinks(config)
    if mqtt_sink is not None:
        mqtt_sink.connect()
    reconciler = Reconciler(sink, NvmeCliSource(config.source))

    try:
        if args.once:
            return run_once(reconciler, sink)
        return serve(config, reconciler, sink)
    finally:
        if mqtt_sink is not None:
            mqtt_sink.disconnect()


if __name__ == "__main__":
    sys.exit(main())
