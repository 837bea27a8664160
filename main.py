#!/usr/bin/env python3
"""
TLS Expiry Monitor - Main Application Entry Point
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import uvicorn
from fastapi import FastAPI

from tls_expiry_monitor import __version__
from tls_expiry_monitor.api import create_app
from tls_expiry_monitor.config import Config, load_config
from tls_expiry_monitor.errors import ConfigurationError
from tls_expiry_monitor.logger import setup_logging
from tls_expiry_monitor.metrics import MetricsCollector
from tls_expiry_monitor.monitor import ExpiryMonitor, format_summary
from tls_expiry_monitor.scheduler import EndpointScheduler
from tls_expiry_monitor.sink import create_sink


class TLSExpiryMonitorApp:
    """Main application class for TLS Expiry Monitor."""

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        self.config: Optional[Config] = None
        self.monitor: Optional[ExpiryMonitor] = None
        self.metrics: Optional[MetricsCollector] = None
        self.app: Optional[FastAPI] = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.logger = logging.getLogger(__name__)

    def initialize(self) -> None:
        """
        Load configuration and build all components.

        Raises:
            ConfigurationError: Missing settings or metric client creation failed
        """
        config = load_config(self.config_path, validate=False)
        if self.dry_run:
            config = config.model_copy(update={"dry_run": True})
        config.ensure_complete()
        self.config = config

        setup_logging(config)
        self.logger.info(f"Initializing TLS Expiry Monitor v{__version__}")

        self.metrics = MetricsCollector()
        self.monitor = ExpiryMonitor(
            config=config,
            scheduler=EndpointScheduler.from_config(config),
            sink=create_sink(config),
            metrics=self.metrics,
        )

        self.logger.info(
            f"TLS Expiry Monitor initialized - Endpoints: {len(config.endpoints)}, "
            f"Sink: {type(self.monitor.sink).__name__}"
        )

    async def run_once(self) -> Dict[str, Any]:
        """Perform one check run and release resources."""
        assert self.monitor is not None, "initialize() must be called first"
        try:
            return await self.monitor.run_once()
        finally:
            await self.monitor.stop()

    async def serve(self) -> None:
        """Run periodic checks behind the HTTP surface."""
        assert self.monitor is not None and self.config is not None and self.metrics is not None

        self.app = create_app(monitor=self.monitor, metrics=self.metrics, config=self.config)
        server = uvicorn.Server(
            uvicorn.Config(
                app=self.app,
                host=self.config.bind_address,
                port=self.config.port,
                log_level=self.config.log_level.lower(),
                access_log=True,
            )
        )

        self.logger.info(f"Starting HTTP server on {self.config.bind_address}:{self.config.port}")
        await self.monitor.start()
        # uvicorn handles SIGINT/SIGTERM and returns from serve()
        try:
            await server.serve()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        self.logger.info("Starting graceful shutdown")
        if self.monitor:
            await self.monitor.stop()
        self.logger.info("Graceful shutdown completed")


@click.command()
@click.option(
    "--config",
    "-f",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option("--version", "-v", is_flag=True, help="Show version information")
@click.option("--dry-run", is_flag=True, help="Log data points instead of publishing them")
@click.option("--serve", is_flag=True, help="Run periodic checks with the HTTP API")
def main(config: Optional[Path], version: bool, dry_run: bool, serve: bool) -> None:
    """TLS Expiry Monitor - Check TLS certificate expiry and publish it as a metric."""
    if version:
        click.echo(f"TLS Expiry Monitor v{__version__}")
        return

    app = TLSExpiryMonitorApp(str(config) if config else None, dry_run=dry_run)

    try:
        app.initialize()
    except (ConfigurationError, FileNotFoundError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    try:
        if serve:
            asyncio.run(app.serve())
            return

        report = asyncio.run(app.run_once())
    except KeyboardInterrupt:
        click.echo("\nShutdown requested by user")
        sys.exit(0)

    assert app.monitor is not None
    for line in format_summary(app.monitor.last_results):
        click.echo(line)

    summary = report["summary"]
    click.echo(
        f"Checked {summary['total']} endpoint(s): {summary['succeeded']} succeeded, "
        f"{summary['failed']} failed, {summary['published']} published"
    )


if __name__ == "__main__":
    main()
