import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import HTMLResponse, PlainTextResponse

from . import __version__
from .metrics import ExporterMetrics
from .mqtt import PrinterSubscriber
from .processor import StatusProcessor
from .settings import Config, ConfigError, configure_logging

logger = logging.getLogger("bambulabs-exporter")

HOME_PAGE = """<html>
    <head>
        <title>BambuLabs Exporter Metrics</title>
    </head>
    <body>
        <h1>BambuLabs Exporter</h1>
        <p><a href='/metrics'>metrics</a></p>
        <p><a href='/healthz'>healthz</a></p>
    </body>
</html>"""


def create_app(
    metrics: ExporterMetrics, subscriber: Optional[PrinterSubscriber] = None
) -> FastAPI:
    """
    Build the HTTP app. When a subscriber is given, it is started on startup
    (a failed first broker connection aborts startup) and stopped on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if subscriber is not None:
            await subscriber.start()
        try:
            yield
        finally:
            if subscriber is not None:
                logger.info("Shutting down...")
                await subscriber.stop()

    app = FastAPI(title="BambuLabs Exporter", version=__version__, lifespan=lifespan)
    app.state.metrics = metrics

    @app.get("/", response_class=HTMLResponse)
    async def home():
        return HOME_PAGE

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz():
        return "OK"

    # Expose /metrics for Prometheus scrapes
    @app.get("/metrics")
    async def metrics_endpoint():
        return Response(content=metrics.render(), media_type=metrics.content_type)

    return app


# -----------------------------------------------------------------------------
# Entrypoint
# -----------------------------------------------------------------------------
def main() -> None:
    try:
        config = Config.from_env()
    except ConfigError as e:
        configure_logging()
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    configure_logging(config.debug)
    logger.info("Starting Exporter %s", __version__)
    logger.info(
        "Broker: %s | Username: %s | Password: %s | Topic: %s",
        config.ip,
        config.username,
        config.masked_password,
        config.topic,
    )

    metrics = ExporterMetrics()
    subscriber = PrinterSubscriber(config, StatusProcessor(metrics))
    app = create_app(metrics, subscriber)

    logger.info("Listening http://127.0.0.1:%d", config.http_port)
    uvicorn.run(
        app, host="0.0.0.0", port=config.http_port, lifespan="on", log_config=None
    )


if __name__ == "__main__":
    main()
