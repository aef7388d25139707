import asyncio
import logging
import ssl
from datetime import datetime, timezone
from typing import Optional

import aiomqtt

from .processor import StatusProcessor
from .settings import BrokerConnectionError, Config

logger = logging.getLogger("bambulabs-exporter.mqtt")

RECONNECT_INTERVAL_SECONDS = 5.0


def new_tls_context() -> ssl.SSLContext:
    # Printers serve a self-signed certificate
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class PrinterSubscriber:
    """
    Owns the MQTT connection to the printer and feeds every message on the
    configured topic to the StatusProcessor, one at a time.
    """

    def __init__(
        self,
        config: Config,
        processor: StatusProcessor,
        reconnect_interval: float = RECONNECT_INTERVAL_SECONDS,
    ) -> None:
        self.config = config
        self.processor = processor
        self.reconnect_interval = reconnect_interval
        self._task: Optional[asyncio.Task] = None
        self._connected: Optional[asyncio.Future] = None

    def _client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self.config.ip,
            port=self.config.mqtt_port,
            username=self.config.username,
            password=self.config.password,
            identifier=self.config.client_id,
            protocol=aiomqtt.ProtocolVersion.V311,
            tls_context=new_tls_context(),
            keepalive=30,
            timeout=30.0,
        )

    async def start(self) -> None:
        """Connect and subscribe. Raises BrokerConnectionError if the first attempt fails."""
        if self._task is not None and not self._task.done():
            return
        self._connected = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run())
        try:
            await self._connected
        except asyncio.CancelledError:
            await self.stop()
            raise

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def handle_message(self, message: aiomqtt.Message) -> None:
        payload = message.payload
        if payload is None:
            payload = b""
        elif not isinstance(payload, (bytes, bytearray, str)):
            payload = str(payload)
        self.processor.process(payload)

    def _fail_first_connect(self, e: BaseException) -> bool:
        if self._connected is not None and not self._connected.done():
            self._connected.set_exception(
                BrokerConnectionError(self.config.ip, self.config.mqtt_port, e)
            )
            return True
        return False

    async def _run(self) -> None:
        while True:
            try:
                logger.info(
                    "Connecting to %s:%d as %s",
                    self.config.ip,
                    self.config.mqtt_port,
                    self.config.client_id,
                )
                async with self._client() as client:
                    logger.info("Connected: %s", datetime.now(timezone.utc).isoformat())
                    await client.subscribe(self.config.topic, qos=1)
                    logger.debug("Subscribed to %s", self.config.topic)
                    if self._connected is not None and not self._connected.done():
                        self._connected.set_result(None)

                    async for message in client.messages:
                        self.handle_message(message)
            except asyncio.CancelledError:
                logger.info("MQTT subscriber cancelled.")
                raise
            except aiomqtt.MqttError as e:
                if self._fail_first_connect(e):
                    return
                logger.warning("Connect lost: %s", e)
            except Exception as e:
                if self._fail_first_connect(e):
                    return
                logger.exception("Unexpected MQTT error: %s", e)

            logger.info("Reconnecting in %.1f seconds...", self.reconnect_interval)
            await asyncio.sleep(self.reconnect_interval)
