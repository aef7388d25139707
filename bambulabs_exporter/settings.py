import logging
import os
from typing import Mapping, Optional


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
class ExporterError(Exception):
    """Base exception for the exporter."""


class DecodeError(ExporterError):
    """Raised when an MQTT payload is not a decodable status report."""


class FieldParseError(ExporterError):
    """
    Raised when a single numeric-string field cannot be parsed.
    The processor defaults the gauge to zero and moves on to the next field.
    """

    def __init__(self, value: str, suffix: str = ""):
        self.value = value
        self.suffix = suffix
        super().__init__(f"Cannot parse {value!r} as a number")


class ConfigError(ExporterError):
    """Missing or invalid startup configuration. Fatal."""


class BrokerConnectionError(ExporterError):
    """The first connection to the printer's MQTT broker failed. Fatal."""

    def __init__(self, host: str, port: int, reason: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.reason = reason
        message = f"Could not connect to broker {host}:{port}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
ENV_PREFIX = "BAMBULABS_"

DEFAULT_CLIENT_ID = "bambulabs-prometheus-exporter"
DEFAULT_HTTP_PORT = 9101
MQTT_PORT = 8883

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _parse_bool(name: str, raw: str) -> bool:
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name}: invalid boolean value {raw!r}")


class Config:
    def __init__(
        self,
        ip: str,
        username: str,
        password: str,
        topic: str,
        debug: bool = False,
        client_id: str = DEFAULT_CLIENT_ID,
        http_port: int = DEFAULT_HTTP_PORT,
        mqtt_port: int = MQTT_PORT,
    ) -> None:
        self.ip = ip
        self.username = username
        self.password = password
        self.topic = topic
        self.debug = debug
        self.client_id = client_id
        self.http_port = http_port
        self.mqtt_port = mqtt_port

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Load settings from ``BAMBULABS_*`` variables, raising ConfigError on bad input."""
        env = os.environ if environ is None else environ

        required = {}
        missing = []
        for key in ("IP", "USERNAME", "PASSWORD", "TOPIC"):
            value = env.get(ENV_PREFIX + key, "")
            if not value.strip():
                missing.append(ENV_PREFIX + key)
            required[key] = value
        if missing:
            raise ConfigError(
                "required key(s) missing value: " + ", ".join(missing)
            )

        debug_raw = env.get(ENV_PREFIX + "DEBUG", "").strip()
        debug = _parse_bool(ENV_PREFIX + "DEBUG", debug_raw) if debug_raw else False

        port_raw = env.get("PORT", "").strip()
        if port_raw:
            try:
                http_port = int(port_raw)
            except ValueError:
                raise ConfigError(f"PORT: invalid integer {port_raw!r}") from None
            if not 0 < http_port < 65536:
                raise ConfigError(f"PORT: out of range {http_port}")
        else:
            http_port = DEFAULT_HTTP_PORT

        return cls(
            ip=required["IP"],
            username=required["USERNAME"],
            password=required["PASSWORD"],
            topic=required["TOPIC"],
            debug=debug,
            client_id=env.get("OVERRIDE_CLIENT_ID") or DEFAULT_CLIENT_ID,
            http_port=http_port,
        )

    @property
    def masked_password(self) -> str:
        return "*" * len(self.password)

    def __repr__(self) -> str:
        return (
            f"Config(ip={self.ip!r}, username={self.username!r}, "
            f"password={self.masked_password!r}, topic={self.topic!r}, "
            f"debug={self.debug!r}, client_id={self.client_id!r}, "
            f"http_port={self.http_port!r})"
        )


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
def configure_logging(debug: bool = False) -> logging.Logger:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger("bambulabs-exporter")
    logger.setLevel(level)
    return logger
