"""
Decoder for the ``device/<serial>/report`` status messages of Bambu Lab printers.

Only the fields the exporter publishes are modelled. Everything else in the
report is ignored, and missing fields fall back to empty values so that partial
reports (the printer often sends deltas) still decode.
"""

import json
from typing import Annotated, Any, List, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from .settings import DecodeError, FieldParseError

PUSH_STATUS = "push_status"


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    return ""


def _as_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = value.strip()
    elif not isinstance(value, (bool, int, float)):
        return 0.0
    try:
        return float(value)
    except (ValueError, OverflowError):
        return 0.0


def _none_as_empty_list(value: Any) -> Any:
    return [] if value is None else value


def _none_as_empty_object(value: Any) -> Any:
    return {} if value is None else value


Text = Annotated[str, BeforeValidator(_as_text)]
Number = Annotated[float, BeforeValidator(_as_number)]


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Tray(_Schema):
    id: Text = ""
    tray_type: Text = ""
    tray_color: Text = ""


class AmsUnit(_Schema):
    id: Text = ""
    humidity: Text = ""
    temp: Text = ""
    tray: Annotated[List[Tray], BeforeValidator(_none_as_empty_list)] = Field(
        default_factory=list
    )


class AmsStatus(_Schema):
    ams: Annotated[List[AmsUnit], BeforeValidator(_none_as_empty_list)] = Field(
        default_factory=list
    )


class PrintStatus(_Schema):
    command: Text = ""

    # Reported as JSON numbers
    layer_num: Number = 0.0
    print_error: Number = 0.0
    chamber_temper: Number = 0.0
    fan_gear: Number = 0.0
    mc_percent: Number = 0.0
    mc_print_sub_stage: Number = 0.0
    mc_remaining_time: Number = 0.0
    nozzle_temper: Number = 0.0
    nozzle_target_temper: Number = 0.0
    bed_temper: Number = 0.0
    bed_target_temper: Number = 0.0

    # Reported as strings, parsed by the processor
    wifi_signal: Text = ""
    big_fan1_speed: Text = ""
    big_fan2_speed: Text = ""
    cooling_fan_speed: Text = ""
    heatbreak_fan_speed: Text = ""
    fail_reason: Text = ""
    mc_print_error_code: Text = ""
    mc_print_stage: Text = ""

    ams: Annotated[AmsStatus, BeforeValidator(_none_as_empty_object)] = Field(
        default_factory=AmsStatus
    )

    @property
    def ams_units(self) -> List[AmsUnit]:
        return self.ams.ams

    @property
    def is_push_status(self) -> bool:
        return self.command == PUSH_STATUS


class StatusReport(_Schema):
    print_status: Annotated[PrintStatus, BeforeValidator(_none_as_empty_object)] = Field(
        default_factory=PrintStatus, alias="print"
    )


def decode_status(payload: Union[bytes, bytearray, str]) -> PrintStatus:
    """
    Decode a raw MQTT payload into a PrintStatus.

    Raises DecodeError when the payload is not JSON, is not a JSON object, or
    when one of the nested objects/lists has the wrong shape.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            text = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Payload is not valid UTF-8: {e}") from e
    else:
        text = payload

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Error unmarshalling JSON: {e}") from e
    except RecursionError:
        raise DecodeError("JSON nesting is too deep") from None

    if not isinstance(data, dict):
        raise DecodeError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    try:
        report = StatusReport.model_validate(data)
    except ValidationError as e:
        raise DecodeError(
            f"Status report has an unexpected shape ({e.error_count()} errors)"
        ) from e
    except RecursionError:
        raise DecodeError("Status report nesting is too deep") from None
    return report.print_status


def parse_number(value: str, suffix: str = "") -> float:
    """Parse a numeric string such as ``"150"`` or ``"-50dBm"`` (with suffix="dBm")."""
    text = value.replace(suffix, "") if suffix else value
    try:
        return float(text.strip())
    except ValueError:
        raise FieldParseError(value, suffix) from None
