import logging
from typing import Union

from .metrics import ExporterMetrics
from .settings import DecodeError, FieldParseError
from .status import AmsUnit, PrintStatus, decode_status, parse_number

logger = logging.getLogger("bambulabs-exporter.processor")

Payload = Union[bytes, bytearray, str]


class StatusProcessor:
    """Applies each printer status report to the exporter's gauges."""

    def __init__(self, metrics: ExporterMetrics) -> None:
        self.metrics = metrics

    def process(self, payload: Payload) -> None:
        """Decode one MQTT payload and update the gauges. Never raises."""
        try:
            status = decode_status(payload)
        except DecodeError as e:
            logger.warning("Dropping message: %s", e)
            return
        except Exception as e:
            logger.exception("Dropping undecodable message: %s", e)
            return

        if not status.is_push_status:
            logger.debug("Ignoring command: %r", status.command)
            return

        try:
            self._update_scalars(status)
            for unit in status.ams_units:
                self._update_ams(unit)
        except Exception as e:
            logger.exception("Metric update failed: %s", e)

    # -------------------------------------------------------------------------
    def _number(self, field: str, raw: str, suffix: str = "") -> float:
        try:
            return parse_number(raw, suffix)
        except FieldParseError as e:
            logger.debug("Field %s defaulted to 0: %s", field, e)
            return 0.0

    def _update_scalars(self, status: PrintStatus) -> None:
        m = self.metrics

        if status.wifi_signal == "":
            logger.debug("Wifi signal was empty")

        m.layer_number.set(status.layer_num)
        m.print_error.set(status.print_error)
        m.wifi_signal.set(self._number("wifi_signal", status.wifi_signal, "dBm"))

        m.big_fan1_speed.set(self._number("big_fan1_speed", status.big_fan1_speed))
        m.big_fan2_speed.set(self._number("big_fan2_speed", status.big_fan2_speed))
        m.cooling_fan_speed.set(
            self._number("cooling_fan_speed", status.cooling_fan_speed)
        )
        m.heatbreak_fan_speed.set(
            self._number("heatbreak_fan_speed", status.heatbreak_fan_speed)
        )
        m.fan_gear.set(status.fan_gear)

        m.fail_reason.set(self._number("fail_reason", status.fail_reason))
        m.mc_percent.set(status.mc_percent)
        m.mc_print_error_code.set(
            self._number("mc_print_error_code", status.mc_print_error_code)
        )
        m.mc_print_stage.set(self._number("mc_print_stage", status.mc_print_stage))
        m.mc_print_sub_stage.set(status.mc_print_sub_stage)
        m.mc_remaining_time.set(status.mc_remaining_time)

        m.chamber_temper.set(status.chamber_temper)
        m.nozzle_temper.set(status.nozzle_temper)
        m.nozzle_target_temper.set(status.nozzle_target_temper)
        m.bed_temper.set(status.bed_temper)
        m.bed_target_temper.set(status.bed_target_temper)

    def _update_ams(self, unit: AmsUnit) -> None:
        m = self.metrics
        unit_labels = {"ams_number": unit.id}

        m.ams_humidity.set(unit_labels, self._number("ams.humidity", unit.humidity))
        m.ams_temp.set(unit_labels, self._number("ams.temp", unit.temp))

        for tray in unit.tray:
            base = {"ams_number": unit.id, "tray_number": tray.id}
            m.ams_tray_type.replace(base, {**base, "tray_type": tray.tray_type}, 1)
            m.ams_tray_color.replace(base, {**base, "tray_color": tray.tray_color}, 1)
