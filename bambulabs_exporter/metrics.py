import threading
from typing import Dict, Mapping, Optional, Sequence, Set, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Gauge,
    generate_latest,
)  # type: ignore[import-not-found]

LabelKey = Tuple[str, ...]


class LabeledGauge:
    """
    A labeled Gauge that remembers which label combinations it has set, so that
    every combination sharing a partial key can be removed before a new one is
    written (a tray holds one material and one color at a time).

    ``replace`` runs the clear and the set under one lock. prometheus_client
    locks each call separately, so a scrape landing between the two may see
    neither combination for that tray.
    """

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str],
        registry: CollectorRegistry,
    ) -> None:
        self.name = name
        self.labelnames: LabelKey = tuple(labelnames)
        self._gauge = Gauge(name, documentation, self.labelnames, registry=registry)
        self._active: Set[LabelKey] = set()
        self._lock = threading.Lock()

    def _key(self, labels: Mapping[str, str]) -> LabelKey:
        extra = set(labels) - set(self.labelnames)
        if extra:
            raise ValueError(f"{self.name}: unknown label(s) {sorted(extra)}")
        try:
            return tuple(str(labels[n]) for n in self.labelnames)
        except KeyError as e:
            raise ValueError(f"{self.name}: missing label {e.args[0]!r}") from None

    def _positions(self, partial: Mapping[str, str]) -> Sequence[Tuple[int, str]]:
        positions = []
        for label, value in partial.items():
            if label not in self.labelnames:
                raise ValueError(f"{self.name}: unknown label {label!r}")
            positions.append((self.labelnames.index(label), str(value)))
        return positions

    def _clear_matching_locked(self, partial: Mapping[str, str]) -> int:
        positions = self._positions(partial)
        stale = [
            key
            for key in self._active
            if all(key[i] == value for i, value in positions)
        ]
        for key in stale:
            self._gauge.remove(*key)
            self._active.discard(key)
        return len(stale)

    def _set_locked(self, key: LabelKey, value: float) -> None:
        self._gauge.labels(*key).set(value)
        self._active.add(key)

    def set(self, labels: Mapping[str, str], value: float) -> None:
        key = self._key(labels)
        with self._lock:
            self._set_locked(key, value)

    def clear_matching(self, partial: Mapping[str, str]) -> int:
        """Remove every set combination whose labels include ``partial``."""
        with self._lock:
            return self._clear_matching_locked(partial)

    def replace(
        self, partial: Mapping[str, str], labels: Mapping[str, str], value: float
    ) -> None:
        """``clear_matching(partial)`` followed by ``set(labels, value)``."""
        key = self._key(labels)
        for label, expected in partial.items():
            if str(labels.get(label)) != str(expected):
                raise ValueError(
                    f"{self.name}: label {label!r} does not match the partial key"
                )
        with self._lock:
            self._clear_matching_locked(partial)
            self._set_locked(key, value)

    def active(self) -> Set[LabelKey]:
        with self._lock:
            return set(self._active)


class ExporterMetrics:
    """All gauges published on /metrics, bound to one CollectorRegistry."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        # A fresh registry carries no process/platform collectors
        self.registry = registry if registry is not None else CollectorRegistry()
        r = self.registry

        # AMS
        self.ams_humidity = LabeledGauge(
            "ams_humidity", "humidity of the ams", ["ams_number"], r
        )
        self.ams_temp = LabeledGauge(
            "ams_temp", "temperature of the ams", ["ams_number"], r
        )
        self.ams_tray_color = LabeledGauge(
            "ams_tray_color",
            "color of material in ams tray",
            ["ams_number", "tray_number", "tray_color"],
            r,
        )
        self.ams_tray_type = LabeledGauge(
            "ams_tray_type",
            "type of material in ams tray",
            ["ams_number", "tray_number", "tray_type"],
            r,
        )

        # Print progress
        self.layer_number = Gauge(
            "layer_number", "layer number of the print head in gcode", registry=r
        )
        self.print_error = Gauge("print_error", "Print error int", registry=r)
        self.fail_reason = Gauge("fail_reason", "Print Failure Reason", registry=r)
        self.mc_percent = Gauge(
            "mc_percent", "Percentage of Progress of print", registry=r
        )
        self.mc_print_error_code = Gauge(
            "mc_print_error_code", "Print Progress Error Code", registry=r
        )
        self.mc_print_stage = Gauge(
            "mc_print_stage", "Print Progress Stage", registry=r
        )
        self.mc_print_sub_stage = Gauge(
            "mc_print_sub_stage", "Print Progress Sub Stage", registry=r
        )
        self.mc_remaining_time = Gauge(
            "mc_remaining_time", "Print Progress Remaining Time in minutes", registry=r
        )

        # Network
        self.wifi_signal = Gauge("wifi_signal", "Wifi signal in dBm", registry=r)

        # Fans
        self.big_fan1_speed = Gauge("big_fan1_speed", "Big Fan 1 Speed", registry=r)
        self.big_fan2_speed = Gauge("big_fan2_speed", "Big Fan 2 Speed", registry=r)
        self.cooling_fan_speed = Gauge(
            "cooling_fan_speed", "Cooling Fan Speed", registry=r
        )
        self.heatbreak_fan_speed = Gauge(
            "heatbreak_fan_speed", "Heatbreak Fan Speed", registry=r
        )
        self.fan_gear = Gauge("fan_gear", "Fan Gear", registry=r)

        # Temperatures
        self.chamber_temper = Gauge(
            "chamber_temper", "Chamber Temperature of Printer", registry=r
        )
        self.nozzle_target_temper = Gauge(
            "nozzle_target_temper", "Nozzle Target Temperature Metric", registry=r
        )
        self.nozzle_temper = Gauge(
            "nozzle_temper", "Nozzle Temperature Metric", registry=r
        )
        self.bed_target_temper = Gauge(
            "bed_target_temper", "Bed target temperature metric", registry=r
        )
        self.bed_temper = Gauge("bed_temper", "Bed temperature metric", registry=r)

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def sample(
        self, name: str, labels: Optional[Dict[str, str]] = None
    ) -> Optional[float]:
        return self.registry.get_sample_value(name, labels or {})
