import json

import pytest

from bambulabs_exporter.metrics import ExporterMetrics
from bambulabs_exporter.processor import StatusProcessor


# Report captured from an X1C, trimmed to the fields we export plus a few we ignore
SAMPLE_REPORT = {
    "print": {
        "command": "push_status",
        "sequence_id": "2064",
        "gcode_state": "RUNNING",
        "layer_num": 10,
        "print_error": 0,
        "wifi_signal": "-50dBm",
        "big_fan1_speed": "150",
        "big_fan2_speed": "200",
        "chamber_temper": 30.0,
        "cooling_fan_speed": "100",
        "heatbreak_fan_speed": "15",
        "fail_reason": "0",
        "fan_gear": 3,
        "mc_percent": 50,
        "mc_print_error_code": "0",
        "mc_print_stage": "2",
        "mc_print_sub_stage": 4,
        "mc_remaining_time": 60,
        "nozzle_temper": 220.0,
        "nozzle_target_temper": 230.0,
        "bed_temper": 55.5,
        "bed_target_temper": 60.0,
        "ams": {
            "ams": [
                {
                    "id": "0",
                    "humidity": "50.0",
                    "temp": "25.0",
                    "tray": [
                        {
                            "id": "0",
                            "tray_type": "ABS",
                            "tray_color": "Blue",
                            "remain": 80,
                        }
                    ],
                }
            ],
            "tray_now": "0",
        },
        "lights_report": [{"node": "chamber_light", "mode": "on"}],
    }
}


def make_payload(report=None, **print_fields) -> bytes:
    """Serialize a report; keyword arguments override fields under "print"."""
    data = json.loads(json.dumps(SAMPLE_REPORT if report is None else report))
    data.setdefault("print", {}).update(print_fields)
    return json.dumps(data).encode("utf-8")


def tray_payload(ams_id="0", tray_id="0", tray_type="PLA", tray_color="Red") -> bytes:
    return make_payload(
        {
            "print": {
                "command": "push_status",
                "ams": {
                    "ams": [
                        {
                            "id": ams_id,
                            "humidity": "40",
                            "temp": "22.5",
                            "tray": [
                                {
                                    "id": tray_id,
                                    "tray_type": tray_type,
                                    "tray_color": tray_color,
                                }
                            ],
                        }
                    ]
                },
            }
        }
    )


@pytest.fixture
def metrics():
    return ExporterMetrics()


@pytest.fixture
def processor(metrics):
    return StatusProcessor(metrics)
