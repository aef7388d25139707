import logging

from bambulabs_exporter import processor as processor_module

from conftest import make_payload, tray_payload

SCALARS = {
    "layer_number": 10.0,
    "print_error": 0.0,
    "wifi_signal": -50.0,
    "big_fan1_speed": 150.0,
    "big_fan2_speed": 200.0,
    "chamber_temper": 30.0,
    "cooling_fan_speed": 100.0,
    "heatbreak_fan_speed": 15.0,
    "fail_reason": 0.0,
    "fan_gear": 3.0,
    "mc_percent": 50.0,
    "mc_print_error_code": 0.0,
    "mc_print_stage": 2.0,
    "mc_print_sub_stage": 4.0,
    "mc_remaining_time": 60.0,
    "nozzle_temper": 220.0,
    "nozzle_target_temper": 230.0,
    "bed_temper": 55.5,
    "bed_target_temper": 60.0,
}


def snapshot(metrics):
    return {
        (sample.name, tuple(sorted(sample.labels.items()))): sample.value
        for family in metrics.registry.collect()
        for sample in family.samples
    }


def test_push_status_updates_every_scalar(metrics, processor):
    processor.process(make_payload())

    for name, expected in SCALARS.items():
        assert metrics.sample(name) == expected, name


def test_ams_scenario(metrics, processor):
    processor.process(make_payload())

    assert metrics.sample("ams_humidity", {"ams_number": "0"}) == 50.0
    assert metrics.sample("ams_temp", {"ams_number": "0"}) == 25.0
    assert (
        metrics.sample(
            "ams_tray_type",
            {"ams_number": "0", "tray_number": "0", "tray_type": "ABS"},
        )
        == 1
    )
    assert (
        metrics.sample(
            "ams_tray_color",
            {"ams_number": "0", "tray_number": "0", "tray_color": "Blue"},
        )
        == 1
    )


def test_stage_and_sub_stage_are_separate_gauges(metrics, processor):
    processor.process(make_payload(mc_print_stage="1", mc_print_sub_stage=7))

    assert metrics.sample("mc_print_stage") == 1.0
    assert metrics.sample("mc_print_sub_stage") == 7.0


def test_unparsable_fields_default_to_zero_independently(metrics, processor):
    processor.process(make_payload())
    processor.process(
        make_payload(
            wifi_signal="",
            big_fan1_speed="fast",
            cooling_fan_speed="n/a",
            big_fan2_speed="75",
        )
    )

    assert metrics.sample("wifi_signal") == 0.0
    assert metrics.sample("big_fan1_speed") == 0.0
    assert metrics.sample("cooling_fan_speed") == 0.0
    assert metrics.sample("big_fan2_speed") == 75.0
    assert metrics.sample("nozzle_temper") == 220.0


def test_unparsable_ams_values_default_to_zero(metrics, processor):
    processor.process(
        make_payload(
            {
                "print": {
                    "command": "push_status",
                    "ams": {"ams": [{"id": "1", "humidity": "", "temp": "warm"}]},
                }
            }
        )
    )
    assert metrics.sample("ams_humidity", {"ams_number": "1"}) == 0.0
    assert metrics.sample("ams_temp", {"ams_number": "1"}) == 0.0


def test_other_commands_change_nothing(metrics, processor):
    processor.process(make_payload())
    before = snapshot(metrics)

    processor.process(make_payload(command="push_info", nozzle_temper=999.0))
    processor.process(b'{"info": {"command": "get_version", "sequence_id": "0"}}')

    assert snapshot(metrics) == before


def test_malformed_payload_is_dropped(metrics, processor, caplog):
    before = snapshot(metrics)

    with caplog.at_level(logging.WARNING):
        processor.process(b'{"invalid": json}')
        processor.process(b"\x00\x01\x02")
        processor.process(b"[]")
        processor.process(b"[" * 100000)

    assert snapshot(metrics) == before
    assert "Dropping message" in caplog.text


def test_decoder_failures_do_not_escape(metrics, processor, monkeypatch, caplog):
    def boom(payload):
        raise MemoryError("payload too large")

    monkeypatch.setattr(processor_module, "decode_status", boom)
    before = snapshot(metrics)

    with caplog.at_level(logging.ERROR):
        processor.process(make_payload())

    assert snapshot(metrics) == before
    assert "Dropping undecodable message" in caplog.text


def test_tray_material_change_leaves_one_combination(metrics, processor):
    processor.process(tray_payload(tray_type="PLA", tray_color="Red"))
    processor.process(tray_payload(tray_type="ABS", tray_color="Black"))

    labels = {"ams_number": "0", "tray_number": "0"}
    assert metrics.sample("ams_tray_type", {**labels, "tray_type": "ABS"}) == 1
    assert metrics.sample("ams_tray_type", {**labels, "tray_type": "PLA"}) is None
    assert metrics.sample("ams_tray_color", {**labels, "tray_color": "Black"}) == 1
    assert metrics.sample("ams_tray_color", {**labels, "tray_color": "Red"}) is None
    assert metrics.ams_tray_type.active() == {("0", "0", "ABS")}


def test_other_trays_keep_their_labels(metrics, processor):
    processor.process(tray_payload(tray_id="0", tray_type="PLA"))
    processor.process(tray_payload(tray_id="1", tray_type="PETG"))

    assert metrics.ams_tray_type.active() == {("0", "0", "PLA"), ("0", "1", "PETG")}


def test_absent_ams_leaves_labels_untouched(metrics, processor):
    processor.process(tray_payload(tray_type="PLA"))
    labeled = metrics.ams_tray_type.active()

    processor.process(make_payload({"print": {"command": "push_status"}}))
    processor.process(make_payload({"print": {"command": "push_status", "ams": {}}}))

    assert metrics.ams_tray_type.active() == labeled
    assert metrics.sample("ams_humidity", {"ams_number": "0"}) == 40.0


def test_empty_ams_creates_no_labeled_samples(metrics, processor):
    processor.process(make_payload({"print": {"command": "push_status", "ams": {"ams": []}}}))

    labeled = [
        sample
        for family in metrics.registry.collect()
        if family.name.startswith("ams_")
        for sample in family.samples
    ]
    assert labeled == []


def test_unexpected_errors_do_not_escape(metrics, processor, monkeypatch, caplog):
    def boom(*args, **kwargs):
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(metrics.ams_tray_type, "replace", boom)

    with caplog.at_level(logging.ERROR):
        processor.process(make_payload())

    assert "Metric update failed" in caplog.text
    assert metrics.sample("nozzle_temper") == 220.0
