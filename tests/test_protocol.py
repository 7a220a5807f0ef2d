from __future__ import annotations

import pytest

from rocketdeck.errors import DecodeFailure, TelemetryDecodeError
from rocketdeck.telemetry import protocol
from rocketdeck.telemetry.types import (
    LEGACY_SCHEMA,
    ORIENTATION_SCHEMA,
    EventKind,
    FrameKind,
    OrientationStatusBits,
)

from conftest import TELEMETRY_LINE

STREAM = (
    "1000,12.5,12.5,21.0,3.9,0.1,0,0,0,0\n"
    "SYSTEM: READY\n"
    "1100,14.0,14.0,21.0,3.9,2.5,1.5,-0.5,90.0,64\n"
    "DEPLOY:AUTO: Apogee detected\n"
    "1200,13.0,14.0,20.9,3.8,0.2,0,0,0,320\n"
)


# ---------------------------------------- #
#  Framing                                 #
# ---------------------------------------- #


def _split_all(chunks: list[str]) -> tuple[list[str], str]:
    buf = ""
    out: list[str] = []
    for chunk in chunks:
        frames, buf = protocol.split_frames(buf, chunk)
        out.extend(frames)
    return out, buf


def test_split_frames_keeps_remainder():
    frames, rest = protocol.split_frames("", "a,1\nb,2\nc,")
    assert frames == ["a,1", "b,2"]
    assert rest == "c,"

    frames, rest = protocol.split_frames(rest, "3\n")
    assert frames == ["c,3"]
    assert rest == ""


def test_split_frames_is_chunking_invariant():
    expected, rest = protocol.split_frames("", STREAM)
    assert len(expected) == 5
    assert rest == ""

    # Every single cut point, and every pair of cut points.
    for i in range(len(STREAM) + 1):
        assert _split_all([STREAM[:i], STREAM[i:]]) == (expected, "")

    for i in range(0, len(STREAM), 7):
        for j in range(i, len(STREAM), 11):
            assert _split_all([STREAM[:i], STREAM[i:j], STREAM[j:]]) == (expected, "")


def test_split_frames_byte_at_a_time():
    frames, rest = _split_all(list(STREAM))
    assert frames == protocol.split_frames("", STREAM)[0]
    assert rest == ""


def test_split_frames_strips_crlf_and_skips_blank_lines():
    frames, rest = protocol.split_frames("", "SYSTEM: READY\r\n\r\n\n1,2\r\n")
    assert frames == ["SYSTEM: READY", "1,2"]
    assert rest == ""


# ---------------------------------------- #
#  Classification                          #
# ---------------------------------------- #


@pytest.mark.parametrize(
    "line, kind",
    [
        (TELEMETRY_LINE, FrameKind.TELEMETRY),
        ("SYSTEM: READY", FrameKind.TEXT),
        ("DEPLOY:AUTO: Apogee detected", FrameKind.TEXT),
        ("ERR:BMP180_INIT", FrameKind.TEXT),
        # Mixed lines go to the decoder and fail there.
        ("abc,def", FrameKind.TELEMETRY),
        ("-1.5e3,2", FrameKind.TELEMETRY),
    ],
)
def test_classify(line, kind):
    assert protocol.classify(line) is kind


def test_classify_event_by_keyword():
    assert protocol.classify_event("DEPLOY:AUTO: Apogee detected") is EventKind.APOGEE
    assert protocol.classify_event("Parachute deployed") is EventKind.PARACHUTE
    assert protocol.classify_event("SERVO DONE") is EventKind.SERVO
    assert protocol.classify_event("SYSTEM: READY") is EventKind.MESSAGE


@pytest.mark.parametrize(
    "text, kind",
    [
        ("Apogee reached, parachute deploy", EventKind.PARACHUTE),
        ("Apogee servo done", EventKind.SERVO),
        ("Servo armed for parachute", EventKind.PARACHUTE),
    ],
)
def test_classify_event_keyword_priority(text, kind):
    assert protocol.classify_event(text) is kind


def test_text_event_uses_given_timestamp():
    evt = protocol.text_event("SYSTEM: READY", timestamp_ms=1234)
    assert evt.text == "SYSTEM: READY"
    assert evt.timestamp == 1234
    assert evt.kind is EventKind.MESSAGE


def test_first_number():
    assert protocol.first_number("APOGEE 152.3m") == "152.3"
    assert protocol.first_number("Apogee detected") is None


# ---------------------------------------- #
#  Decoding                                #
# ---------------------------------------- #


def test_decode_reference_frame():
    record = protocol.decode_telemetry(TELEMETRY_LINE, ORIENTATION_SCHEMA)

    assert record.time == 1000
    assert record.altitude == 12.5
    assert record.max_altitude == 12.5
    assert record.temperature == 21.0
    assert record.voltage == 3.9
    assert record.accel_y == 0.1
    assert record.accel_x is None
    assert record.status_flags == 0
    assert record.flags.active() == []
    assert not any(record.flags.as_dict().values())


def test_decode_legacy_schema():
    record = protocol.decode_telemetry("500,3.0,3.0,20.0,4.1,0.0,0.0,1.0,3", LEGACY_SCHEMA)

    assert record.accel_z == 1.0
    assert record.angle_x is None
    assert record.acceleration == pytest.approx(1.0)
    assert record.flags.parachute_deployed
    assert record.flags.launch_detected


def test_decode_rejects_wrong_field_count():
    with pytest.raises(TelemetryDecodeError) as exc_info:
        protocol.decode_telemetry("abc,def", ORIENTATION_SCHEMA)
    assert exc_info.value.reason is DecodeFailure.FIELD_COUNT_MISMATCH

    # A legacy frame is the wrong length for the orientation schema.
    with pytest.raises(TelemetryDecodeError):
        protocol.decode_telemetry("500,3.0,3.0,20.0,4.1,0.0,0.0,1.0,3", ORIENTATION_SCHEMA)


@pytest.mark.parametrize(
    "line",
    [
        "1000,12.5,12.5,21.0,3.9,0.1,0,0,0,",
        "1000.5,12.5,12.5,21.0,3.9,0.1,0,0,0,0",
        "1000,12.5,12.5,21.0,3.9,0.1,0,0,0,1.5",
        "1000,1e999,12.5,21.0,3.9,0.1,0,0,0,0",
        "1000,12.5,--,21.0,3.9,0.1,0,0,0,0",
        "1_000,12.5,12.5,21.0,3.9,0.1,0,0,0,0",
        "1000,1_2.5,12.5,21.0,3.9,0.1,0,0,0,0",
    ],
)
def test_decode_rejects_non_numeric(line):
    with pytest.raises(TelemetryDecodeError) as exc_info:
        protocol.decode_telemetry(line, ORIENTATION_SCHEMA)
    assert exc_info.value.reason is DecodeFailure.NUMERIC_PARSE_FAILURE


def test_decode_error_is_a_value_error():
    with pytest.raises(ValueError):
        protocol.decode_telemetry("1,2", ORIENTATION_SCHEMA)


def test_format_record_reproduces_values():
    line = "1100,14.0,14.25,21.0,3.9,2.5,1.5,-0.5,90.0,64"
    record = protocol.decode_telemetry(line, ORIENTATION_SCHEMA)

    again = protocol.decode_telemetry(protocol.format_record(record, ORIENTATION_SCHEMA), ORIENTATION_SCHEMA)
    assert again == record

    for original, written in zip(line.split(","), protocol.format_record(record, ORIENTATION_SCHEMA).split(",")):
        assert float(written) == pytest.approx(float(original))


# ---------------------------------------- #
#  Status flags                            #
# ---------------------------------------- #


def test_status_flags_are_pure():
    a = protocol.decode_status_flags(0b101001000, ORIENTATION_SCHEMA)
    b = protocol.decode_status_flags(0b101001000, ORIENTATION_SCHEMA)
    assert a == b
    assert a.as_dict() == b.as_dict()
    assert a.active() == ["servo_open", "launch_detected", "parachute_deployed"]


def test_status_bits_are_independent():
    for bit in OrientationStatusBits:
        flags = protocol.decode_status_flags(bit.value, ORIENTATION_SCHEMA)
        assert flags.active() == [bit.name.lower()]

    base = protocol.decode_status_flags(1 << 5, ORIENTATION_SCHEMA)
    with_bit3 = protocol.decode_status_flags((1 << 5) | (1 << 3), ORIENTATION_SCHEMA)
    assert base["system_ready"] == with_bit3["system_ready"]


def test_reserved_bits_are_ignored():
    flags = protocol.decode_status_flags((1 << 12) | (1 << 8), ORIENTATION_SCHEMA)
    assert flags.active() == ["parachute_deployed"]
    assert flags == protocol.decode_status_flags(1 << 8, ORIENTATION_SCHEMA)

    assert protocol.decode_status_flags(1 << 3, LEGACY_SCHEMA).active() == []


def test_bit_tables_differ_between_schemas():
    assert protocol.decode_status_flags(1, LEGACY_SCHEMA).parachute_deployed
    assert not protocol.decode_status_flags(1, ORIENTATION_SCHEMA).parachute_deployed
    assert protocol.decode_status_flags(256, ORIENTATION_SCHEMA).parachute_deployed


def test_unknown_flag_name():
    flags = protocol.decode_status_flags(0, LEGACY_SCHEMA)
    assert flags.get("hatch_open") is False
    with pytest.raises(KeyError):
        flags["hatch_open"]


# ---------------------------------------- #
#  Commands                                #
# ---------------------------------------- #


def test_encode_command():
    assert protocol.encode_command("DEPLOY") == b"DEPLOY\n"
    assert protocol.encode_command("  ABORT ") == b"ABORT\n"


@pytest.mark.parametrize("command", ["", "   ", "DEP\nLOY"])
def test_encode_command_rejects_bad_input(command):
    with pytest.raises(ValueError):
        protocol.encode_command(command)
