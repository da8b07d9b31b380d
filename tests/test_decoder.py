"""Decoding of XDGM datagrams across layouts and malformed inputs."""

from __future__ import annotations

import logging

import pytest

from xdgm.telemetry import decoder as decoder_module
from xdgm.telemetry.decoder import (
    PAGE_SIZE,
    LedgerRange,
    ObjectCount,
    OperatingMode,
    RateStat,
    TelemetrySnapshot,
    decode,
    format_ledger_ranges,
)
from xdgm.telemetry.layouts import LayoutVersion
from tests.helpers import (
    DEBUG_VALUES,
    LEDGER_HASH,
    LEDGER_SEQ,
    NODE_KEY,
    RATES,
    SYSTEM,
    VERSION_STRING,
    build_extended_payload,
    build_legacy_payload,
    build_v1_payload,
)


def test_decode_v1_datagram_populates_snapshot() -> None:
    decoded = decode(build_v1_payload(warning_flags=0b0101))

    assert decoded.accepted
    snapshot = decoded.snapshot
    assert snapshot.layout is LayoutVersion.XDGM_V1
    assert snapshot.version == 1
    assert snapshot.network_id == 21337
    assert snapshot.operating_mode is OperatingMode.FULL
    assert snapshot.peer_count == 21
    assert snapshot.cpu_cores == 8
    assert snapshot.warning_flags == 0b0101
    assert snapshot.ledger_seq == LEDGER_SEQ
    assert snapshot.ledger_hash == LEDGER_HASH
    assert snapshot.node_public_key == NODE_KEY
    assert snapshot.node_public_key_hex == NODE_KEY.hex()
    assert snapshot.version_string is None
    assert snapshot.system_disk_total == SYSTEM[4]
    assert snapshot.process_memory_bytes == SYSTEM[0] * PAGE_SIZE
    assert snapshot.load_averages == (0.5, 0.75, 1.25)
    assert snapshot.network_in == RateStat(*RATES[0:4])
    assert snapshot.disk_write == RateStat(*RATES[12:16])
    assert snapshot.initial_sync_us == 120_000_000
    assert snapshot.state_accounting[-1] == ("Full", 5, 50_000_000)
    assert decoded.ledger_ranges == (LedgerRange(91_000_000, 91_234_567),)
    assert decoded.object_counts == ()
    assert decoded.debug_counters is None


def test_decode_is_deterministic() -> None:
    payload = build_v1_payload(objects=[("AccountRoot", 12)])

    assert decode(payload) == decode(bytearray(payload))


def test_decode_reads_exact_number_of_ledger_ranges() -> None:
    ranges = ((1, 10), (20, 30), (40, 50))

    decoded = decode(build_v1_payload(ranges=ranges))

    assert decoded.ledger_ranges == tuple(LedgerRange(a, b) for a, b in ranges)
    assert format_ledger_ranges(decoded.ledger_ranges) == "1-10,20-30,40-50"


def test_range_count_overrun_yields_no_ranges(caplog: pytest.LogCaptureFixture) -> None:
    payload = build_v1_payload(ranges=((1, 10), (20, 30)), range_count=5)

    with caplog.at_level(logging.WARNING, logger=decoder_module.__name__):
        decoded = decode(payload)

    assert decoded.accepted
    assert decoded.ledger_ranges == ()
    assert decoded.object_counts == ()
    assert decoded.snapshot.ledger_seq == LEDGER_SEQ
    events = [getattr(record, "event", None) for record in caplog.records]
    assert "decoder.range_overrun" in events


def test_object_table_skips_empty_names_and_partial_records() -> None:
    payload = build_v1_payload(
        objects=[("AccountRoot", 2 ** 33 + 7), ("", 99), ("Ledger", 5)],
        tail=b"\x01\x02\x03",
    )

    decoded = decode(payload)

    assert decoded.object_counts == (
        ObjectCount("AccountRoot", 2 ** 33 + 7),
        ObjectCount("Ledger", 5),
    )


def test_short_buffer_is_truncated_with_zero_defaults() -> None:
    payload = build_v1_payload()[:100]

    decoded = decode(payload)

    assert decoded.truncated
    assert not decoded.accepted
    assert decoded.rejection is None
    assert decoded.snapshot.network_id == 21337
    assert decoded.snapshot.ledger_seq == 0
    assert decoded.snapshot.node_public_key == bytes(33)
    assert decoded.ledger_ranges == ()


def test_empty_buffer_decodes_to_defaults() -> None:
    decoded = decode(b"")

    assert decoded.truncated
    assert decoded.snapshot == TelemetrySnapshot()


def test_invalid_magic_is_rejected() -> None:
    decoded = decode(build_v1_payload(magic=0xDEADBEEF))

    assert decoded.rejection == "Invalid magic number: 0xdeadbeef"
    assert not decoded.accepted
    assert decoded.ledger_ranges == ()


def test_unsupported_version_is_rejected() -> None:
    decoded = decode(build_v1_payload(version=2))

    assert decoded.rejection == "Unsupported protocol version: 2"


def test_extended_layout_decodes_version_string_and_debug_counters() -> None:
    payload = build_extended_payload(objects=[("Offer", 3)])

    decoded = decode(payload, "xdgm-v1-extended")

    assert decoded.accepted
    assert decoded.snapshot.version == 2
    assert decoded.snapshot.version_string == VERSION_STRING
    assert decoded.snapshot.ledger_seq == LEDGER_SEQ
    assert decoded.snapshot.disk_read == RateStat(*RATES[8:12])
    counters = decoded.debug_counters
    assert counters is not None
    assert counters.node_reads_total == DEBUG_VALUES[0]
    assert counters.sle_hit_rate == pytest.approx(0.97)
    assert counters.accepted_ledger_cache_size == 256
    assert counters.accepted_ledger_hit_rate == pytest.approx(0.99)
    assert counters.job_queue_threads == DEBUG_VALUES[-1]
    assert decoded.object_counts == (ObjectCount("Offer", 3),)


def test_extended_layout_accepts_protocol_version_one() -> None:
    decoded = decode(build_extended_payload(version=1), LayoutVersion.XDGM_V1_EXTENDED)

    assert decoded.rejection is None


def test_legacy_layout_reads_trailing_range() -> None:
    decoded = decode(
        build_legacy_payload(warning_flags=8, trailing_range=(5, 500)),
        LayoutVersion.LEGACY_V0,
    )

    assert decoded.accepted
    assert decoded.snapshot.warning_flags == 8
    assert decoded.snapshot.version_string == VERSION_STRING
    assert decoded.snapshot.state_transitions == (0, 0, 0, 0, 0)
    assert decoded.ledger_ranges == (LedgerRange(5, 500),)
    assert decoded.object_counts == ()


def test_legacy_layout_without_trailing_range() -> None:
    decoded = decode(build_legacy_payload(trailing_range=None), LayoutVersion.LEGACY_V0)

    assert decoded.accepted
    assert decoded.ledger_ranges == ()


def test_unknown_layout_raises() -> None:
    with pytest.raises(ValueError):
        decode(build_v1_payload(), "xdgm-v3")


def test_unknown_server_state_has_no_operating_mode() -> None:
    assert TelemetrySnapshot(server_state=9).operating_mode is None


def test_ledger_range_helpers() -> None:
    ledger_range = LedgerRange(10, 19)

    assert ledger_range.span == 10
    assert 15 in ledger_range
    assert 20 not in ledger_range
    assert LedgerRange(5, 1).span == 0
    assert format_ledger_ranges(()) == "empty"


def test_as_tuple_exposes_decoded_sections() -> None:
    decoded = decode(build_v1_payload(objects=[("Ledger", 1)]))

    snapshot, ranges, objects, counters = decoded.as_tuple()

    assert snapshot is decoded.snapshot
    assert ranges == decoded.ledger_ranges
    assert objects == (ObjectCount("Ledger", 1),)
    assert counters is None


def test_range_count_of_three_with_one_pair_is_empty() -> None:
    decoded = decode(build_v1_payload(ranges=((1, 2),), range_count=3))

    assert decoded.ledger_ranges == ()
