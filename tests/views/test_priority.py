from __future__ import annotations

from datetime import datetime, timezone

from hatyai_sos.views.priority import most_recent_update, prioritize

NOW = datetime(2025, 11, 26, 12, 0, tzinfo=timezone.utc)


def _records(make_dataset, make_record):
    return make_dataset(
        make_record("low", sick_level_summary=1),
        make_record("critical", sick_level_summary=4, patient=10),
        make_record("high-older", sick_level_summary=4, record_updated_at="2025-11-20T00:00:00Z"),
        make_record("high-newer", sick_level_summary=4, record_updated_at="2025-11-22T00:00:00Z"),
        make_record("medium", sick_level_summary=3),
    ).records


def test_sorted_by_score_then_most_recent_update(make_dataset, make_record) -> None:
    view = prioritize(_records(make_dataset, make_record), now=NOW)

    assert view.count == 5
    assert [item.record.id for item in view.items] == [
        "critical",
        "high-newer",
        "high-older",
        "medium",
        "low",
    ]
    assert [item.priority.score for item in view.items] == [75, 55, 55, 45, 15]


def test_level_filter(make_dataset, make_record) -> None:
    view = prioritize(_records(make_dataset, make_record), level=" HIGH ", now=NOW)

    assert view.count == 2
    assert {item.priority.level.value for item in view.items} == {"high"}


def test_level_all_and_blank_do_not_filter(make_dataset, make_record) -> None:
    records = _records(make_dataset, make_record)

    assert prioritize(records, level="all", now=NOW).count == 5
    assert prioritize(records, level="", now=NOW).count == 5


def test_unknown_level_yields_empty_view(make_dataset, make_record) -> None:
    view = prioritize(_records(make_dataset, make_record), level="urgent", now=NOW)

    assert view.count == 0
    assert view.items == []


def test_limit_truncates_but_count_reports_full_size(make_dataset, make_record) -> None:
    view = prioritize(_records(make_dataset, make_record), limit=2, now=NOW)

    assert view.count == 5
    assert [item.record.id for item in view.items] == ["critical", "high-newer"]


def test_non_positive_or_oversized_limit_is_ignored(make_dataset, make_record) -> None:
    records = _records(make_dataset, make_record)

    assert len(prioritize(records, limit=0, now=NOW).items) == 5
    assert len(prioritize(records, limit=-3, now=NOW).items) == 5
    assert len(prioritize(records, limit=50, now=NOW).items) == 5


def test_most_recent_update_falls_back_to_property_timestamp(make_dataset, make_record) -> None:
    records = make_dataset(
        make_record("a", updated_at="2025-11-24T08:00:00+07:00"),
        make_record("b"),
    ).records

    assert most_recent_update(records[0]) == datetime(2025, 11, 24, 1, 0, tzinfo=timezone.utc)
    assert most_recent_update(records[1]) == datetime.min.replace(tzinfo=timezone.utc)


def test_payload_flattens_record_and_adds_priority(make_dataset, make_record) -> None:
    view = prioritize(make_dataset(make_record("sos-9", sick_level_summary=2)).records, now=NOW)

    payload = view.items[0].to_payload()

    assert payload["_id"] == "sos-9"
    assert payload["location"]["properties"]["sick_level_summary"] == 2
    assert payload["priority"] == {
        "score": 30,
        "level": "low",
        "reasons": ["ระดับความเจ็บป่วย: 2"],
    }
