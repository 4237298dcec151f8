from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hatyai_sos.feed.schema import LocationProperties
from hatyai_sos.scoring.severity import (
    FactorKind,
    SeverityLevel,
    calculate,
    evaluate_factors,
    find_keyword,
    level_for_score,
    parse_age,
    parse_timestamp,
)

NOW = datetime(2025, 11, 26, 12, 0, tzinfo=timezone.utc)


def _iso(delta: timedelta) -> str:
    return (NOW - delta).isoformat().replace("+00:00", "Z")


def test_full_record_reasons_follow_evaluation_order() -> None:
    props = LocationProperties(
        sick_level_summary=3,
        patient=2,
        ages="75",
        disease="โรคหัวใจ",
        updated_at=_iso(timedelta(hours=1)),
        other="ขาดยา",
    )

    result = calculate(props, now=NOW)

    assert result.score == 76
    assert result.level is SeverityLevel.CRITICAL
    assert result.reasons == [
        "ระดับความเจ็บป่วย: 3",
        "มีผู้ป่วยจำนวน 2 คน",
        "อายุเสี่ยง: 75 ปี",
        "โรคประจำตัว: หัวใจ",
        "อัพเดตในช่วง 24 ชั่วโมงที่ผ่านมา",
        "มีคีย์เวิร์ดต้องการความช่วยเหลือ: ขาดยา",
    ]


def test_empty_record_scores_zero_without_reasons() -> None:
    result = calculate(LocationProperties(), now=NOW)

    assert result.score == 0
    assert result.level is SeverityLevel.LOW
    assert result.reasons == []


@pytest.mark.parametrize(("level", "points"), [(4, 55), (3, 45), (2, 30), (1, 15), (0, 0)])
def test_sick_level_bands(level: int, points: int) -> None:
    assert calculate(LocationProperties(sick_level_summary=level), now=NOW).score == points


def test_score_is_clamped_to_100() -> None:
    props = LocationProperties(
        sick_level_summary=4,
        patient=15,
        ages="80",
        disease="มะเร็ง",
        updated_at=_iso(timedelta(hours=2)),
        other="หมดสติ",
    )

    result = calculate(props, now=NOW)

    assert result.score == 100
    assert result.level is SeverityLevel.CRITICAL


def test_score_is_clamped_to_zero_but_penalty_reason_kept() -> None:
    result = calculate(LocationProperties(updated_at=_iso(timedelta(hours=100))), now=NOW)

    assert result.score == 0
    assert result.reasons == ["ไม่มีการอัพเดตเกิน 72 ชั่วโมง"]


def test_victims_used_when_structured_patient_count_is_zero() -> None:
    props = LocationProperties(victims=({"name": "a"}, {"name": "b"}, {"name": "c"}))

    factors = evaluate_factors(props, now=NOW)

    assert [(f.factor, f.weight, f.detail) for f in factors] == [(FactorKind.PATIENT_COUNT, 6, "3")]


def test_patient_contribution_is_capped() -> None:
    assert calculate(LocationProperties(patient=25), now=NOW).score == 20


@pytest.mark.parametrize(
    ("ages", "expected_bonus"),
    [("3, 45", 8), ("45, 80", 0), ("อายุ 72 ปี", 8), ("70", 8), ("6", 0), ("0", 0), ("", 0), ("ไม่ทราบ", 0)],
)
def test_age_bonus(ages: str, expected_bonus: int) -> None:
    assert calculate(LocationProperties(ages=ages), now=NOW).score == expected_bonus


@pytest.mark.parametrize(
    ("delta", "adjustment"),
    [
        (timedelta(hours=2), 6),
        (timedelta(hours=24), 6),
        (timedelta(hours=48), 0),
        (timedelta(hours=72), 0),
        (timedelta(hours=73), -5),
    ],
)
def test_recency_window(delta: timedelta, adjustment: int) -> None:
    props = LocationProperties(sick_level_summary=1, updated_at=_iso(delta))

    assert calculate(props, now=NOW).score == 15 + adjustment


@pytest.mark.parametrize("value", [None, "", "yesterday", "2025-11-26T10:00:00"])
def test_unparseable_or_naive_timestamps_are_neutral(value) -> None:
    assert calculate(LocationProperties(updated_at=value), now=NOW).reasons == []


def test_note_tiers_are_mutually_exclusive() -> None:
    result = calculate(LocationProperties(other="ผู้ป่วยหมดสติ ติดเตียง ขาดอาหาร"), now=NOW)

    assert result.score == 12
    assert result.reasons == ["มีคีย์เวิร์ดรุนแรง: หมดสติ"]


def test_vulnerability_tier_used_when_no_critical_term() -> None:
    result = calculate(LocationProperties(other="ติดเตียง ขาดอาหาร"), now=NOW)

    assert result.score == 8
    assert result.reasons == ["มีคีย์เวิร์ดเสี่ยง: ติดเตียง"]


def test_resource_tier_is_lowest_priority() -> None:
    result = calculate(LocationProperties(other="น้ำท่วม ขาดน้ำ"), now=NOW)

    assert result.score == 5
    assert result.reasons == ["มีคีย์เวิร์ดต้องการความช่วยเหลือ: ขาดน้ำ"]


@pytest.mark.parametrize(
    ("score", "level"),
    [
        (100, SeverityLevel.CRITICAL),
        (75, SeverityLevel.CRITICAL),
        (74, SeverityLevel.HIGH),
        (55, SeverityLevel.HIGH),
        (54, SeverityLevel.MEDIUM),
        (35, SeverityLevel.MEDIUM),
        (34, SeverityLevel.LOW),
        (0, SeverityLevel.LOW),
    ],
)
def test_level_thresholds(score: int, level: SeverityLevel) -> None:
    assert level_for_score(score) is level


def test_exact_threshold_scores_from_records() -> None:
    critical = LocationProperties(sick_level_summary=4, patient=10)
    high = LocationProperties(sick_level_summary=4, ages="2", other="ไฟดับ", updated_at=_iso(timedelta(hours=1)))

    assert calculate(critical, now=NOW).score == 75
    assert calculate(critical, now=NOW).level is SeverityLevel.CRITICAL
    assert calculate(high, now=NOW).score == 74
    assert calculate(high, now=NOW).level is SeverityLevel.HIGH


def test_keyword_match_is_case_insensitive() -> None:
    assert find_keyword("History of STROKE", ["cardiac", "stroke"]) == "stroke"
    assert find_keyword("", ["stroke"]) is None


def test_parse_helpers() -> None:
    assert parse_age(" 12 and 80") == 12
    assert parse_timestamp("2025-11-26T10:00:00.123456789Z") == datetime(
        2025, 11, 26, 10, 0, 0, 123456, tzinfo=timezone.utc
    )
    assert parse_timestamp("2025-11-26T17:00:00+07:00") == datetime(2025, 11, 26, 10, 0, tzinfo=timezone.utc)
