"""求救记录严重度评分。

按固定顺序独立累加各项因素，最后截断到 [0, 100]：
1. 病情等级 sick_level_summary
2. 患者人数（结构化人数为 0 时用 victims 数量）
3. 高危年龄
4. 高危慢性病
5. 更新时效
6. 备注关键词（三档互斥，只取最高命中档）

评分逻辑输出结构化因素列表，展示用的 reasons 文本在最后统一渲染。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from hatyai_sos.feed.schema import LocationProperties


class SeverityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FactorKind(str, Enum):
    SICK_LEVEL = "sick_level"
    PATIENT_COUNT = "patient_count"
    AGE = "age"
    DISEASE = "disease"
    RECENT_UPDATE = "recent_update"
    STALE_UPDATE = "stale_update"
    CRITICAL_KEYWORD = "critical_keyword"
    VULNERABLE_KEYWORD = "vulnerable_keyword"
    RESOURCE_KEYWORD = "resource_keyword"


SICK_LEVEL_WEIGHTS = {4: 55, 3: 45, 2: 30, 1: 15}

PATIENT_WEIGHT_PER_PERSON = 2
PATIENT_COUNT_CAP = 10

RISK_AGE_BONUS = 8
RISK_AGE_CHILD_BELOW = 6
RISK_AGE_ELDER_FROM = 70

DISEASE_BONUS = 8
SEVERE_DISEASE_KEYWORDS: Tuple[str, ...] = (
    "หัวใจ",  # 心脏病
    "หัวใจหยุด",  # 心脏骤停
    "เส้นเลือด",  # 血管
    "หลอดเลือดสมอง",  # 脑卒中
    "มะเร็ง",  # 癌症
    "ฟอกไต",  # 透析
    "เครื่องช่วยหายใจ",  # 呼吸机依赖
)

RECENT_UPDATE_HOURS = 24
RECENT_UPDATE_BONUS = 6
STALE_UPDATE_HOURS = 72
STALE_UPDATE_PENALTY = -5

# 备注关键词三档，按优先级排列；高档命中后不再检查低档
CRITICAL_KEYWORDS: Tuple[str, ...] = (
    "หมดสติ",
    "หัวใจหยุด",
    "วิกฤต",
    "ช่วยด่วน",
    "ฟอกไต",
    "หายใจไม่ออก",
    "เลือดออกมาก",
    "เสียเลือด",
    "หยุดหายใจ",
    "ช็อก",
    "ชัก",
    "ไม่รู้สึกตัว",
    "บาดเจ็บหนัก",
    "กระดูกหัก",
)
VULNERABLE_KEYWORDS: Tuple[str, ...] = (
    "ติดเตียง",
    "พิการ",
    "ใกล้คลอด",
    "เด็กเล็ก",
    "ผู้สูงอายุ",
    "ทารกแรกเกิด",
)
RESOURCE_KEYWORDS: Tuple[str, ...] = (
    "ขาดอาหาร",
    "ขาดน้ำ",
    "ขาดยา",
    "ขาดไฟ",
    "ติดต่อไม่ได้",
    "ตัดขาด",
    "ติดอยู่",
    "ไม่มีสัญญาณ",
    "ไฟดับ",
)
NOTE_KEYWORD_TIERS: Tuple[Tuple[FactorKind, int, Tuple[str, ...]], ...] = (
    (FactorKind.CRITICAL_KEYWORD, 12, CRITICAL_KEYWORDS),
    (FactorKind.VULNERABLE_KEYWORD, 8, VULNERABLE_KEYWORDS),
    (FactorKind.RESOURCE_KEYWORD, 5, RESOURCE_KEYWORDS),
)

CRITICAL_THRESHOLD = 75
HIGH_THRESHOLD = 55
MEDIUM_THRESHOLD = 35

_FRACTION_RE = re.compile(r"\.(\d+)")

# 展示文案（泰文，面向本地救援人员）
_REASON_TEMPLATES = {
    FactorKind.SICK_LEVEL: "ระดับความเจ็บป่วย: {detail}",
    FactorKind.PATIENT_COUNT: "มีผู้ป่วยจำนวน {detail} คน",
    FactorKind.AGE: "อายุเสี่ยง: {detail} ปี",
    FactorKind.DISEASE: "โรคประจำตัว: {detail}",
    FactorKind.RECENT_UPDATE: "อัพเดตในช่วง 24 ชั่วโมงที่ผ่านมา",
    FactorKind.STALE_UPDATE: "ไม่มีการอัพเดตเกิน 72 ชั่วโมง",
    FactorKind.CRITICAL_KEYWORD: "มีคีย์เวิร์ดรุนแรง: {detail}",
    FactorKind.VULNERABLE_KEYWORD: "มีคีย์เวิร์ดเสี่ยง: {detail}",
    FactorKind.RESOURCE_KEYWORD: "มีคีย์เวิร์ดต้องการความช่วยเหลือ: {detail}",
}


@dataclass(frozen=True, slots=True)
class SeverityFactor:
    """单项评分因素。"""

    factor: FactorKind
    weight: int
    detail: str = ""


class SeverityResult(BaseModel):
    score: int = Field(..., ge=0, le=100)
    level: SeverityLevel
    reasons: List[str] = Field(default_factory=list)


def parse_age(value: str) -> int:
    """取年龄文本中第一段连续数字，如 "3, 75" → 3；无数字返回 0。"""
    digits: List[str] = []
    for char in value.strip():
        if "0" <= char <= "9":
            digits.append(char)
        elif digits:
            break
    if not digits:
        return 0
    return int("".join(digits))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """解析 ISO-8601 时间；无法解析或缺少时区信息时返回 None。"""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # 小数秒统一为 6 位（上游可能给出纳秒精度）
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def find_keyword(text: str, keywords: Sequence[str]) -> Optional[str]:
    """大小写不敏感的包含匹配，按关键词顺序返回第一个命中项。"""
    if not text:
        return None
    lowered = text.lower()
    for keyword in keywords:
        if keyword.lower() in lowered:
            return keyword
    return None


def evaluate_factors(props: LocationProperties, *, now: Optional[datetime] = None) -> List[SeverityFactor]:
    """按固定顺序计算各项因素，未产生贡献的因素不出现在结果中。"""
    factors: List[SeverityFactor] = []

    sick_weight = SICK_LEVEL_WEIGHTS.get(props.sick_level_summary)
    if sick_weight:
        factors.append(SeverityFactor(FactorKind.SICK_LEVEL, sick_weight, str(props.sick_level_summary)))

    patient_count = props.patient
    if patient_count == 0 and props.victims:
        patient_count = len(props.victims)
    if patient_count > 0:
        weight = min(patient_count, PATIENT_COUNT_CAP) * PATIENT_WEIGHT_PER_PERSON
        factors.append(SeverityFactor(FactorKind.PATIENT_COUNT, weight, str(patient_count)))

    age = parse_age(props.ages)
    if age > 0 and (age < RISK_AGE_CHILD_BELOW or age >= RISK_AGE_ELDER_FROM):
        factors.append(SeverityFactor(FactorKind.AGE, RISK_AGE_BONUS, str(age)))

    disease = find_keyword(props.disease, SEVERE_DISEASE_KEYWORDS)
    if disease is not None:
        factors.append(SeverityFactor(FactorKind.DISEASE, DISEASE_BONUS, disease))

    updated_at = parse_timestamp(props.updated_at)
    if updated_at is not None:
        reference = now or datetime.now(timezone.utc)
        hours = (reference - updated_at).total_seconds() / 3600
        if hours <= RECENT_UPDATE_HOURS:
            factors.append(SeverityFactor(FactorKind.RECENT_UPDATE, RECENT_UPDATE_BONUS))
        elif hours > STALE_UPDATE_HOURS:
            factors.append(SeverityFactor(FactorKind.STALE_UPDATE, STALE_UPDATE_PENALTY))

    for kind, bonus, keywords in NOTE_KEYWORD_TIERS:
        keyword = find_keyword(props.other, keywords)
        if keyword is not None:
            factors.append(SeverityFactor(kind, bonus, keyword))
            break

    return factors


def level_for_score(score: int) -> SeverityLevel:
    if score >= CRITICAL_THRESHOLD:
        return SeverityLevel.CRITICAL
    if score >= HIGH_THRESHOLD:
        return SeverityLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return SeverityLevel.MEDIUM
    return SeverityLevel.LOW


def render_reason(factor: SeverityFactor) -> str:
    return _REASON_TEMPLATES[factor.factor].format(detail=factor.detail)


def calculate(props: LocationProperties, *, now: Optional[datetime] = None) -> SeverityResult:
    factors = evaluate_factors(props, now=now)
    score = max(0, min(100, sum(f.weight for f in factors)))
    return SeverityResult(
        score=score,
        level=level_for_score(score),
        reasons=[render_reason(f) for f in factors],
    )


__all__ = [
    "FactorKind",
    "SeverityFactor",
    "SeverityLevel",
    "SeverityResult",
    "calculate",
    "evaluate_factors",
    "find_keyword",
    "level_for_score",
    "parse_age",
    "parse_timestamp",
    "render_reason",
]
