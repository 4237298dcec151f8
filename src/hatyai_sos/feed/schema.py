"""上游 SOS 数据的固定结构映射。

记录抓取后不可变（frozen），一次新的抓取整体替换数据集，不做逐条修补。
未声明的上游字段在解析时丢弃，序列化结果即缓存中保存的规范化 JSON。
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hatyai_sos.errors import DecodeError


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Geometry(_FrozenModel):
    """GeoJSON 点位，坐标按上游顺序为 (经度, 纬度)。"""

    type: str = ""
    coordinates: Tuple[float, ...] = ()

    @field_validator("type", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("coordinates", mode="before")
    @classmethod
    def _normalize_coordinates(cls, value: object) -> object:
        return () if value is None else value

    @property
    def lon_lat(self) -> Optional[Tuple[float, float]]:
        if len(self.coordinates) < 2:
            return None
        return self.coordinates[0], self.coordinates[1]


class LocationProperties(_FrozenModel):
    """单条求救记录的业务属性。"""

    other: str = ""
    victims: Tuple[Any, ...] = ()
    patient: int = 0
    province: str = ""
    district: str = ""
    subdistrict: str = ""
    sick_level_summary: int = 0
    running_number: str = ""
    status_text: str = ""
    type_name: str = ""
    ages: str = ""
    disease: str = ""
    updated_at: Optional[str] = None

    @field_validator(
        "other",
        "province",
        "district",
        "subdistrict",
        "running_number",
        "status_text",
        "type_name",
        "ages",
        "disease",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("patient", "sick_level_summary", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        return 0 if value is None else value

    @field_validator("victims", mode="before")
    @classmethod
    def _normalize_victims(cls, value: object) -> object:
        return () if value is None else value


class Location(_FrozenModel):
    type: str = ""
    properties: LocationProperties = Field(default_factory=LocationProperties)
    geometry: Geometry = Field(default_factory=Geometry)

    @field_validator("type", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value


class SOSRecord(_FrozenModel):
    """一条求救/紧急报告。"""

    id: str = Field("", alias="_id")
    location: Location = Field(default_factory=Location)
    running_number: str = ""
    updated_at: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("id", "running_number", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def properties(self) -> LocationProperties:
        return self.location.properties


class SOSItems(_FrozenModel):
    data: Tuple[SOSRecord, ...] = ()

    @field_validator("data", mode="before")
    @classmethod
    def _normalize_data(cls, value: object) -> object:
        return () if value is None else value


class SOSDataset(_FrozenModel):
    """缓存与刷新的最小单元：有序记录集合 + 抓取时间。"""

    fetched_at: str = ""
    data: SOSItems = Field(default_factory=SOSItems)

    @field_validator("fetched_at", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def records(self) -> Tuple[SOSRecord, ...]:
        return self.data.data


def decode_dataset(raw: bytes | str) -> SOSDataset:
    """解析 JSON 字节为数据集，格式错误统一抛出 DecodeError。"""
    try:
        return SOSDataset.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"invalid SOS payload: {exc.error_count()} error(s)") from exc


def encode_dataset(dataset: SOSDataset) -> bytes:
    return dataset.model_dump_json(by_alias=True).encode("utf-8")


__all__ = [
    "Geometry",
    "LocationProperties",
    "Location",
    "SOSRecord",
    "SOSItems",
    "SOSDataset",
    "decode_dataset",
    "encode_dataset",
]
