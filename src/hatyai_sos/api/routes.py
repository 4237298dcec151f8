"""SOS 数据接口（薄映射层）。

所有接口都是同步函数，由 FastAPI 放入线程池执行；缓存服务通过 app.state 注入。
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response

from hatyai_sos.cache.service import SOSCacheService
from hatyai_sos.errors import SOSFeedError
from hatyai_sos.feed.schema import SOSRecord
from hatyai_sos.geo.region import filter_by_province, is_southern_province, southern_records
from hatyai_sos.views.aggregate import (
    KeyExtractor,
    district_of,
    filter_by_field,
    province_of,
    subdistrict_of,
    summarize_areas,
)
from hatyai_sos.views.priority import prioritize

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["sos"])


def _service(request: Request) -> SOSCacheService:
    return request.app.state.sos_service


def _upstream_error(exc: SOSFeedError) -> JSONResponse:
    logger.warning("sos_request_failed", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=502, content={"error": str(exc)})


def _dump_records(records: List[SOSRecord]) -> List[Dict[str, Any]]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]


@router.get("")
def get_raw(request: Request) -> Response:
    try:
        raw = _service(request).get_raw()
    except SOSFeedError as exc:
        return _upstream_error(exc)
    return Response(content=raw, media_type="application/json")


@router.get("/health")
def health(request: Request) -> JSONResponse:
    if not _service(request).ping():
        return JSONResponse(status_code=503, content={"redis": "down"})
    return JSONResponse(content={"status": "ok"})


def _filter_route(field_name: str, key: KeyExtractor) -> Callable[[Request, str], JSONResponse]:
    def handler(request: Request, name: str) -> JSONResponse:
        if not name.strip():
            return JSONResponse(status_code=400, content={"error": f"{field_name} is required"})
        try:
            dataset = _service(request).get_dataset()
        except SOSFeedError as exc:
            return _upstream_error(exc)
        items = filter_by_field(dataset.records, name, key)
        return JSONResponse(
            content={field_name: name, "count": len(items), "items": _dump_records(items)}
        )

    handler.__name__ = f"get_by_{field_name}"
    return handler


router.add_api_route("/province/{name}", _filter_route("province", province_of), methods=["GET"])
router.add_api_route("/district/{name}", _filter_route("district", district_of), methods=["GET"])
router.add_api_route("/subdistrict/{name}", _filter_route("subdistrict", subdistrict_of), methods=["GET"])


@router.get("/area_summary")
def area_summary(request: Request) -> JSONResponse:
    try:
        dataset = _service(request).get_dataset()
    except SOSFeedError as exc:
        return _upstream_error(exc)
    return JSONResponse(content=summarize_areas(dataset.records).model_dump(mode="json"))


@router.get("/area_summary/south")
def area_summary_south(request: Request) -> JSONResponse:
    try:
        dataset = _service(request).get_dataset()
    except SOSFeedError as exc:
        return _upstream_error(exc)
    summary = summarize_areas(filter_by_province(dataset.records, is_southern_province))
    return JSONResponse(content={"region": "south", **summary.model_dump(mode="json")})


@router.get("/south")
def south(request: Request) -> JSONResponse:
    try:
        dataset = _service(request).get_dataset()
    except SOSFeedError as exc:
        return _upstream_error(exc)
    items = southern_records(dataset.records)
    return JSONResponse(content={"count": len(items), "items": _dump_records(items)})


@router.get("/priority")
def priority(
    request: Request,
    priority_level: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
) -> JSONResponse:
    try:
        dataset = _service(request).get_dataset()
    except SOSFeedError as exc:
        return _upstream_error(exc)

    parsed_limit: Optional[int] = None
    if limit is not None and limit.strip():
        try:
            parsed_limit = int(limit.strip())
        except ValueError:
            parsed_limit = None

    view = prioritize(southern_records(dataset.records), level=priority_level, limit=parsed_limit)
    return JSONResponse(
        content={"count": view.count, "items": [item.to_payload() for item in view.items]}
    )


__all__ = ["router"]
