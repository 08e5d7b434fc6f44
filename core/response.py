"""
统一响应格式定义

NovaPay 信封：{ok, resultCode, message, data?, flowId?, timestamp}
响应体序列化为紧凑 JSON 字符串，幂等重放时可逐字节返回同一内容。
"""
import json
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from shared.codes import ResultCode, http_status_for


IDEMPOTENT_REPLAYED_HEADER = "Idempotent-Replayed"


class Envelope(BaseModel):
    """统一响应模型"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ok: bool
    result_code: int
    message: str
    data: Optional[Any] = None
    flow_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """序列化时间戳为 UTC ISO8601，统一使用 Z 结尾"""
        ts = timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        else:
            ts = ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")

    @field_serializer("data")
    def serialize_data(self, data: Any) -> Any:
        if isinstance(data, BaseModel):
            return data.model_dump(mode="json", by_alias=True)
        return data


def build_envelope(
    code: ResultCode,
    data: Any = None,
    *,
    message: Optional[str] = None,
    flow_id: Optional[str] = None,
) -> Envelope:
    """
    创建响应信封

    Args:
        code: NovaPay 结果码，ok 由其区间决定
        data: 响应数据（CamelModel 或普通字典）
        message: 覆盖结果码的默认消息
        flow_id: 关联的支付流ID
    """
    code = ResultCode(code)
    return Envelope(
        ok=code.is_success,
        result_code=int(code),
        message=message or code.message,
        data=data,
        flow_id=flow_id,
    )


def envelope_json(envelope: Envelope) -> str:
    """紧凑 JSON；data / flowId 为空时省略"""
    payload = envelope.model_dump(mode="json", by_alias=True)
    for optional_key in ("data", "flowId"):
        if payload.get(optional_key) is None:
            payload.pop(optional_key, None)
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def envelope_response(
    body: str,
    status_code: int,
    *,
    replayed: bool = False,
    headers: Optional[dict] = None,
) -> Response:
    """把已序列化的信封包装为 HTTP 响应"""
    merged = dict(headers or {})
    if replayed:
        merged[IDEMPOTENT_REPLAYED_HEADER] = "true"
    return Response(
        content=body,
        status_code=status_code,
        media_type="application/json",
        headers=merged or None,
    )


def success_response(
    code: ResultCode,
    data: Any = None,
    *,
    flow_id: Optional[str] = None,
    status_code: Optional[int] = None,
) -> Response:
    envelope = build_envelope(code, data, flow_id=flow_id)
    return envelope_response(envelope_json(envelope), status_code or http_status_for(code))


def error_response(
    code: ResultCode,
    *,
    message: Optional[str] = None,
    flow_id: Optional[str] = None,
    data: Any = None,
    status_code: Optional[int] = None,
    headers: Optional[dict] = None,
) -> Response:
    envelope = build_envelope(code, data, message=message, flow_id=flow_id)
    return envelope_response(
        envelope_json(envelope),
        status_code or http_status_for(code),
        headers=headers,
    )
