from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc_datetime(value: datetime) -> datetime:
    """datetime 값을 UTC 기준으로 정규화한다.

    - tzinfo 가 없으면 UTC 로 간주해 tzinfo=UTC 를 부여
    - tzinfo 가 있으면 UTC 로 변환
    - 문자열(ISO8601)이 들어오면 파싱 후 동일하게 처리
    """

    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_optional_utc_datetime(value: Any) -> Any:
    if value is None:
        return None
    return ensure_utc_datetime(value)


def to_object_id(value: Any) -> ObjectId:
    """여러 타입(str, ObjectId 등)을 MongoDB ObjectId 로 변환한다.

    ObjectId 형식이 아닌 문자열은 bson.errors.InvalidId 를 발생시킨다.
    """

    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise TypeError("ObjectId cannot be None")
    return ObjectId(str(value))


def is_object_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or ObjectId.is_valid(str(value))


def from_object_id(value: Optional[ObjectId]) -> Optional[str]:
    if value is None:
        return None
    return str(value)


PyObjectId = Annotated[ObjectId, BeforeValidator(to_object_id)]
MongoDateTime = Annotated[datetime, BeforeValidator(ensure_utc_datetime)]
OptionalMongoDateTime = Annotated[
    Optional[datetime], BeforeValidator(ensure_optional_utc_datetime)
]


class BaseDocument(BaseModel):
    """MongoDB 도큐먼트용 공통 베이스 모델.

    - ObjectId 같은 임의 타입을 허용
    - alias 기반 직렬화(by_alias)로 id <-> _id 를 맞춘다.
    - 원장 도큐먼트는 한 번 쓰면 수정하지 않으므로 updated_at 은 선택값이다.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    created_at: MongoDateTime
    updated_at: OptionalMongoDateTime = None

    def to_mongo_record(self) -> dict[str, Any]:
        """MongoDB 저장에 사용할 레코드(dict) 직렬화.

        exclude_none=True 로 _id=None 같은 필드를 제거해 Mongo가 ObjectId 를 생성하도록 하고,
        값이 없는 선택 필드가 부분 유니크 인덱스에 걸리지 않게 한다.
        """

        return self.model_dump(by_alias=True, exclude_none=True)


def build_document_data_from_domain(domain_model: BaseModel) -> dict[str, Any]:
    """도메인 Pydantic 모델을 Mongo 도큐먼트 dict 로 변환한다.

    도메인 모델의 문자열 id 는 ObjectId 로 바꿔 _id 에 싣고, 없으면 생략한다.
    """

    data = domain_model.model_dump(by_alias=True)
    raw_id = data.pop("id", None)
    if raw_id is not None:
        data["_id"] = to_object_id(raw_id)
    return data
