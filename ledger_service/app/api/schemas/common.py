"""공통 스키마 정의."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """페이지네이션 응답 공통 스키마."""

    items: list[T]
    total: int
    page: int
    page_size: int


class ErrorResponse(BaseModel):
    """도메인 오류 응답. code 는 호출자가 분기에 사용하는 고정 문자열이다."""

    code: str
    message: str
