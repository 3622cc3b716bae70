"""
Pydantic schemas for the RAG query endpoint and answer feedback.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from acervo.core.config import settings
from acervo.db.models.document import DocumentType, ProcessType


class RagQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., description="Natural-language question")
    top_k: int = Field(default_factory=lambda: settings.DEFAULT_TOP_K, ge=1, alias="topK")
    document_type: Optional[DocumentType] = Field(default=None, alias="documentType")
    process: Optional[ProcessType] = Field(default=None, alias="proceso")
    date_from: Optional[date] = Field(default=None, alias="dateFrom")
    date_to: Optional[date] = Field(default=None, alias="dateTo")

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("question must not be empty")
        return v.strip()

    @field_validator("top_k")
    @classmethod
    def top_k_within_limit(cls, v: int) -> int:
        if v > settings.MAX_TOP_K:
            raise ValueError(f"topK must be at most {settings.MAX_TOP_K}")
        return v

    @model_validator(mode="after")
    def date_range_ordered(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must not be after dateTo")
        return self


class SourceOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId")
    document_title: str = Field(..., alias="documentTitle")
    document_type: Optional[str] = Field(default=None, alias="documentType")
    similarity: float


class RagQueryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    sources: List[SourceOut] = Field(default_factory=list)
    chunks: int = Field(..., description="Number of retrieved chunks")
    latency_ms: int = Field(..., alias="latencyMs")
    query_id: Optional[str] = Field(default=None, alias="queryId")
    used_web_search: bool = Field(
        ..., alias="usedWebSearch", description="True when answered without institutional context"
    )


class FeedbackRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    query_id: str = Field(..., alias="queryId")
    rating: int
