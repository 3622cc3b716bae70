"""
Pydantic schemas for document upload, ingestion and auto-tagging.
Wire names are camelCase (the web client's convention); Python attributes stay snake_case.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from acervo.db.models.document import DocumentType, ProcessType


class DocumentCreate(BaseModel):
    """Declared metadata supplied with an upload."""

    title: str = Field(..., min_length=1, max_length=255, description="Document title")
    author: str = Field(..., min_length=1, max_length=255, description="Document author")
    doc_type: DocumentType = Field(..., description="Declared document type")
    process: ProcessType = Field(..., description="Institutional process")
    document_date: date = Field(..., description="Date printed on the document")


class DocumentUploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="New document id")
    storage_path: str = Field(..., alias="storagePath")
    content_hash: str = Field(..., alias="contentHash")
    processed: bool = Field(default=False, description="Whether ingestion ran")
    chunks: int = Field(default=0)
    embeddings: int = Field(default=0)
    processing_error: Optional[str] = Field(default=None, alias="processingError")


class IngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., min_length=1, alias="documentId")
    replace: bool = Field(
        default=False, description="Delete existing chunks before storing the new ones"
    )


class IngestResponse(BaseModel):
    success: bool = True
    chunks: int = Field(..., description="Chunks stored by this run")
    embeddings: int = Field(..., description="Embeddings stored by this run")


class AutoTagRequest(BaseModel):
    content: Optional[str] = Field(
        default=None, description="Text to analyze; defaults to the first stored chunks"
    )


class DocumentTags(BaseModel):
    """AI-generated metadata (field names follow the provider prompt)"""

    tema_principal: str = Field(..., min_length=1)
    subtema: Optional[str] = None
    proceso_asociado: Optional[str] = None
    palabras_clave: List[str] = Field(..., min_length=1)
    tipo_documento: Optional[str] = None
    resumen_breve: str = Field(..., min_length=1)
    nivel_confianza: float

    @field_validator("palabras_clave", mode="before")
    @classmethod
    def split_keywords(cls, v):
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v

    @field_validator("nivel_confianza")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return min(1.0, max(0.0, v))


class AutoTagResponse(BaseModel):
    success: bool = True
    metadata: DocumentTags
