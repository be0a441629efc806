"""
Brazilian Document Validation Router

Public utility endpoint used by forms: validates and formats CPF, CNPJ,
RG, CEP and phone numbers.
"""
from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from conductor.api.dependencies import limiter
from conductor.validation import apply_cpf_cnpj_mask, validate_document

router = APIRouter(prefix="/api/validation", tags=["validation"])


class DocumentValidationRequest(BaseModel):
    document_type: Literal["cpf", "cnpj", "cpf_cnpj", "rg", "cep", "phone"]
    value: str = Field(..., max_length=64)


class MaskRequest(BaseModel):
    value: str = Field(..., max_length=64)


@router.post("/documents")
@limiter.limit("300/minute")
async def validate_document_endpoint(request: Request, payload: DocumentValidationRequest):
    return validate_document(payload.document_type, payload.value).to_dict()


@router.post("/mask")
async def mask_document(payload: MaskRequest):
    """Progressive CPF/CNPJ mask for partially typed input."""
    return {"masked": apply_cpf_cnpj_mask(payload.value)}
