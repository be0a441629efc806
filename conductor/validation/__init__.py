"""Brazilian document validators (CPF, CNPJ, RG, CEP, phone)."""

from .brazilian import (
    DocumentValidation,
    only_digits,
    validate_cpf,
    validate_cnpj,
    validate_cpf_cnpj,
    validate_rg,
    validate_cep,
    validate_phone,
    format_cpf,
    format_cnpj,
    format_cpf_cnpj,
    apply_cpf_cnpj_mask,
    format_cep,
    format_phone,
    DOCUMENT_TYPES,
    validate_document,
)

__all__ = [
    "DocumentValidation",
    "only_digits",
    "validate_cpf",
    "validate_cnpj",
    "validate_cpf_cnpj",
    "validate_rg",
    "validate_cep",
    "validate_phone",
    "format_cpf",
    "format_cnpj",
    "format_cpf_cnpj",
    "apply_cpf_cnpj_mask",
    "format_cep",
    "format_phone",
    "DOCUMENT_TYPES",
    "validate_document",
]
