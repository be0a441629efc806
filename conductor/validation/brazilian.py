"""
Brazilian document validation and formatting.

CPF (individual taxpayer id), CNPJ (company id) and RG (identity card,
SP check-digit variant) are validated with their mod-11 check digits.
CEP (postal code) and phone numbers are validated by shape.

Usage:
    validate_cpf_cnpj("11.222.333/0001-81")
    # DocumentValidation(is_valid=True, document_type="cnpj", formatted="11.222.333/0001-81", message=None)
"""
import re
from dataclasses import dataclass, asdict
from typing import Optional

CEP_PATTERN = re.compile(r"^\d{5}-?\d{3}$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")

MSG_INVALID_CPF = "CPF inválido"
MSG_INVALID_CNPJ = "CNPJ inválido"
MSG_INVALID_LENGTH = "Documento deve ter 11 (CPF) ou 14 (CNPJ) dígitos"
MSG_INVALID_RG = "RG inválido"
MSG_INVALID_CEP = "CEP inválido"
MSG_INVALID_PHONE = "Telefone inválido"

_CNPJ_WEIGHTS_1 = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
_CNPJ_WEIGHTS_2 = [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]


@dataclass
class DocumentValidation:
    is_valid: bool
    document_type: Optional[str]
    formatted: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def _mod11_digit(digits, weights) -> int:
    remainder = sum(int(d) * w for d, w in zip(digits, weights)) % 11
    return 0 if remainder < 2 else 11 - remainder


def validate_cpf(value: str) -> bool:
    digits = only_digits(value)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False

    first = _mod11_digit(digits[:9], range(10, 1, -1))
    second = _mod11_digit(digits[:10], range(11, 1, -1))
    return digits[-2:] == f"{first}{second}"


def validate_cnpj(value: str) -> bool:
    digits = only_digits(value)
    if len(digits) != 14 or digits == digits[0] * 14:
        return False

    first = _mod11_digit(digits[:12], _CNPJ_WEIGHTS_1)
    second = _mod11_digit(digits[:13], _CNPJ_WEIGHTS_2)
    return digits[-2:] == f"{first}{second}"


def validate_cpf_cnpj(value: str) -> DocumentValidation:
    """Validate a CPF or CNPJ, choosing by the number of digits."""
    digits = only_digits(value)

    if len(digits) == 11:
        if validate_cpf(digits):
            return DocumentValidation(True, "cpf", format_cpf(digits))
        return DocumentValidation(False, "cpf", message=MSG_INVALID_CPF)

    if len(digits) == 14:
        if validate_cnpj(digits):
            return DocumentValidation(True, "cnpj", format_cnpj(digits))
        return DocumentValidation(False, "cnpj", message=MSG_INVALID_CNPJ)

    return DocumentValidation(False, None, message=MSG_INVALID_LENGTH)


def rg_check_digit(base: str) -> str:
    """SP RG check digit: weights 2..9 over 8 digits, 11 - (sum % 11); 10 -> X, 11 -> 0."""
    total = sum(int(d) * w for d, w in zip(base, range(2, 10)))
    value = 11 - (total % 11)
    if value == 10:
        return "X"
    if value == 11:
        return "0"
    return str(value)


def validate_rg(value: str) -> bool:
    cleaned = re.sub(r"[^0-9Xx]", "", value or "").upper()
    if len(cleaned) != 9 or not cleaned[:8].isdigit():
        return False
    if cleaned[:8] == cleaned[0] * 8:
        return False
    return rg_check_digit(cleaned[:8]) == cleaned[8]


def validate_cep(value: str) -> bool:
    return bool(CEP_PATTERN.match((value or "").strip()))


def validate_phone(value: str) -> bool:
    """E.164-shaped phone number; spaces, dashes, dots and parentheses are ignored."""
    cleaned = re.sub(r"[\s\-().]", "", value or "")
    return bool(PHONE_PATTERN.match(cleaned))


# ==================== Formatting ====================

def format_cpf(value: str) -> str:
    digits = only_digits(value)
    if len(digits) != 11:
        return value
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def format_cnpj(value: str) -> str:
    digits = only_digits(value)
    if len(digits) != 14:
        return value
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def format_cpf_cnpj(value: str) -> str:
    digits = only_digits(value)
    if len(digits) == 11:
        return format_cpf(digits)
    if len(digits) == 14:
        return format_cnpj(digits)
    return value


def apply_cpf_cnpj_mask(value: str) -> str:
    """
    Progressive mask for partially typed input.

    Up to 11 digits the CPF mask is applied, beyond that the CNPJ mask.
    Digits past 14 are dropped.
    """
    digits = only_digits(value)[:14]

    if len(digits) <= 11:
        groups = [(0, 3, ""), (3, 6, "."), (6, 9, "."), (9, 11, "-")]
    else:
        groups = [(0, 2, ""), (2, 5, "."), (5, 8, "."), (8, 12, "/"), (12, 14, "-")]

    masked = ""
    for start, end, separator in groups:
        chunk = digits[start:end]
        if not chunk:
            break
        masked += separator + chunk
    return masked


def format_cep(value: str) -> str:
    digits = only_digits(value)
    if len(digits) != 8:
        return value
    return f"{digits[:5]}-{digits[5:]}"


def format_phone(value: str) -> str:
    """Format BR numbers with DDD: (11) 98765-4321 or (11) 3456-7890. A leading 55 is kept as +55."""
    digits = only_digits(value)
    prefix = ""
    if len(digits) in (12, 13) and digits.startswith("55"):
        prefix = "+55 "
        digits = digits[2:]

    if len(digits) == 11:
        return f"{prefix}({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"{prefix}({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    return value


# ==================== Dispatch ====================

DOCUMENT_TYPES = ("cpf", "cnpj", "cpf_cnpj", "rg", "cep", "phone")


def validate_document(document_type: str, value: str) -> DocumentValidation:
    """Validate and format any supported document type."""
    if document_type in ("cpf", "cnpj", "cpf_cnpj"):
        result = validate_cpf_cnpj(value)
        if document_type != "cpf_cnpj" and result.document_type not in (None, document_type):
            return DocumentValidation(False, result.document_type,
                                      message=MSG_INVALID_CPF if document_type == "cpf" else MSG_INVALID_CNPJ)
        return result

    if document_type == "rg":
        if validate_rg(value):
            return DocumentValidation(True, "rg", re.sub(r"[^0-9Xx]", "", value).upper())
        return DocumentValidation(False, "rg", message=MSG_INVALID_RG)

    if document_type == "cep":
        if validate_cep(value):
            return DocumentValidation(True, "cep", format_cep(value))
        return DocumentValidation(False, "cep", message=MSG_INVALID_CEP)

    if document_type == "phone":
        if validate_phone(value):
            return DocumentValidation(True, "phone", format_phone(value))
        return DocumentValidation(False, "phone", message=MSG_INVALID_PHONE)

    raise ValueError(f"Unsupported document type: {document_type}")
