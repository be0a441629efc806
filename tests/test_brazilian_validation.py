"""
Unit Tests for Brazilian Document Validation

Tests:
- CPF and CNPJ check digits
- RG (SP) check digit including the X digit
- CEP and phone validation and formatting
- Progressive CPF/CNPJ mask
- validate_document dispatch
"""

import pytest

from conductor.validation import (
    apply_cpf_cnpj_mask,
    format_cpf_cnpj,
    validate_cnpj,
    validate_cpf,
    validate_cpf_cnpj,
    validate_document,
)
from conductor.validation.brazilian import (
    MSG_INVALID_CPF,
    MSG_INVALID_LENGTH,
    format_phone,
    rg_check_digit,
    validate_rg,
)

VALID_CPF = "529.982.247-25"
VALID_CNPJ = "11.222.333/0001-81"


class TestCPF:
    """Test CPF validation"""

    def test_valid_formatted(self):
        assert validate_cpf(VALID_CPF), "Formatted CPF should validate"

    def test_valid_digits_only(self):
        assert validate_cpf("52998224725")

    def test_wrong_check_digit(self):
        assert not validate_cpf("529.982.247-24"), "Wrong check digit should fail"

    def test_repeated_digits_rejected(self):
        assert not validate_cpf("111.111.111-11"), "Repeated digits pass mod 11 but are invalid"

    def test_wrong_length(self):
        assert not validate_cpf("5299822472")


class TestCNPJ:
    """Test CNPJ validation"""

    def test_valid_formatted(self):
        assert validate_cnpj(VALID_CNPJ)

    def test_valid_digits_only(self):
        assert validate_cnpj("11222333000181")

    def test_wrong_check_digit(self):
        assert not validate_cnpj("11.222.333/0001-82")

    def test_repeated_digits_rejected(self):
        assert not validate_cnpj("00000000000000")


class TestCpfCnpjDispatch:
    """Test length-based CPF/CNPJ selection"""

    def test_cpf_by_length(self):
        result = validate_cpf_cnpj("52998224725")

        assert result.is_valid
        assert result.document_type == "cpf"
        assert result.formatted == VALID_CPF

    def test_cnpj_by_length(self):
        result = validate_cpf_cnpj("11222333000181")

        assert result.is_valid
        assert result.document_type == "cnpj"
        assert result.formatted == VALID_CNPJ

    def test_invalid_cpf_keeps_type(self):
        result = validate_cpf_cnpj("52998224724")

        assert not result.is_valid
        assert result.document_type == "cpf"
        assert result.message == MSG_INVALID_CPF

    def test_invalid_length(self):
        result = validate_cpf_cnpj("123")

        assert not result.is_valid
        assert result.document_type is None
        assert result.message == MSG_INVALID_LENGTH

    def test_format_unknown_length_returns_input(self):
        assert format_cpf_cnpj("1234") == "1234"


class TestRG:
    """Test SP RG validation"""

    def test_valid_rg(self):
        assert validate_rg("24.678.131-2")

    def test_wrong_check_digit(self):
        assert not validate_rg("24.678.131-3")

    def test_x_check_digit(self):
        assert rg_check_digit("60000000") == "X"
        assert validate_rg("60.000.000-x"), "Lowercase x should be accepted"

    def test_zero_check_digit(self):
        assert rg_check_digit("00000000") == "0"

    def test_repeated_digits_rejected(self):
        assert not validate_rg("11.111.111-1")

    def test_wrong_length(self):
        assert not validate_rg("2467813")


class TestMask:
    """Test progressive mask"""

    @pytest.mark.parametrize("typed,masked", [
        ("", ""),
        ("529", "529"),
        ("5299", "529.9"),
        ("52998224", "529.982.24"),
        ("5299822472", "529.982.247-2"),
        ("52998224725", "529.982.247-25"),
        ("112223330001", "11.222.333/0001"),
        ("11222333000181", "11.222.333/0001-81"),
        ("1122233300018199", "11.222.333/0001-81"),
    ])
    def test_mask(self, typed, masked):
        assert apply_cpf_cnpj_mask(typed) == masked

    def test_mask_ignores_non_digits(self):
        assert apply_cpf_cnpj_mask("529.98a2") == "529.982"


class TestValidateDocument:
    """Test validate_document dispatch"""

    def test_cpf_type(self):
        result = validate_document("cpf", "52998224725")

        assert result.is_valid
        assert result.formatted == VALID_CPF

    def test_cpf_type_rejects_cnpj(self):
        result = validate_document("cpf", VALID_CNPJ)

        assert not result.is_valid, "A valid CNPJ is not a valid CPF"
        assert result.message == MSG_INVALID_CPF

    def test_cpf_cnpj_accepts_both(self):
        assert validate_document("cpf_cnpj", VALID_CPF).is_valid
        assert validate_document("cpf_cnpj", VALID_CNPJ).is_valid

    def test_rg_is_cleaned(self):
        result = validate_document("rg", "60.000.000-x")

        assert result.is_valid
        assert result.formatted == "60000000X"

    def test_cep(self):
        assert validate_document("cep", "01310100").formatted == "01310-100"
        assert validate_document("cep", "01310-100").is_valid
        assert not validate_document("cep", "1310-100").is_valid

    def test_phone(self):
        result = validate_document("phone", "(11) 98765-4321")

        assert result.is_valid
        assert result.formatted == "(11) 98765-4321"

    def test_phone_with_country_code(self):
        assert format_phone("+55 11 98765-4321") == "+55 (11) 98765-4321"

    def test_landline(self):
        assert format_phone("1134567890") == "(11) 3456-7890"

    def test_invalid_phone(self):
        assert not validate_document("phone", "0123").is_valid

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            validate_document("passport", "X1234567")

    def test_to_dict(self):
        data = validate_document("cnpj", VALID_CNPJ).to_dict()

        assert data == {"is_valid": True, "document_type": "cnpj", "formatted": VALID_CNPJ, "message": None}
