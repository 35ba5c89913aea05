"""
Validadores e formatadores de dados brasileiros
===============================================
CPF, telefone e CEP: normalização para dígitos e formatação de exibição.
"""

import re
from datetime import date, datetime
from typing import Optional


def only_digits(value: Optional[str]) -> str:
    """Remove tudo que não for dígito. `None` vira string vazia."""
    return re.sub(r"\D", "", value) if value else ""


def validate_cpf(cpf: str) -> bool:
    """
    Valida CPF brasileiro.

    Args:
        cpf: String contendo apenas dígitos (11 caracteres)

    Returns:
        True se o CPF for válido, False caso contrário

    Examples:
        >>> validate_cpf('12345678909')
        True
        >>> validate_cpf('11111111111')
        False
    """
    if not cpf or len(cpf) != 11 or not cpf.isdigit():
        return False

    # CPFs inválidos conhecidos (todos os dígitos iguais)
    if cpf in [str(d) * 11 for d in range(10)]:
        return False

    sum_of_products = sum(int(cpf[i]) * (10 - i) for i in range(9))
    expected_digit = (sum_of_products * 10 % 11) % 10
    if int(cpf[9]) != expected_digit:
        return False

    sum_of_products = sum(int(cpf[i]) * (11 - i) for i in range(10))
    expected_digit = (sum_of_products * 10 % 11) % 10
    if int(cpf[10]) != expected_digit:
        return False

    return True


def format_cpf(value: Optional[str]) -> str:
    """`12345678909` -> `123.456.789-09`. Valores fora do padrão voltam intactos."""
    digits = only_digits(value)
    if len(digits) != 11:
        return value or ""
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def format_phone(value: Optional[str]) -> str:
    """
    Formata telefone com DDD.

    11 dígitos (celular): `(35) 99999-1234`
    10 dígitos (fixo):    `(35) 3333-1234`
    """
    digits = only_digits(value)
    if len(digits) < 10:
        return value or ""
    if len(digits) == 11:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    return f"({digits[:2]}) {digits[2:6]}-{digits[6:10]}"


def format_zip(value: Optional[str]) -> str:
    """`37701000` -> `37701-000`"""
    digits = only_digits(value)
    if len(digits) != 8:
        return value or ""
    return f"{digits[:5]}-{digits[5:]}"


def parse_birth_date(value: Optional[str]) -> Optional[date]:
    """
    Aceita `DD/MM/YYYY` ou ISO (`YYYY-MM-DD`, com ou sem horário).
    Datas inválidas retornam None (o campo simplesmente não é atualizado).
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    try:
        if "/" in value:
            day, month, year = value.split("/")
            return date(int(year), int(month), int(day))
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None
