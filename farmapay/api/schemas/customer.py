from datetime import date, datetime
from typing import Optional, List

from pydantic import Field, field_validator

from farmapay.api.schemas.base_schema import AppBaseModel
from farmapay.core.utils.validators import only_digits, validate_cpf


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class CustomerIdentity(AppBaseModel):
    """Dados mínimos para localizar ou criar um cliente"""
    name: str
    phone: str = ""
    email: Optional[str] = None
    cpf: Optional[str] = None

    @field_validator("email", "cpf", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)


class CustomerCreate(CustomerIdentity):
    """Cadastro direto pelo painel (409 se o CPF já existir)"""
    rg: Optional[str] = None
    birth_date: Optional[date] = Field(default=None, alias="birthDate")
    notes: Optional[str] = None
    created_by_id: Optional[str] = Field(default=None, alias="createdById")

    @field_validator("rg", "birth_date", "notes", mode="before")
    @classmethod
    def optional_blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("cpf")
    @classmethod
    def validate_cpf_digits(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        digits = only_digits(v)
        if not validate_cpf(digits):
            raise ValueError("CPF inválido")
        return digits


class AddressOut(AppBaseModel):
    id: str
    type: str
    zip: str
    street: str
    number: str
    neighborhood: str
    city: str
    state: str
    complement: Optional[str] = None
    is_primary: bool = Field(serialization_alias="isPrimary")


class CustomerOut(AppBaseModel):
    id: str
    name: str
    phone: str
    email: Optional[str] = None
    cpf: Optional[str] = None
    rg: Optional[str] = None
    birth_date: Optional[date] = Field(default=None, serialization_alias="birthDate")
    asaas_id: Optional[str] = Field(default=None, serialization_alias="asaasId")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    addresses: List[AddressOut] = []
