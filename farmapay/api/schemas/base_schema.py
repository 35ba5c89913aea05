from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer

# Valores monetários saem como número no JSON (o front-end faz contas com eles)
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class AppBaseModel(BaseModel):
    # Configuração padrão para todos os nossos schemas
    model_config = ConfigDict(
        from_attributes=True,  # Permite criar schemas a partir de objetos ORM
        populate_by_name=True,  # Aceita tanto `birth_date` quanto o alias `birthDate`
        extra="ignore"
    )
