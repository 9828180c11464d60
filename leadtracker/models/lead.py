from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_STATUS = "Novo"
DEFAULT_NAME = "Desconhecido"


class FormStatus(str, Enum):
    PENDING = "pendente"
    IN_PROGRESS = "em_andamento"
    COMPLETE = "completo"


class FormData(BaseModel):
    """Fields collected through the manual form flow."""
    nome: str = ""  # name
    cpf: str = ""  # id document
    email: str = ""
    telefone: str = ""  # phone
    endereco: str = ""  # address
    cep: str = ""  # postal code

    def is_complete(self) -> bool:
        return all(value.strip() for value in self.model_dump().values())


FORM_FIELDS = tuple(FormData.model_fields)


class Lead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = DEFAULT_NAME
    timestamp: str
    interactions: int = 0
    messages: list[str] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    status: str = DEFAULT_STATUS
    form_status: FormStatus = Field(default=FormStatus.PENDING, alias="formStatus")
    form_data: FormData = Field(default_factory=FormData, alias="formData")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class LeadUpdate(BaseModel):
    """Manual edit from the API. Empty values leave the stored ones untouched."""
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    status: str | None = None
    form_data: dict[str, str] | None = Field(default=None, alias="formData")


class FormFieldUpdate(BaseModel):
    value: str


def merge_unique(existing: list[str], new: list[str]) -> list[str]:
    """Union of two lists, keeping first-seen order."""
    merged = list(existing)
    for item in new:
        if item and item not in merged:
            merged.append(item)
    return merged
