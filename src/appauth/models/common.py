from enum import Enum
from typing import Any

from pydantic import BaseModel

SUBJECT_TYPE_PUBLIC = "public"
SUBJECT_TYPE_PAIRWISE = "pairwise"


class BasePydanticModel(BaseModel):
    model_config = {
        "frozen": True,  # every protocol message is an immutable value
        "extra": "ignore",
        "populate_by_name": True,
        "use_enum_values": True,
    }

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, json_str: str) -> Any:
        """
        Reconstructs an instance from the output of to_json().

        Raises:
            ValueError: If the JSON is malformed or misses required properties
                        (pydantic's ValidationError is a ValueError).
        """
        if not json_str:
            raise ValueError("json cannot be null or empty")
        return cls.model_validate_json(json_str)


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    IMPLICIT = "implicit"
    REFRESH_TOKEN = "refresh_token"


class ResponseTypeValues(str, Enum):
    CODE = "code"
    TOKEN = "token"
    ID_TOKEN = "id_token"
