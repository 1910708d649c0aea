"""Click reporting schemas"""
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ClickCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    session_id: str = Field(min_length=1, max_length=128)
    phone_number: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_camel_case(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "sessionId" in data and "session_id" not in data:
                data["session_id"] = data.pop("sessionId")
            if "phoneNumber" in data and "phone_number" not in data:
                data["phone_number"] = data.pop("phoneNumber")
        return data

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ClickResponse(BaseModel):
    message: str
    sessionId: str
    created: bool
