from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any


class ErrorResponse(BaseModel):
    """
    Standard error response structure.
    """
    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error: str
    error_kind: str = Field(..., alias="errorKind")
    details: Optional[Any] = None
