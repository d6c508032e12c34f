from typing import Optional, Any, Dict
from pydantic import BaseModel


class ResponseModel(BaseModel):
    """Standard API response model"""
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


class ActionResult(BaseModel):
    """Outcome of a feed action: whether a store write was issued"""
    issued: bool
    project_id: Optional[str] = None

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
