from pydantic import BaseModel
from typing import Any, Dict, Literal, Optional

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]

class ChangeEvent(BaseModel):
    """A row change on the realtime feed"""
    event: ChangeType
    table: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def record(self) -> Dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})
