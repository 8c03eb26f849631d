"""Response envelope shared by every JSON endpoint.

Learn: Clients get one shape for every call:
- success → {"success": true, "message": "...", "data": ...}
- failure → {"success": false, "error": "..."}
Errors are produced by the exception handlers registered in main.py,
so handlers just raise HTTPException as usual.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str = ""
    data: Optional[T] = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str


def ok(message: str, data=None) -> dict:
    """Build a success envelope."""
    return {"success": True, "message": message, "data": data}
