"""Shared Pydantic schemas."""
from pydantic import BaseModel


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: str = ""


class ErrorResponse(BaseModel):
    detail: str
    error: str
