from pydantic import BaseModel


class RequestInfo(BaseModel):
    method: str
    path: str


class HealthStatus(BaseModel):
    status: str
    version: str
    store: bool


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
