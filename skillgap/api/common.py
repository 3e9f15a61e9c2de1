from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ApiError(BaseModel):
    code: str = Field(..., description="Machine-readable error code (e.g. 'not_found', 'service_unavailable', 'config_error').")
    message: str = Field(..., description="Human-readable description of the failure.")
    target: Optional[str] = Field(None, description="Field or resource the error refers to, when applicable.")
    details: Optional[Dict[str, Any]] = Field(None, description="Extra diagnostic data.")
    request_id: Optional[str] = Field(None, description="Request identifier (X-Request-ID).")
    correlation_id: Optional[str] = Field(None, description="Correlation identifier (X-Correlation-ID).")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "service_unavailable",
                    "message": "Graph gateway timed out during query",
                    "target": None,
                    "details": {"status": None},
                    "request_id": "req-8fda1c1a",
                    "correlation_id": "corr-7a21b3ef",
                }
            ]
        }
    }
