from datetime import datetime,timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

def now() -> datetime:
    return datetime.now(timezone.utc)


def money(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def build_success(data: Any = None, message: str = "",
                  request_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    body = {
        "success": True,
        "error": False,
        "message": message,
    }
    if data is not None:
        body["data"] = data
    body.update(fields)
    if request_id:
        body["request_id"] = request_id
    return body

def build_error(message: str,
                code: Union[str, int] = "UNKNOWN_ERROR",
                request_id: Optional[str] = None,
                details: Optional[Any] = None) -> Dict[str, Any]:

    body = {
        "success": False,
        "error": True,
        "message": message,
        "code": code,
        "request_id": request_id,
    }
    if details is not None:
        body["details"] = details
    return body

def json_ok(content: Dict[str, Any], status_code: int = 200,headers = None) -> JSONResponse:
    return JSONResponse(jsonable_encoder(content), status_code=status_code,headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(jsonable_encoder(content), status_code=status_code, headers=headers)

def success_response(data: Any = None, message: str = "", status_code: int = 200,
                     headers: Optional[Dict[str, Any]] = None, **fields: Any) -> JSONResponse:
    content = build_success(data, message=message, **fields)
    return json_ok(content, status_code=status_code,headers=headers)
