from datetime import datetime
from http import HTTPStatus
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def _timestamp() -> str:
    return f"{datetime.utcnow().isoformat()}Z"


def status_name(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return "UNKNOWN"


def success(
    request: Request,
    data: Optional[Any] = None,
    message: str = "success",
    meta: Optional[Dict] = None,
    status_code: int = 200,
):
    response = {
        "success": True,
        "path": request.url.path,
        "message": message,
        "data": data,
        "status": status_code,
        "timestamp": _timestamp(),
    }

    if meta is not None:
        response["meta"] = meta

    # data may hold datetimes and enums
    return jsonable_encoder(response)


def error(
    request: Request,
    status_code: int = 400,
    message: str = "error",
    details: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "success": False,
                "path": request.url.path,
                "message": message,
                "code": status_name(status_code),
                "details": details if details is not None else message,
                "status": status_code,
                "timestamp": _timestamp(),
            }
        ),
        headers=headers,
    )


def paginated_response(
    request: Request,
    items,
    total: int,
    page: int,
    limit: int,
    message: str = "success",
):
    total_pages = (total + limit - 1) // limit
    return success(
        request,
        data=items,
        message=message,
        meta={
            "page": page,
            "limit": limit,
            "totalItems": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    )
