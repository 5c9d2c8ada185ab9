import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from .api_key import INTERNAL_API_KEY_HEADER, verify_api_key

logger = structlog.get_logger(__name__)

api_key_header = APIKeyHeader(name=INTERNAL_API_KEY_HEADER, auto_error=False)


async def verify_internal_api_key(request: Request, api_key: str = Depends(api_key_header)) -> bool:
    """Guards every non-health route of the fulfillment services."""
    if not verify_api_key(api_key):
        logger.warning(
            "internal_key_rejected",
            path=request.url.path,
            key_present=bool(api_key),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Invalid or missing {INTERNAL_API_KEY_HEADER} header",
        )
    return True
