import time
import uuid
import logging
from fastapi import Request

logger = logging.getLogger(__name__)


async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    started = time.perf_counter()

    logger.info(f"request_started request_id={request_id} method={request.method} path={request.url.path}")

    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"request_failed request_id={request_id} path={request.url.path}")
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"request_finished request_id={request_id} status={response.status_code} duration_ms={elapsed_ms:.1f}"
    )
    response.headers["X-Request-ID"] = request_id
    return response
