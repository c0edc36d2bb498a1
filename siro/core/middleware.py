import logging
import time

from fastapi import Request

from siro.utils.ids import new_id


logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or new_id()
    started = time.perf_counter()

    logger.info(f"request_started request_id={request_id} method={request.method} path={request.url.path}")

    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"request_failed request_id={request_id} path={request.url.path}")
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"request_finished request_id={request_id} status={response.status_code} "
        f"duration_ms={elapsed_ms:.1f}"
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
