from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(request: Request) -> JSONResponse:
    """Report reachability of the database, queue backend and vector store.

    Returns 200 when every dependency answers, 503 otherwise. No session required.
    """
    state = request.app.state
    checks: dict[str, str] = {}

    try:
        async with state.database.session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        state.logging.warning("Health check: database unreachable: %s", exc)
        checks["database"] = "error"

    try:
        await state.redis.ping()
        checks["queue"] = "ok"
    except Exception as exc:
        state.logging.warning("Health check: queue backend unreachable: %s", exc)
        checks["queue"] = "error"

    try:
        result = await state.rag_client.do_healthcheck()
        checks["vector_store"] = "ok" if result.is_success else "error"
    except Exception as exc:
        state.logging.warning("Health check: vector store unreachable: %s", exc)
        checks["vector_store"] = "error"

    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "version": state.app_version, "checks": checks},
    )
