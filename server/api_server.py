"""FastAPI application entry point for docmind.

Documents are uploaded via /documents and indexed by the document worker;
questions are answered via /chat from the indexed chunks.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.auth.AuthClientInterface import AuthClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.auth.AuthClientManager import AuthClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.extract.FileExtractor import FileExtractor
from shared.db.database import Database
from shared.models.errors import AppError, ClientResponseError, ErrorCode, ErrorDetail, ErrorResponse
from shared.queue.JobQueue import JobQueue
from shared.repositories.ConversationRepository import ConversationRepository
from shared.repositories.DocumentRepository import DocumentRepository
from shared.repositories.ProfileRepository import ProfileRepository
from services.document_pipeline.CollectionResolver import CollectionCache, CollectionResolver
from services.document_pipeline.DocumentQueue import DOCUMENT_QUEUE_NAME, DocumentQueue
from services.document_pipeline.ProfileResolver import ProfileResolver
from server.core.ChatHistoryService import ChatHistoryService
from server.core.DocumentService import DocumentService
from server.core.ProfileService import ProfileService
from server.core.QueryService import QueryService
from server.routers.ChatRouter import router as chat_router
from server.routers.ConversationRouter import router as conversation_router
from server.routers.DocumentRouter import router as document_router
from server.routers.HealthRouter import router as health_router
from server.routers.ProfileRouter import router as profile_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def wire_services(
    app: FastAPI,
    helper_config: HelperConfig,
    database: Database,
    redis: Redis,
    rag_client: RAGClientInterface,
    llm_client: LLMClientInterface,
    auth_client: AuthClientInterface,
) -> None:
    """Attach clients, repositories and services to app.state."""
    app.state.logging = helper_config.get_logger()
    app.state.helper_config = helper_config
    app.state.app_version = app_version
    app.state.database = database
    app.state.redis = redis
    app.state.rag_client = rag_client
    app.state.llm_client = llm_client
    app.state.auth_client = auth_client

    documents = DocumentRepository(database)
    profiles = ProfileRepository(database)
    app.state.profile_repository = profiles
    app.state.conversation_repository = ConversationRepository(database)

    app.state.profile_resolver = ProfileResolver(helper_config, profiles)
    app.state.collection_resolver = CollectionResolver(helper_config, rag_client, CollectionCache())
    app.state.document_queue = DocumentQueue(helper_config, JobQueue(redis, DOCUMENT_QUEUE_NAME, helper_config))

    app.state.document_service = DocumentService(
        helper_config=helper_config,
        documents=documents,
        profiles=profiles,
        queue=app.state.document_queue,
        extractor=FileExtractor(helper_config.get_logger()),
    )
    app.state.query_service = QueryService(
        helper_config=helper_config,
        profiles=app.state.profile_resolver,
        collections=app.state.collection_resolver,
        rag_client=rag_client,
        llm_client=llm_client,
    )
    app.state.chat_history_service = ChatHistoryService(helper_config, app.state.conversation_repository)
    app.state.profile_service = ProfileService(helper_config, profiles)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    helper_config = HelperConfig(logger=logging)

    rag_client = RAGClientManager(helper_config=helper_config).get_client()
    llm_client = LLMClientManager(helper_config=helper_config).get_client()
    auth_client = AuthClientManager(helper_config=helper_config).get_client()
    clients = [rag_client, llm_client, auth_client]

    logging.info("Booting all clients...")
    for client in clients:
        await client.boot()
    logging.info("All clients booted successfully.")

    database = Database(helper_config=helper_config)
    await database.init_db()
    redis = Redis.from_url(
        helper_config.get_string_val("QUEUE_REDIS_URL", default="redis://localhost:6379/0"),
        decode_responses=True,
    )

    wire_services(app, helper_config, database, redis, rag_client, llm_client, auth_client)
    await check_connections(rag_client, llm_client, auth_client, redis)

    # while the app is running...
    yield

    # when the app shuts down, close all connections
    logging.info("Shutting down, closing all clients...")
    for client in clients:
        await client.close()
    await redis.aclose()
    await database.close()
    logging.info("All clients closed.")


async def check_connections(
    rag_client: RAGClientInterface,
    llm_client: LLMClientInterface,
    auth_client: AuthClientInterface,
    redis: Redis,
) -> None:
    """Check connectivity to all configured backends on startup.

    Auth failures are non-fatal (requests will be rejected until it is back).
    RAG, LLM and the queue backend are fatal: uploads and queries cannot be
    served without them.

    Raises:
        Exception: If a critical service is not reachable.
    """
    result: httpx.Response = await auth_client.do_healthcheck()
    if not result.is_success:
        logging.warning(
            "Auth client '%s' is not reachable (status %d). Requests will be rejected.",
            auth_client.get_engine_name(),
            result.status_code,
        )

    result = await rag_client.do_healthcheck()
    if not result.is_success:
        raise Exception(
            f"RAG client '{rag_client.get_engine_name()}' is not reachable "
            f"(status {result.status_code}). Cannot serve queries."
        )

    result = await llm_client.do_healthcheck()
    if not result.is_success:
        raise Exception(
            f"LLM client '{llm_client.get_engine_name()}' is not reachable "
            f"(status {result.status_code}). Embedding and chat will not work."
        )

    await redis.ping()


##########################################
########### EXCEPTION HANDLERS ###########
##########################################

def _error_response(status_code: int, code: ErrorCode, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code.value, message=message, details=details))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_response()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return _error_response(400, ErrorCode.BAD_REQUEST, "Invalid request", {"errors": errors})


async def upstream_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.error("%s %s: upstream service failed: %s", request.method, request.url.path, exc)
    return _error_response(502, ErrorCode.EXTERNAL_SERVICE_ERROR, "An upstream service failed")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.error("%s %s: unhandled error: %s", request.method, request.url.path, exc)
    return _error_response(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI application.

    Args:
        with_lifespan (bool): Boot clients, database and queue on startup. Disable
            to wire app.state manually (see wire_services).
    """
    app = FastAPI(
        title="docmind",
        description=(
            "Asynchronous document indexing and retrieval-augmented question answering. "
            "Uploaded documents are chunked, embedded and stored by a background worker; "
            "questions are answered from the most similar chunks, optionally streamed."
        ),
        version=app_version,
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ClientResponseError, upstream_error_handler)
    app.add_exception_handler(httpx.HTTPError, upstream_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    prefix = os.getenv("API_V1_PREFIX", "/api/v1")
    app.include_router(health_router)
    app.include_router(document_router, prefix=prefix)
    app.include_router(chat_router, prefix=prefix)
    app.include_router(profile_router, prefix=prefix)
    app.include_router(conversation_router, prefix=prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting docmind API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
