import json

import httpx
import pytest

from shared.clients.auth.AuthClientManager import AuthClientManager
from shared.clients.auth.betterauth.AuthClientBetterauth import AuthClientBetterauth
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.llm.models.Chat import ChatMessage, GenerationSettings
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.clients.llm.openrouter.LLMClientOpenrouter import LLMClientOpenrouter
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorPointPayload
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant
from shared.models.errors import ClientResponseError


MESSAGES = [ChatMessage(role="system", content="Be brief."), ChatMessage(role="user", content="Hi")]


class Recorder:
    """MockTransport handler that records requests and replies from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes.get((request.method, request.url.path), httpx.Response(404))

    def json(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


async def booted(client, recorder: Recorder):
    await client.boot(transport=httpx.MockTransport(recorder))
    return client


##########################################
################ QDRANT ##################
##########################################

class TestRAGClientQdrant:
    """Test cases for the Qdrant client."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch):
        monkeypatch.setenv("RAG_QDRANT_BASE_URL", "http://qdrant:6333")
        monkeypatch.setenv("RAG_QDRANT_API_KEY", "secret")

    async def test_existence_check_sends_api_key(self, helper_config):
        recorder = Recorder({("GET", "/collections/docmind_384/exists"): httpx.Response(200, json={"result": {"exists": True}})})
        client = await booted(RAGClientQdrant(helper_config), recorder)

        assert await client.do_existence_check("docmind_384") is True
        assert recorder.requests[0].headers["api-key"] == "secret"
        await client.close()

    async def test_create_collection_with_payload_indexes(self, helper_config):
        recorder = Recorder({
            ("PUT", "/collections/docmind_384"): httpx.Response(200, json={"result": True}),
            ("PUT", "/collections/docmind_384/index"): httpx.Response(200, json={"result": {}}),
        })
        client = await booted(RAGClientQdrant(helper_config), recorder)

        await client.do_create_collection("docmind_384", 384, keyword_fields=["document_id"], text_fields=["content"])

        assert recorder.json(0) == {"vectors": {"size": 384, "distance": "Cosine"}}
        assert recorder.json(1) == {"field_name": "document_id", "field_schema": "keyword"}
        assert recorder.json(2)["field_schema"]["type"] == "text"
        assert recorder.requests[1].url.params["wait"] == "true"

    async def test_search_payload_and_hits(self, helper_config):
        recorder = Recorder({
            ("POST", "/collections/docmind_384/points/search"): httpx.Response(200, json={"result": [
                {"id": "p1", "score": 0.87, "payload": {"document_id": "d1", "content": "text"}},
            ]}),
        })
        client = await booted(RAGClientQdrant(helper_config), recorder)
        filter = client.get_match_filter({"document_id": "d1"})

        hits = await client.do_search("docmind_384", [0.1, 0.2], limit=4, score_threshold=0.5, filter=filter)

        assert recorder.json() == {
            "vector": [0.1, 0.2],
            "limit": 4,
            "with_payload": True,
            "with_vector": False,
            "score_threshold": 0.5,
            "filter": {"must": [{"key": "document_id", "match": {"value": "d1"}}]},
        }
        assert hits[0].id == "p1"
        assert hits[0].score == 0.87
        assert hits[0].payload["document_id"] == "d1"

    async def test_upsert_and_delete(self, helper_config):
        recorder = Recorder({
            ("PUT", "/collections/c/points"): httpx.Response(200, json={"result": {}}),
            ("POST", "/collections/c/points/delete"): httpx.Response(200, json={"result": {}}),
        })
        client = await booted(RAGClientQdrant(helper_config), recorder)
        point = VectorPoint(
            id="p1", vector=[0.5], payload=VectorPointPayload(document_id="d1", chunk_id="p1", content="x", chunk_index=0),
        )

        await client.do_upsert_points("c", [])
        assert recorder.requests == []

        await client.do_upsert_points("c", [point])
        await client.do_delete_points_by_filter("c", client.get_match_filter({"document_id": "d1"}))

        assert recorder.json(0)["points"][0]["payload"]["document_id"] == "d1"
        assert recorder.json(1) == {"filter": {"must": [{"key": "document_id", "match": {"value": "d1"}}]}}

    async def test_error_status_raises(self, helper_config):
        client = await booted(RAGClientQdrant(helper_config), Recorder({}))

        with pytest.raises(ClientResponseError) as exc_info:
            await client.do_search("missing", [0.1], limit=1)
        assert exc_info.value.status_code == 404

    async def test_request_before_boot_fails(self, helper_config):
        with pytest.raises(RuntimeError):
            await RAGClientQdrant(helper_config).do_healthcheck()

    def test_base_url_is_required(self, helper_config, monkeypatch):
        monkeypatch.delenv("RAG_QDRANT_BASE_URL")
        with pytest.raises(ValueError, match="RAG_QDRANT_BASE_URL"):
            RAGClientQdrant(helper_config)


##########################################
################# LLM ####################
##########################################

class TestLLMClientOpenrouter:
    """Test cases for the OpenRouter client."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch):
        monkeypatch.setenv("LLM_OPENROUTER_API_KEY", "or-key")

    async def test_embeddings_are_sorted_by_index(self, helper_config):
        recorder = Recorder({("POST", "/api/v1/embeddings"): httpx.Response(200, json={"data": [
            {"index": 1, "embedding": [2.0]},
            {"index": 0, "embedding": [1.0]},
        ]})})
        client = await booted(LLMClientOpenrouter(helper_config), recorder)

        vectors = await client.do_embed("openai/text-embedding-3-small", ["a", "b"])

        assert vectors == [[1.0], [2.0]]
        assert recorder.json() == {"model": "openai/text-embedding-3-small", "input": ["a", "b"]}
        assert recorder.requests[0].headers["authorization"] == "Bearer or-key"

    async def test_embedding_error_raises(self, helper_config):
        recorder = Recorder({("POST", "/api/v1/embeddings"): httpx.Response(429, text="rate limited")})
        client = await booted(LLMClientOpenrouter(helper_config), recorder)

        with pytest.raises(ClientResponseError):
            await client.do_embed("openai/text-embedding-3-small", "a")

    async def test_chat_payload(self, helper_config):
        recorder = Recorder({("POST", "/api/v1/chat/completions"): httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": "Hello!"}}],
        })})
        client = await booted(LLMClientOpenrouter(helper_config), recorder)

        answer = await client.do_chat("m", MESSAGES, GenerationSettings(temperature=0.2, max_tokens=100, reasoning_effort="low"))

        assert answer == "Hello!"
        body = recorder.json()
        assert body["messages"] == [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hi"}]
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 100
        assert body["stream"] is False
        assert body["reasoning"] == {"effort": "low"}

    async def test_no_reasoning_block_by_default(self, helper_config):
        payload = LLMClientOpenrouter(helper_config).get_chat_payload("m", MESSAGES, GenerationSettings(), stream=True)
        assert "reasoning" not in payload
        assert payload["stream"] is True

    async def test_stream_parses_server_sent_events(self, helper_config):
        body = (
            ": OPENROUTER PROCESSING\n\n"
            'data: {"choices": [{"delta": {"role": "assistant"}}]}\n\n'
            'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
            'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n'
            "data: [DONE]\n\n"
            'data: {"choices": [{"delta": {"content": "ignored"}}]}\n\n'
        )
        recorder = Recorder({("POST", "/api/v1/chat/completions"): httpx.Response(200, content=body.encode())})
        client = await booted(LLMClientOpenrouter(helper_config), recorder)

        tokens = [token async for token in client.do_chat_stream("m", MESSAGES, GenerationSettings())]

        assert tokens == ["Hel", "lo"]

    async def test_stream_error_status_raises(self, helper_config):
        recorder = Recorder({("POST", "/api/v1/chat/completions"): httpx.Response(500, text="boom")})
        client = await booted(LLMClientOpenrouter(helper_config), recorder)

        with pytest.raises(ClientResponseError):
            async for _ in client.do_chat_stream("m", MESSAGES, GenerationSettings()):
                pass

    def test_stream_error_chunk_raises(self, helper_config):
        client = LLMClientOpenrouter(helper_config)
        with pytest.raises(ValueError):
            client.extract_stream_delta('data: {"error": {"message": "overloaded"}}')

    def test_api_key_is_required(self, helper_config, monkeypatch):
        monkeypatch.delenv("LLM_OPENROUTER_API_KEY")
        with pytest.raises(ValueError):
            LLMClientOpenrouter(helper_config)


class TestLLMClientOllama:
    """Test cases for the Ollama client."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch):
        monkeypatch.setenv("LLM_OLLAMA_BASE_URL", "http://ollama:11434")

    async def test_embed(self, helper_config):
        recorder = Recorder({("POST", "/api/embed"): httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})})
        client = await booted(LLMClientOllama(helper_config), recorder)

        assert await client.do_embed("all-minilm", ["a"]) == [[0.1, 0.2]]
        assert "authorization" not in recorder.requests[0].headers

    async def test_chat_options(self, helper_config):
        recorder = Recorder({("POST", "/api/chat"): httpx.Response(200, json={"message": {"content": "Hi there"}})})
        client = await booted(LLMClientOllama(helper_config), recorder)

        assert await client.do_chat("llama3", MESSAGES, GenerationSettings(max_tokens=64)) == "Hi there"
        assert recorder.json()["options"]["num_predict"] == 64
        assert "think" not in recorder.json()

    async def test_stream_stops_at_done(self, helper_config):
        lines = [
            {"message": {"content": "Hi"}, "done": False},
            {"message": {"content": " there"}, "done": False},
            {"message": {"content": ""}, "done": True},
            {"message": {"content": "ignored"}, "done": False},
        ]
        body = "\n".join(json.dumps(line) for line in lines)
        recorder = Recorder({("POST", "/api/chat"): httpx.Response(200, content=body.encode())})
        client = await booted(LLMClientOllama(helper_config), recorder)

        tokens = [token async for token in client.do_chat_stream("llama3", MESSAGES, GenerationSettings())]

        assert tokens == ["Hi", " there"]

    def test_empty_embeddings_raise(self, helper_config):
        with pytest.raises(ValueError):
            LLMClientOllama(helper_config).extract_embeddings_from_response({"embeddings": []})


##########################################
################# AUTH ###################
##########################################

class TestAuthClientBetterauth:
    """Test cases for session lookups."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch):
        monkeypatch.setenv("AUTH_BETTERAUTH_BASE_URL", "http://auth:3000")

    async def test_valid_session(self, helper_config):
        recorder = Recorder({("GET", "/api/auth/get-session"): httpx.Response(200, json={
            "session": {"id": "s1"}, "user": {"id": "u1", "email": "u1@example.com", "name": "U"},
        })})
        client = await booted(AuthClientBetterauth(helper_config), recorder)

        user = await client.do_get_session({"Cookie": "session=abc", "Host": "api", "X-Other": "1"})

        assert user.id == "u1"
        assert user.email == "u1@example.com"
        forwarded = recorder.requests[0].headers
        assert forwarded["cookie"] == "session=abc"
        assert "x-other" not in forwarded

    async def test_without_credentials_no_request_is_made(self, helper_config):
        recorder = Recorder({})
        client = await booted(AuthClientBetterauth(helper_config), recorder)

        assert await client.do_get_session({"Host": "api"}) is None
        assert recorder.requests == []

    @pytest.mark.parametrize("response", [
        httpx.Response(200, content=b"null", headers={"content-type": "application/json"}),
        httpx.Response(200, json={"session": None, "user": None}),
        httpx.Response(200, text="<html>Bad gateway</html>"),
        httpx.Response(200, json="ok"),
        httpx.Response(401),
        httpx.Response(500),
    ])
    async def test_no_session(self, helper_config, response):
        recorder = Recorder({("GET", "/api/auth/get-session"): response})
        client = await booted(AuthClientBetterauth(helper_config), recorder)

        assert await client.do_get_session({"Authorization": "Bearer x"}) is None

    async def test_unreachable_auth_server(self, helper_config):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = AuthClientBetterauth(helper_config)
        await client.boot(transport=httpx.MockTransport(refuse))

        assert await client.do_get_session({"Cookie": "session=abc"}) is None


##########################################
############### MANAGERS #################
##########################################

class TestClientManagers:
    """Test cases for engine selection."""

    def test_configured_engine_is_loaded(self, helper_config, monkeypatch):
        monkeypatch.setenv("LLM_ENGINE", "ollama")
        monkeypatch.setenv("LLM_OLLAMA_BASE_URL", "http://ollama:11434")
        monkeypatch.setenv("RAG_QDRANT_BASE_URL", "http://qdrant:6333")
        monkeypatch.setenv("AUTH_BETTERAUTH_BASE_URL", "http://auth:3000")

        assert isinstance(LLMClientManager(helper_config).get_client(), LLMClientOllama)
        assert isinstance(RAGClientManager(helper_config).get_client(), RAGClientQdrant)
        assert isinstance(AuthClientManager(helper_config).get_client(), AuthClientBetterauth)

    def test_unknown_engine(self, helper_config, monkeypatch):
        monkeypatch.setenv("RAG_ENGINE", "pinecone")
        with pytest.raises(ValueError, match="Unsupported RAG engine"):
            RAGClientManager(helper_config)
