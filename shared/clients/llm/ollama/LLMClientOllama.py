import json

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.models.Chat import ChatMessage, GenerationSettings
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOllama(LLMClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, model: str, texts: list[str]) -> dict:
        return {"model": model, "input": texts}

    def get_chat_payload(self, model: str, messages: list[ChatMessage], settings: GenerationSettings, stream: bool) -> dict:
        """Build the Ollama chat request body.

        Ollama takes sampling settings under "options" and calls max tokens "num_predict".
        """
        payload = {
            "model": model,
            "messages": [message.model_dump() for message in messages],
            "stream": stream,
            "options": {
                "temperature": settings.temperature,
                "top_p": settings.top_p,
                "num_predict": settings.max_tokens,
            },
        }
        if settings.reasoning_effort != "none":
            payload["think"] = True
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an Ollama /api/embed response.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        embeddings = response_data.get("embeddings")
        if not embeddings or not embeddings[0]:
            raise ValueError(
                "Ollama response does not contain valid embeddings. "
                "Response keys: %s" % list(response_data.keys())
            )
        return embeddings

    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from an Ollama /api/chat response.

        Raises:
            ValueError: If the response does not contain a valid message.
        """
        message = response_data.get("message", {})
        content = message.get("content")
        if content is None:
            raise ValueError(
                "Ollama chat response does not contain a valid message. "
                "Response keys: %s" % list(response_data.keys())
            )
        return content

    def extract_stream_delta(self, line: str) -> tuple[str | None, bool]:
        # Ollama streams newline-delimited JSON objects
        chunk = json.loads(line)
        if chunk.get("error"):
            raise ValueError("Ollama stream error: %s" % chunk["error"])
        content = (chunk.get("message") or {}).get("content")
        return content or None, bool(chunk.get("done"))
