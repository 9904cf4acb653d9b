import json

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.models.Chat import ChatMessage, GenerationSettings
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOpenrouter(LLMClientInterface):
    """OpenAI-compatible client for OpenRouter (also works against any OpenAI-style gateway)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://openrouter.ai/api/v1", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._app_name = self.get_config_val("APP_NAME", default="docmind", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openrouter"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://openrouter.ai/api/v1"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="APP_NAME", val_type="string", default="docmind"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "X-Title": self._app_name,
        }

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/models"

    def get_endpoint_embedding(self) -> str:
        return "/embeddings"

    def _get_endpoint_chat(self) -> str:
        return "/chat/completions"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, model: str, texts: list[str]) -> dict:
        return {"model": model, "input": texts}

    def get_chat_payload(self, model: str, messages: list[ChatMessage], settings: GenerationSettings, stream: bool) -> dict:
        payload = {
            "model": model,
            "messages": [message.model_dump() for message in messages],
            "temperature": settings.temperature,
            "top_p": settings.top_p,
            "max_tokens": settings.max_tokens,
            "stream": stream,
        }
        if settings.reasoning_effort != "none":
            payload["reasoning"] = {"effort": settings.reasoning_effort}
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an OpenAI-style /embeddings response.

        The provider may return items out of order, so they are sorted by "index".

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        data = response_data.get("data")
        if not data:
            raise ValueError(
                "OpenRouter response does not contain valid embeddings. "
                "Response keys: %s" % list(response_data.keys())
            )
        return [item["embedding"] for item in sorted(data, key=lambda item: item.get("index", 0))]

    def extract_chat_response(self, response_data: dict) -> str:
        choices = response_data.get("choices") or []
        if not choices:
            raise ValueError(
                "OpenRouter chat response does not contain any choices. "
                "Response keys: %s" % list(response_data.keys())
            )
        content = (choices[0].get("message") or {}).get("content")
        if content is None:
            raise ValueError("OpenRouter chat response does not contain a message content.")
        return content

    def extract_stream_delta(self, line: str) -> tuple[str | None, bool]:
        # server-sent events: "data: {...}" lines, ": comment" keep-alives, "data: [DONE]" terminator
        if not line.startswith("data:"):
            return None, False
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return None, True
        chunk = json.loads(data)
        if chunk.get("error"):
            raise ValueError("OpenRouter stream error: %s" % chunk["error"])
        choices = chunk.get("choices") or []
        if not choices:
            return None, False
        content = (choices[0].get("delta") or {}).get("content")
        return content or None, False
