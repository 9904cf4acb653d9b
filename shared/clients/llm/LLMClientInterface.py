from abc import abstractmethod
from collections.abc import AsyncIterator

from shared.clients.ClientInterface import ClientInterface
from shared.clients.llm.models.Chat import ChatMessage, GenerationSettings
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ClientResponseError


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """Returns the endpoint path for embedding requests (e.g. "/api/embed")."""
        pass

    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, model: str, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            model (str): The embedding model id.
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    @abstractmethod
    def get_chat_payload(self, model: str, messages: list[ChatMessage], settings: GenerationSettings, stream: bool) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            model (str): The completion model id.
            messages (list[ChatMessage]): Ordered conversation, system prompt first.
            settings (GenerationSettings): Sampling settings.
            stream (bool): Whether the backend should stream tokens.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.
        """
        pass

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response."""
        pass

    @abstractmethod
    def extract_stream_delta(self, line: str) -> tuple[str | None, bool]:
        """Parse one line of a streamed chat response.

        Args:
            line (str): A non-empty line of the response body.

        Returns:
            tuple[str | None, bool]: The token text carried by the line (None if the line
                carries no text) and whether the stream is finished.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, model: str, texts: list[str] | str) -> list[list[float]]:
        """Send an embedding request and return the extracted vectors.

        Args:
            model (str): The embedding model id.
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            ClientResponseError: If the backend answers with a non-2xx status.
            ValueError: If the response holds no usable embeddings.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(model, texts)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise ClientResponseError(self.get_endpoint_embedding(), response.status_code, response.text)
        return self.extract_embeddings_from_response(response.json())

    async def do_chat(self, model: str, messages: list[ChatMessage], settings: GenerationSettings) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Raises:
            ClientResponseError: If the HTTP request fails.
            ValueError: If the response does not contain a valid reply.
        """
        body = self.get_chat_payload(model, messages, settings, stream=False)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        return self.extract_chat_response(response.json())

    async def do_chat_stream(self, model: str, messages: list[ChatMessage], settings: GenerationSettings) -> AsyncIterator[str]:
        """Send a streaming chat/completion request and yield tokens as they arrive.

        Closing the generator early closes the upstream HTTP stream.

        Raises:
            ClientResponseError: If the HTTP request fails.
        """
        body = self.get_chat_payload(model, messages, settings, stream=True)
        lines = self.do_stream_request(method="POST", json=body, endpoint=self._get_endpoint_chat())
        try:
            async for line in lines:
                token, done = self.extract_stream_delta(line)
                if token:
                    yield token
                if done:
                    break
        finally:
            await lines.aclose()
