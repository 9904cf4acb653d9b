from collections.abc import Awaitable, Callable

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig


EMBEDDING_BATCH_SIZE = 20

BatchCallback = Callable[[int, int], Awaitable[None]]


class EmbeddingBatcher:
    """Embeds many texts with one provider call per fixed-size batch.

    Batches are sent sequentially and in order, so ``result[i]`` always
    belongs to ``texts[i]``. Any failing batch aborts the whole call.
    """

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface, batch_size: int = EMBEDDING_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self.batch_size = batch_size

    async def embed(self, model: str, texts: list[str], on_batch: BatchCallback | None = None) -> list[list[float]]:
        """Embed ``texts`` with ``model``.

        Args:
            model (str): Embedding model id.
            texts (list[str]): Texts in chunk order.
            on_batch (BatchCallback | None): Awaited after each batch with (batches_done, batches_total).

        Returns:
            list[list[float]]: One vector per text, in input order.

        Raises:
            ValueError: If the provider returns a different number of vectors than texts sent.
        """
        if not texts:
            return []
        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size
        vectors: list[list[float]] = []
        for batch_number, start in enumerate(range(0, len(texts), self.batch_size), start=1):
            batch = texts[start:start + self.batch_size]
            batch_vectors = await self._llm_client.do_embed(model, batch)
            if len(batch_vectors) != len(batch):
                raise ValueError(
                    f"Embedding batch {batch_number}/{total_batches} returned {len(batch_vectors)} vectors for {len(batch)} texts"
                )
            vectors.extend(batch_vectors)
            self.logging.debug("Embedded batch %d/%d (%d texts)", batch_number, total_batches, len(batch))
            if on_batch is not None:
                await on_batch(batch_number, total_batches)
        return vectors
