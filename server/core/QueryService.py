from contextlib import aclosing
from typing import AsyncIterator

from server.core.system_prompts import build_context, resolve_system_prompt
from services.document_pipeline.CollectionResolver import CollectionResolver
from services.document_pipeline.ProfileResolver import ProfileResolver
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.models.Chat import ChatMessage
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.profile import ProfileSettings
from shared.models.search import QueryResult, SearchOptions, SearchResultItem, StreamEvent


NO_RESULTS_ANSWER = "I couldn't find any relevant information to answer your question."


class QueryService:
    """Semantic search and retrieval-augmented answers: embed -> search -> prompt -> complete."""

    def __init__(
        self,
        helper_config: HelperConfig,
        profiles: ProfileResolver,
        collections: CollectionResolver,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._profiles = profiles
        self._collections = collections
        self._rag_client = rag_client
        self._llm_client = llm_client

    ##########################################
    ################ SEARCH ##################
    ##########################################

    async def search(self, query: str, options: SearchOptions, user_id: str) -> list[SearchResultItem]:
        """Embed a query and return the best matching chunks.

        Args:
            query (str): The search text.
            options (SearchOptions): Limit, threshold and filters; unset values come from the profile.
            user_id (str): The caller, used to resolve their profile.

        Returns:
            list[SearchResultItem]: Matching chunks ordered by descending score.

        Raises:
            NotFoundError: If options.profile_id does not exist for the user.
        """
        resolved = await self._profiles.resolve(user_id, options.profile_id)
        return await self._search(query, options, resolved.settings)

    async def _search(self, query: str, options: SearchOptions, settings: ProfileSettings) -> list[SearchResultItem]:
        limit = options.limit if options.limit is not None else settings.top_k
        score_threshold = options.score_threshold if options.score_threshold is not None else settings.score_threshold
        self.logging.info(
            "QueryService.search: query='%s', limit=%d, score_threshold=%.2f",
            query[:80], limit, score_threshold,
        )

        collection = await self._collections.resolve(settings.embedding_model)
        vectors = await self._llm_client.do_embed(settings.embedding_model, [query])

        conditions = {}
        if options.document_id:
            conditions["document_id"] = options.document_id
        if options.source:
            conditions["source"] = options.source
        filter = self._rag_client.get_match_filter(conditions) if conditions else None

        hits = await self._rag_client.do_search(
            collection,
            vectors[0],
            limit=limit,
            score_threshold=score_threshold,
            filter=filter,
        )
        items = [
            SearchResultItem(
                document_id=str(hit.payload.get("document_id", "")),
                chunk_id=str(hit.payload.get("chunk_id", hit.id)),
                content=str(hit.payload.get("content", "")),
                score=hit.score,
            )
            for hit in hits
        ]
        self.logging.info("QueryService.search: returning %d result(s).", len(items))
        return items

    ##########################################
    ################## RAG ###################
    ##########################################

    @staticmethod
    def _build_messages(
        query: str,
        results: list[SearchResultItem],
        settings: ProfileSettings,
        history: list[ChatMessage] | None,
    ) -> list[ChatMessage]:
        """System prompt, then prior turns, then the new user query."""
        context = build_context([result.content for result in results])
        messages = [ChatMessage(role="system", content=resolve_system_prompt(context, settings))]
        messages.extend(history or [])
        messages.append(ChatMessage(role="user", content=query))
        return messages

    async def query_rag(
        self,
        query: str,
        options: SearchOptions,
        user_id: str,
        history: list[ChatMessage] | None = None,
    ) -> QueryResult:
        """Answer a question from the indexed documents.

        Without search results the completion provider is not called and a
        fixed answer is returned.
        """
        resolved = await self._profiles.resolve(user_id, options.profile_id)
        settings = resolved.settings
        results = await self._search(query, options, settings)
        if not results:
            return QueryResult(answer=NO_RESULTS_ANSWER, sources=[])

        answer = await self._llm_client.do_chat(
            settings.model,
            self._build_messages(query, results, settings, history),
            settings.generation_settings(),
        )
        return QueryResult(answer=answer, sources=results)

    async def query_rag_stream(
        self,
        query: str,
        options: SearchOptions,
        user_id: str,
        history: list[ChatMessage] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream an answer as events: ``sources`` first, then ``token`` events, then ``done``.

        Closing this generator closes the provider stream.
        """
        resolved = await self._profiles.resolve(user_id, options.profile_id)
        settings = resolved.settings
        results = await self._search(query, options, settings)

        yield StreamEvent(type="sources", sources=results)

        if not results:
            yield StreamEvent(type="token", content=NO_RESULTS_ANSWER)
            yield StreamEvent(type="done")
            return

        tokens = self._llm_client.do_chat_stream(
            settings.model,
            self._build_messages(query, results, settings, history),
            settings.generation_settings(),
        )
        async with aclosing(tokens):
            async for token in tokens:
                yield StreamEvent(type="token", content=token)
        yield StreamEvent(type="done")
