from abc import abstractmethod
from typing import Any

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint
from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "rag"

    @abstractmethod
    def get_collection_prefix(self) -> str:
        """
        Returns the prefix used for all collection names (e.g. "docmind").
        Collections are named "<prefix>_<dimensions>".
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_collection(self, collection: str) -> str:
        """
        Returns the endpoint path of a collection (e.g. "/collections/docmind_1536").
        """
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_payload_index(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_points(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_search(self, collection: str) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        """Builds the backend-specific request body for collection creation.

        Args:
            vector_size (int): Dimension of the vectors stored in the collection.
            distance (str): Distance metric (e.g. "Cosine").

        Returns:
            dict: The payload for the create collection request.
        """
        pass

    @abstractmethod
    def get_payload_index_payloads(self, keyword_fields: list[str], text_fields: list[str]) -> list[dict]:
        """Builds one request body per payload field index to create.

        Args:
            keyword_fields (list[str]): Fields indexed for exact-match filtering.
            text_fields (list[str]): Fields indexed for full-text matching.

        Returns:
            list[dict]: One payload per field index.
        """
        pass

    @abstractmethod
    def get_match_filter(self, conditions: dict[str, Any]) -> dict:
        """Builds a backend-specific filter that ANDs equality conditions.

        Args:
            conditions (dict[str, Any]): Payload field to required value.

        Returns:
            dict: The filter.
        """
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], limit: int, score_threshold: float | None, filter: dict | None) -> dict:
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self, collection: str) -> bool:
        """Check if a collection exists in the rag backend.

        Args:
            collection (str): The collection name.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(collection),
            raise_on_error=True,
        )
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(
        self,
        collection: str,
        vector_size: int,
        distance: str = "Cosine",
        keyword_fields: list[str] | None = None,
        text_fields: list[str] | None = None,
    ) -> None:
        """Create a collection and its payload indexes in the rag backend.

        Args:
            collection (str): The collection name.
            vector_size (int): The size of the vectors in the collection.
            distance (str): The distance metric for the vectors.
            keyword_fields (list[str] | None): Payload fields to index for exact matching.
            text_fields (list[str] | None): Payload fields to index for full-text matching.

        Raises:
            ClientResponseError: If the backend rejects the collection or one of the indexes.
        """
        await self.do_request(
            method="PUT",
            json=self.get_create_collection_payload(vector_size, distance),
            endpoint=self._get_endpoint_collection(collection),
            raise_on_error=True,
        )
        for index_payload in self.get_payload_index_payloads(keyword_fields or [], text_fields or []):
            await self.do_request(
                method="PUT",
                json=index_payload,
                endpoint=self._get_endpoint_payload_index(collection),
                params={"wait": "true"},
                raise_on_error=True,
            )
        self.logging.info(
            "Created RAG collection '%s' (size=%d, distance=%s) on %s",
            collection, vector_size, distance, self.get_engine_name(),
        )

    async def do_upsert_points(self, collection: str, points: list[VectorPoint]) -> None:
        """Upsert points into a collection.
        Inserts new points or replaces existing ones if a point with the same ID already exists.

        Args:
            collection (str): The collection name.
            points (list[VectorPoint]): The points to upsert.
        """
        if not points:
            return
        await self.do_request(
            method="PUT",
            json={"points": [point.model_dump() for point in points]},
            endpoint=self._get_endpoint_points(collection),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_delete_points_by_filter(self, collection: str, filter: dict) -> None:
        """Deletes all points matching the given filter.

        Args:
            collection (str): The collection name.
            filter (dict): The filter that identifies which points to delete.
        """
        await self.do_request(
            method="POST",
            json={"filter": filter},
            endpoint=self._get_endpoint_delete_points(collection),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_search(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        score_threshold: float | None = None,
        filter: dict | None = None,
    ) -> list[SearchHit]:
        """Run a similarity search against a collection.

        Args:
            collection (str): The collection name.
            vector (list[float]): The query vector.
            limit (int): Maximum number of hits.
            score_threshold (float | None): Minimum similarity score; None disables the cut-off.
            filter (dict | None): Optional payload filter.

        Returns:
            list[SearchHit]: Hits ordered by descending score.
        """
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(vector, limit, score_threshold, filter),
            endpoint=self._get_endpoint_search(collection),
            raise_on_error=True,
        )
        return self.extract_search_hits(resp.json())
