from typing import Any

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import SearchHit
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_prefix = self.get_config_val("COLLECTION_PREFIX", default="docmind", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    def get_collection_prefix(self) -> str:
        return self._collection_prefix

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION_PREFIX", val_type="string", default="docmind"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self, collection: str) -> str:
        return f"/collections/{collection}"

    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        return f"/collections/{collection}/exists"

    def _get_endpoint_payload_index(self, collection: str) -> str:
        return f"/collections/{collection}/index"

    def _get_endpoint_points(self, collection: str) -> str:
        return f"/collections/{collection}/points"

    def _get_endpoint_delete_points(self, collection: str) -> str:
        return f"/collections/{collection}/points/delete"

    def _get_endpoint_search(self, collection: str) -> str:
        return f"/collections/{collection}/points/search"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    def get_payload_index_payloads(self, keyword_fields: list[str], text_fields: list[str]) -> list[dict]:
        payloads = [{"field_name": field, "field_schema": "keyword"} for field in keyword_fields]
        for field in text_fields:
            payloads.append({
                "field_name": field,
                "field_schema": {
                    "type": "text",
                    "tokenizer": "word",
                    "lowercase": True,
                },
            })
        return payloads

    def get_match_filter(self, conditions: dict[str, Any]) -> dict:
        return {"must": [{"key": key, "match": {"value": value}} for key, value in conditions.items()]}

    def get_search_payload(self, vector: list[float], limit: int, score_threshold: float | None, filter: dict | None) -> dict:
        payload: dict = {
            "vector": vector,
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }
        if score_threshold is not None:
            payload["score_threshold"] = score_threshold
        if filter:
            payload["filter"] = filter
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        return [
            SearchHit(id=str(point.get("id")), score=float(point.get("score", 0.0)), payload=point.get("payload") or {})
            for point in raw_response.get("result", [])
        ]
