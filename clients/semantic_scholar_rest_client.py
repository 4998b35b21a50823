import logging
from typing import Any, Sequence
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_PAPER_FIELDS = "title,authors,year,abstract,citationCount,referenceCount,url"
SEARCH_PAPER_FIELDS = "title,authors,year,citationCount,url,openAccessPdf"
PAPER_AUTHOR_FIELDS = "name,affiliations,citationCount,hIndex"
CITATION_FIELDS = "title,authors,year,citationCount"
DEFAULT_AUTHOR_FIELDS = "name,affiliations,citationCount,hIndex,paperCount"
BATCH_PAPER_FIELDS = "title,authors,year,abstract,citationCount"
EMBEDDING_PAPER_FIELDS = (
    "title,abstract,year,venue,authors,citationCount,referenceCount,"
    "fieldsOfStudy,s2FieldsOfStudy,externalIds,tldr,embedding"
)
AUTHOR_PAPER_FIELDS = "title,year,venue,citationCount,externalIds,authors"

MAX_SEARCH_LIMIT = 100
MAX_LIST_LIMIT = 1000
MAX_BATCH_SIZE = 100
MAX_AUTHOR_PAPERS = 500


class SemanticScholarError(Exception):
    def __init__(
        self, message: str, status_code: int | None = None, response_data: Any = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


def _clamp(limit: int, maximum: int) -> int:
    return max(1, min(limit, maximum))


class SemanticScholarRestClient:
    BASE_URL = "https://api.semanticscholar.org/graph/v1"

    def __init__(
        self,
        api_key: str = "",
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug("Semantic Scholar request %s %s params=%s", method, path, kwargs.get("params"))
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise SemanticScholarError("Semantic Scholar request timed out.") from e
        except httpx.TransportError as e:
            raise SemanticScholarError("Network error. Please check your connection.") from e

        if response.is_error:
            status = response.status_code
            try:
                data: Any = response.json()
            except ValueError:
                data = response.text
            logger.warning("Semantic Scholar API error %s for %s: %s", status, path, data)
            if status == 429:
                message = "Rate limit exceeded. Please try again later."
            elif status == 404:
                message = "Resource not found"
            elif status in (401, 403):
                message = "Authentication failed. Check your API key."
            else:
                message = f"API error: {status}"
            raise SemanticScholarError(message, status, data)

        return response.json()

    async def search_papers(
        self,
        query: str,
        year: str | None = None,
        limit: int = 10,
        open_access_only: bool = False,
    ) -> dict[str, Any]:
        """
        https://api.semanticscholar.org/api-docs/graph#tag/Paper-Data/operation/get_graph_paper_relevance_search
        """
        if not query:
            raise ValueError("query is required")
        params: dict[str, Any] = {
            "query": query,
            "fields": SEARCH_PAPER_FIELDS,
            "limit": _clamp(limit, MAX_SEARCH_LIMIT),
        }
        if year:
            params["year"] = year
        if open_access_only:
            params["openAccessPdf"] = ""
        return await self._request("GET", "/paper/search", params=params)

    async def get_paper(self, paper_id: str, fields: str | None = None) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/paper/{quote(paper_id, safe='')}",
            params={"fields": fields or DEFAULT_PAPER_FIELDS},
        )

    async def get_paper_authors(self, paper_id: str, limit: int = 100) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/paper/{quote(paper_id, safe='')}/authors",
            params={"fields": PAPER_AUTHOR_FIELDS, "limit": _clamp(limit, MAX_LIST_LIMIT)},
        )

    async def get_citations(self, paper_id: str, limit: int = 100) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/paper/{quote(paper_id, safe='')}/citations",
            params={"fields": CITATION_FIELDS, "limit": _clamp(limit, MAX_LIST_LIMIT)},
        )

    async def get_references(self, paper_id: str, limit: int = 100) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/paper/{quote(paper_id, safe='')}/references",
            params={"fields": CITATION_FIELDS, "limit": _clamp(limit, MAX_LIST_LIMIT)},
        )

    async def batch_fetch_papers(
        self, paper_ids: Sequence[str], fields: str | None = None
    ) -> list[Any]:
        if not paper_ids:
            raise ValueError("paper_ids must contain at least one id.")
        if len(paper_ids) > MAX_BATCH_SIZE:
            raise ValueError(f"batch fetch accepts at most {MAX_BATCH_SIZE} ids.")
        return await self._request(
            "POST",
            "/paper/batch",
            params={"fields": fields or BATCH_PAPER_FIELDS},
            json={"ids": list(paper_ids)},
        )

    async def get_author(self, author_id: str, fields: str | None = None) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/author/{quote(author_id, safe='')}",
            params={"fields": fields or DEFAULT_AUTHOR_FIELDS},
        )

    async def search_authors(self, query: str, limit: int = 10) -> dict[str, Any]:
        if not query:
            raise ValueError("query is required")
        return await self._request(
            "GET",
            "/author/search",
            params={
                "query": query,
                "fields": DEFAULT_AUTHOR_FIELDS,
                "limit": _clamp(limit, MAX_SEARCH_LIMIT),
            },
        )

    async def get_paper_with_embedding(self, paper_id: str) -> dict[str, Any]:
        """Paper details with the SPECTER embedding, TLDR, fields of study and external ids."""
        return await self._request(
            "GET",
            f"/paper/{quote(paper_id, safe='')}",
            params={"fields": EMBEDDING_PAPER_FIELDS},
        )

    async def get_author_with_papers(self, author_id: str, limit: int = 100) -> dict[str, Any]:
        """Author details plus their papers, each with its co-author list."""
        if not 1 <= limit <= MAX_AUTHOR_PAPERS:
            raise ValueError(f"limit must be between 1 and {MAX_AUTHOR_PAPERS}.")
        escaped_id = quote(author_id, safe="")
        author = await self._request(
            "GET", f"/author/{escaped_id}", params={"fields": DEFAULT_AUTHOR_FIELDS}
        )
        papers = await self._request(
            "GET",
            f"/author/{escaped_id}/papers",
            params={"fields": AUTHOR_PAPER_FIELDS, "limit": limit},
        )
        return {**author, "papers": papers.get("data", [])}
