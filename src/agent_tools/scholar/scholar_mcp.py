from __future__ import annotations

from typing import Any, Literal

from fastmcp import FastMCP

from src.agent_tools.scholar.scholar_mcp_impl import (
    batch_fetch_impl,
    cache_stats_impl,
    clear_cache_impl,
    find_authors_impl,
    get_author_impl,
    get_author_with_papers_impl,
    get_authors_impl,
    get_citations_impl,
    get_paper_impl,
    get_paper_with_embedding_impl,
    get_references_impl,
    graph_stats_impl,
    hybrid_search_impl,
    read_cypher_impl,
    search_authors_impl,
    search_papers_impl,
)
from src.factory.mcp_server_factory import McpServerFactory
from src.services.gateway_services import GatewayServices

SERVER_INSTRUCTIONS = (
    "Academic paper metadata from Semantic Scholar plus an optional read-only "
    "Neo4j knowledge graph of papers, authors, fields and communities. "
    "Responses are cached; when the upstream rate limit is reached tools return "
    "an `error` with `retry_after_seconds` instead of data."
)


def register_paper_tools(mcp_server: FastMCP, services: GatewayServices) -> None:
    @mcp_server.tool()
    async def search_papers(
        query: str,
        year: str | None = None,
        limit: int = 10,
        open_access_only: bool = False,
    ) -> dict[str, Any]:
        """Search for academic papers on Semantic Scholar.

        `year` accepts a single year ("2023") or a range ("2020-2024").
        Returns titles, authors, year and citation count.
        """
        return await search_papers_impl(services, query, year, limit, open_access_only)

    @mcp_server.tool()
    async def get_paper(paper_id: str, fields: str | None = None) -> dict[str, Any]:
        """Get details for a paper by ID (S2 ID, DOI, ARXIV:id, or URL:url).

        `fields` is a comma-separated list; defaults to
        title,authors,year,abstract,citationCount,referenceCount,url.
        """
        return await get_paper_impl(services, paper_id, fields)

    @mcp_server.tool()
    async def get_authors(paper_id: str, limit: int = 100) -> dict[str, Any]:
        """Get the authors of a paper."""
        return await get_authors_impl(services, paper_id, limit)

    @mcp_server.tool()
    async def get_citations(paper_id: str, limit: int = 100) -> dict[str, Any]:
        """Get papers that cite a given paper (incoming citations)."""
        return await get_citations_impl(services, paper_id, limit)

    @mcp_server.tool()
    async def get_references(paper_id: str, limit: int = 100) -> dict[str, Any]:
        """Get papers referenced by a given paper (outgoing references)."""
        return await get_references_impl(services, paper_id, limit)

    @mcp_server.tool()
    async def batch_fetch(paper_ids: list[str], fields: str | None = None) -> dict[str, Any]:
        """Fetch up to 100 papers by ID in one request."""
        return await batch_fetch_impl(services, paper_ids, fields)

    @mcp_server.tool()
    async def get_author(author_id: str, fields: str | None = None) -> dict[str, Any]:
        """Get details for an author by Semantic Scholar author ID."""
        return await get_author_impl(services, author_id, fields)

    @mcp_server.tool()
    async def search_authors(query: str, limit: int = 10) -> dict[str, Any]:
        """Search for authors by name."""
        return await search_authors_impl(services, query, limit)

    @mcp_server.tool()
    async def get_paper_with_embedding(paper_id: str) -> dict[str, Any]:
        """Get full paper details including the SPECTER embedding (768-dim), TLDR,
        fields of study and external IDs. Suited to knowledge graph ingestion.

        `paper_id` accepts an S2 ID, DOI, ARXIV:id, or URL:url.
        """
        return await get_paper_with_embedding_impl(services, paper_id)

    @mcp_server.tool()
    async def get_author_with_papers(author_id: str, limit: int = 100) -> dict[str, Any]:
        """Get author details plus up to `limit` (1-500) papers with their co-authors.

        One call gives the co-authorship neighbourhood of an author.
        """
        return await get_author_with_papers_impl(services, author_id, limit)

    @mcp_server.tool()
    def cache_stats() -> dict[str, Any]:
        """Cache hit/miss counters, stored size and entries, and the current rate limit."""
        return cache_stats_impl(services)

    @mcp_server.tool()
    def clear_cache() -> dict[str, Any]:
        """Clear the API response cache."""
        return clear_cache_impl(services)


def register_graph_tools(mcp_server: FastMCP, services: GatewayServices) -> None:
    @mcp_server.tool()
    async def read_cypher(query: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a read-only Cypher query against the knowledge graph.

        Write operations are blocked. Example:
        MATCH (a:Author)-[:WROTE]->(p:Paper) WHERE a.name CONTAINS $name
        RETURN a.name, p.title LIMIT 10
        """
        return await read_cypher_impl(services, query, params)

    @mcp_server.tool()
    async def graph_stats() -> dict[str, Any]:
        """Node and relationship counts, community count and embedding coverage of the graph."""
        return await graph_stats_impl(services)

    @mcp_server.tool()
    async def find_authors(name: str) -> dict[str, Any]:
        """Find authors in the graph by (partial) name, with top papers and co-authors."""
        return await find_authors_impl(services, name)

    @mcp_server.tool()
    async def hybrid_search(
        query: str, search_type: Literal["paper", "author", "topic"] = "paper"
    ) -> dict[str, Any]:
        """Search the local graph first, then Semantic Scholar, and report the differences."""
        return await hybrid_search_impl(services, query, search_type)


def create_scholar_mcp_server(services: GatewayServices) -> FastMCP:
    mcp_server = McpServerFactory.create_mcp_server(
        "SemanticScholarMcpServer", instructions=SERVER_INSTRUCTIONS
    )
    register_paper_tools(mcp_server, services)
    register_graph_tools(mcp_server, services)
    return mcp_server
