# memory.py
# Long-term vector memory: Jina embeddings stored in Supabase (pgvector).
#
# Rows go into the `ai_memories` table; similarity search goes through the
# `search_memories_by_embedding` RPC, which returns rows ordered by
# descending similarity.

import re
import uuid
from typing import Any

import httpx

from health_journal.errors import MemoryStoreError
from health_journal.models import Memory, MemoryDraft

EMBEDDING_MODEL = "jina-embeddings-v4"
EMBEDDING_DIMENSIONS = 2000  # pgvector column width

STOP_WORDS = frozenset(
    "the a an and or but in on at to for of with by is are was were be been being "
    "have has had do does did will would could should".split()
)

_INSIGHTS_HEADER = re.compile(r"(^|\n)\s*#+\s*Key Insights to Remember\s*:?\s*(\n|$)", re.IGNORECASE)
_BULLET = re.compile(r"^(?:[-*]|\d+[.)])\s+")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def is_valid_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def extract_keywords(text: str, limit: int = 20) -> list[str]:
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS][:limit]


def parse_key_insights(text: str) -> str:
    """
    Pull the bullet list under a "Key Insights to Remember" heading.

    Returns the insights one per line, or "" when the section is absent.
    """
    if not text:
        return ""
    match = _INSIGHTS_HEADER.search(text)
    if not match:
        return ""

    insights: list[str] = []
    for line in text[match.end():].splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            break
        if _BULLET.match(stripped):
            insights.append(_BULLET.sub("", stripped))
            continue
        # continuation of the previous bullet
        if insights and len(insights[-1]) < 400:
            insights[-1] += " " + stripped
            continue
        if insights:
            break
    return "\n".join(insights)


def format_memories(memories: list[Memory], limit: int = 5) -> str:
    """Render memories as numbered prompt lines."""
    if not memories:
        return "None"
    lines = []
    for i, memory in enumerate(memories[:limit], start=1):
        snippet = " ".join(memory.content.split())[:240]
        score = f"{memory.similarity:.3f}" if memory.similarity is not None else "n/a"
        lines.append(f"{i}. [{memory.kind}] {memory.title or '(untitled)'} (sim={score}) - {snippet}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------


class JinaEmbedder:
    """Single-vector text embeddings from the Jina API."""

    def __init__(
        self,
        api_key: str | None,
        api_url: str = "https://api.jina.ai/v1/embeddings",
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._client = client or httpx.Client(timeout=30)

    def embed(self, text: str) -> list[float]:
        payload = {
            "model": EMBEDDING_MODEL,
            "task": "text-matching",
            "late_chunking": True,
            "truncate": True,
            "dimensions": EMBEDDING_DIMENSIONS,
            "input": [{"text": text}],
        }
        try:
            response = self._client.post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MemoryStoreError(f"Jina API error: {exc}") from exc

        data = response.json().get("data") or []
        if not data:
            raise MemoryStoreError("No embedding data received from Jina API")
        item = data[0]
        if "embeddings" in item:
            raise MemoryStoreError("Jina returned multivector embeddings")
        embedding = item.get("embedding")
        if not isinstance(embedding, list) or len(embedding) != EMBEDDING_DIMENSIONS:
            size = len(embedding) if isinstance(embedding, list) else "no"
            raise MemoryStoreError(
                f"Unexpected embedding length {size}; expected {EMBEDDING_DIMENSIONS}"
            )
        return embedding


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SupabaseMemoryStore:
    """Memory persistence over Supabase's PostgREST interface."""

    def __init__(
        self,
        url: str,
        key: str,
        embedder: JinaEmbedder,
        client: httpx.Client | None = None,
    ) -> None:
        self._rest = url.rstrip("/") + "/rest/v1"
        self._embedder = embedder
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.Client(timeout=30)

    def _post(self, path: str, payload: dict, **headers: str) -> Any:
        try:
            response = self._client.post(
                f"{self._rest}/{path}",
                json=payload,
                headers={**self._headers, **headers},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MemoryStoreError(f"Supabase request to {path} failed: {exc}") from exc
        return response.json()

    def store_memory(self, profile_id: str, draft: MemoryDraft) -> Memory | None:
        """Embed and insert a memory. Returns the stored row, or None if none came back."""
        if not is_valid_uuid(profile_id):
            raise MemoryStoreError(f"Invalid profile id (expected UUID): {profile_id}")

        row = {
            "usr_prof_id": profile_id,
            "memory_type": draft.kind,
            "title": draft.title,
            "content": draft.content,
            "source_type": draft.source_type,
            "embedding": self._embedder.embed(draft.content),
            "keywords": extract_keywords(draft.content),
            "importance_score": draft.importance,
        }
        if is_valid_uuid(draft.source_id):
            row["source_id"] = draft.source_id

        data = self._post("ai_memories", row, Prefer="return=representation")
        stored = data[0] if isinstance(data, list) and data else None
        if not stored:
            return None
        return Memory(
            id=stored.get("id"),
            title=stored.get("title", draft.title),
            content=stored.get("content", draft.content),
            kind=stored.get("memory_type", draft.kind),
            importance=stored.get("importance_score"),
            created_at=stored.get("created_at"),
        )

    def search_memories(
        self,
        profile_id: str,
        query: str,
        threshold: float = 0.7,
        limit: int = 10,
    ) -> list[Memory]:
        """Memories similar to the query, most similar first."""
        rows = self._post(
            "rpc/search_memories_by_embedding",
            {
                "user_id": profile_id,
                "query_embedding": self._embedder.embed(query),
                "similarity_threshold": threshold,
                "max_results": limit,
            },
        )
        memories = [
            Memory(
                id=row.get("memory_id"),
                title=row.get("title") or "",
                content=row.get("content") or "",
                kind=row.get("memory_type") or "memory",
                importance=row.get("importance_score"),
                similarity=row.get("similarity_score"),
                created_at=row.get("created_at"),
            )
            for row in rows or []
        ]
        memories.sort(key=lambda m: m.similarity or 0.0, reverse=True)
        return memories
