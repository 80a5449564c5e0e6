"""Document search using Chroma, scoped per library item."""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

COLLECTION_DOCUMENTS = "library_documents"

CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200


class VectorStore:
    """Chroma-backed vector store for document-content search.

    Lazily initializes the Chroma client so the module can be imported
    without chromadb installed.
    """

    def __init__(self, persist_directory: Optional[str] = None):
        self._persist_dir = persist_directory
        self._client = None
        self._collections: dict = {}

    def _get_client(self):
        """Lazily initialize the Chroma persistent client."""
        if self._client is None:
            import chromadb

            if self._persist_dir:
                Path(self._persist_dir).mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=self._persist_dir)
            else:
                self._client = chromadb.Client()
        return self._client

    def _get_collection(self, name: str = COLLECTION_DOCUMENTS):
        """Get or create a named collection."""
        if name not in self._collections:
            client = self._get_client()
            self._collections[name] = client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collections[name]

    def add_document_chunks(
        self,
        library_item_id: int,
        user_id: int,
        text: str,
        metadata: Optional[dict] = None,
    ) -> int:
        """Split a document's text into overlapping chunks and index them.

        Returns the number of chunks written.
        """
        chunks = chunk_text(text)
        if not chunks:
            return 0

        base_meta = _clean_metadata(metadata) if metadata else {}
        collection = self._get_collection()
        collection.upsert(
            ids=[f"{library_item_id}:{i}" for i in range(len(chunks))],
            documents=chunks,
            metadatas=[
                {**base_meta, "library_item_id": library_item_id, "user_id": user_id, "chunk_index": i}
                for i in range(len(chunks))
            ],
        )
        logger.info("Indexed library item %s: %d chunks", library_item_id, len(chunks))
        return len(chunks)

    def search_item(
        self,
        query: str,
        library_item_id: int,
        n_results: int = 5,
    ) -> list[dict]:
        """Search the chunks of one library item.

        Returns:
            Ranked list of result dicts with keys: id, text, metadata, distance
        """
        if not query or not query.strip():
            return []

        collection = self._get_collection()
        total = collection.count()
        if total == 0:
            return []

        results = collection.query(
            query_texts=[query],
            n_results=min(n_results, total),
            where={"library_item_id": library_item_id},
        )

        # Unpack Chroma's nested result format
        ids = results.get("ids", [[]])[0]
        documents = results.get("documents", [[]])[0]
        metadatas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        hits = []
        for i, doc_id in enumerate(ids):
            hits.append({
                "id": doc_id,
                "text": documents[i] if i < len(documents) else "",
                "metadata": metadatas[i] if i < len(metadatas) else {},
                "distance": distances[i] if i < len(distances) else 1.0,
            })

        # Lower distance = better match for cosine
        hits.sort(key=lambda x: x["distance"])
        return hits

    def delete_item(self, library_item_id: int) -> None:
        """Remove every chunk of a library item."""
        self._get_collection().delete(where={"library_item_id": library_item_id})


def chunk_text(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> list[str]:
    """Split text into fixed-size chunks with overlap, skipping blank chunks."""
    text = (text or "").strip()
    if not text:
        return []
    if overlap >= size:
        raise ValueError("overlap must be smaller than size")

    chunks = []
    step = size - overlap
    for start in range(0, len(text), step):
        chunk = text[start:start + size].strip()
        if chunk:
            chunks.append(chunk)
        if start + size >= len(text):
            break
    return chunks


def _clean_metadata(metadata: dict) -> dict:
    """Clean metadata for Chroma compatibility.

    Chroma only accepts str, int, float, bool values.
    Converts or drops incompatible types.
    """
    clean = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            clean[key] = value
        elif isinstance(value, (list, tuple)):
            # Join lists as comma-separated strings
            clean[key] = ", ".join(str(v) for v in value)
        else:
            clean[key] = str(value)
    return clean


# Module-level singleton
_store: Optional[VectorStore] = None


def get_vector_store() -> VectorStore:
    """Get or create the global VectorStore instance."""
    global _store
    if _store is None:
        from studymind.config import get_settings

        settings = get_settings()
        _store = VectorStore(persist_directory=str(settings.general.chroma_path))
    return _store
