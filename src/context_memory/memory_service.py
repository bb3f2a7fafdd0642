"""
Memory service: the entry point tying ingestion, retrieval, retention and
archive together.

Every collaborator is injected. Components not passed in are built from the
ones that are, so a service can be assembled from a repository, a vector
index, an embedder and settings alone.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from context_memory.archive import ArchiveInclude, ArchivePayload, ArchiveService, RestoreResult
from context_memory.archive.models import ArchiveMode
from context_memory.config import MemorySettings
from context_memory.embeddings.protocol import EmbeddingProvider
from context_memory.extraction import TextExtractor, is_plain_text
from context_memory.formatting import FullSearchResponse, LLMSearchResponse, SearchMode
from context_memory.jobs.worker import ChunkWorker
from context_memory.models import (
    MemoryItem,
    MetadataValue,
    Scope,
    SearchFilters,
    StoreRequest,
    StoreResult,
)
from context_memory.precheck import SENSITIVE_KEYWORDS_FLAG, ContentPrecheck
from context_memory.refrag import RefragResult, RefragRetriever
from context_memory.retention import TierStats, TierTransitionEngine, TierTransitionResult
from context_memory.search import ContextSearchService
from context_memory.storage.protocols import MemoryRepository, VectorIndex
from context_memory.storage.vector.models import MEMORY_COLLECTION, memory_payload

logger = logging.getLogger(__name__)


class MemoryService:
    """
    Stores, retrieves, ages and archives context memory.

    Example:
        >>> service = MemoryService(repository, vector_index, embedder, settings, worker=worker)
        >>> result = await service.store(StoreRequest(user_id="u1", org_id="o1",
        ...                                            agent_id="a1", content="I like pizza"))
        >>> response = await service.search("food preferences", SearchFilters(user_id="u1", org_id="o1"))
    """

    def __init__(
        self,
        repository: MemoryRepository,
        vector_index: VectorIndex,
        embedder: EmbeddingProvider,
        settings: MemorySettings,
        precheck: Optional[ContentPrecheck] = None,
        search_service: Optional[ContextSearchService] = None,
        refrag: Optional[RefragRetriever] = None,
        tier_engine: Optional[TierTransitionEngine] = None,
        archive: Optional[ArchiveService] = None,
        worker: Optional[ChunkWorker] = None,
        extractor: Optional[TextExtractor] = None,
    ):
        self.repository = repository
        self.vector_index = vector_index
        self.embedder = embedder
        self.settings = settings
        self.precheck = precheck or ContentPrecheck()
        self.search_service = search_service or ContextSearchService(
            embedder, repository, vector_index, settings
        )
        self.refrag = refrag or RefragRetriever(embedder, repository, vector_index, settings)
        self.tier_engine = tier_engine or TierTransitionEngine(repository, vector_index, settings)
        self.archive = archive or ArchiveService(repository, vector_index, settings)
        self.worker = worker
        self.extractor = extractor

    @property
    def chunking_available(self) -> bool:
        return self.worker is not None and self.worker.available

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def store(self, request: StoreRequest) -> StoreResult:
        """
        Precheck, embed and store one memory item, then enqueue its chunk job.

        Blocked content is not stored and comes back as ``action="blocked"``.
        Embedding and storage errors propagate.
        """
        precheck = request.precheck or self.precheck.check(request.content)
        pii_detected = bool(set(precheck.pii_types) - {SENSITIVE_KEYWORDS_FLAG})

        if precheck.blocked:
            logger.warning(
                f"Content blocked for user {request.user_id}: {', '.join(precheck.reasons)}"
            )
            return StoreResult(
                action="blocked",
                pii_detected=pii_detected,
                reasons=precheck.reasons,
            )

        redacted = precheck.decision == "redact"
        content = precheck.redacted_content or request.content
        item = MemoryItem(
            user_id=request.user_id,
            org_id=request.org_id,
            scope=request.scope,
            visibility=request.visibility,
            content=content,
            summary=request.summary,
            content_type=request.content_type,
            metadata=request.metadata,
            agent_id=request.agent_id,
            agent_name=request.agent_name,
            conversation_id=request.conversation_id,
            parent_id=request.parent_id,
            correlation_id=request.correlation_id,
            importance=request.importance,
            expires_at=request.expires_at,
            pii_detected=pii_detected,
            pii_redacted=redacted,
            raw_content=request.content if redacted else None,
            precheck_decision=precheck.decision,
        )

        vector = await self.embedder.generate_embedding(item.content)
        self.repository.add_memory(item)
        self.vector_index.upsert_embedding(MEMORY_COLLECTION, item.id, vector, memory_payload(item))

        chunk_job = "unavailable"
        if self.chunking_available:
            self.worker.enqueue_chunk(item.id)
            chunk_job = "queued"
        else:
            logger.debug(f"No chunk worker available, memory {item.id} left unchunked")

        logger.info(
            f"Stored memory {item.id} ({item.content_type}, pii_redacted={redacted}, "
            f"chunk_job={chunk_job})"
        )
        return StoreResult(
            action="stored",
            memory_id=item.id,
            chunk_job=chunk_job,
            pii_detected=pii_detected,
            pii_redacted=redacted,
            reasons=precheck.reasons,
        )

    async def store_document(
        self,
        data: Union[bytes, str],
        mime_type: str,
        user_id: str,
        org_id: str,
        agent_id: str,
        filename: Optional[str] = None,
        conversation_id: Optional[str] = None,
        scope: Scope = "user",
        metadata: Optional[Dict[str, MetadataValue]] = None,
    ) -> StoreResult:
        """
        Store a document as a ``document`` memory item.

        Plain text is stored as-is; other types go through the text extractor.

        Raises:
            ValueError: If no extractor is configured for a non-text type, or no
                text could be extracted
        """
        doc_metadata: Dict[str, Any] = {"mime_type": mime_type}
        if filename:
            doc_metadata["filename"] = filename

        if is_plain_text(mime_type):
            text = data.decode("utf-8") if isinstance(data, bytes) else data
        else:
            if self.extractor is None:
                raise ValueError(f"No text extractor configured for {mime_type}")
            raw = data.encode("utf-8") if isinstance(data, str) else data
            extracted = await self.extractor.extract(raw, mime_type)
            text = extracted.text
            doc_metadata["extraction_confidence"] = extracted.confidence
            if extracted.page_count is not None:
                doc_metadata["page_count"] = extracted.page_count

        text = text.strip()
        if not text:
            raise ValueError("No text could be extracted from document")

        doc_metadata.update(metadata or {})
        return await self.store(
            StoreRequest(
                user_id=user_id,
                org_id=org_id,
                agent_id=agent_id,
                content=text,
                content_type="document",
                conversation_id=conversation_id,
                scope=scope,
                metadata=doc_metadata,
            )
        )

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def search(
        self,
        query: str,
        filters: SearchFilters,
        mode: SearchMode = "full",
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> Union[FullSearchResponse, LLMSearchResponse]:
        return await self.search_service.search(query, filters, mode, limit, threshold)

    async def refrag_retrieve(
        self,
        query: str,
        filters: SearchFilters,
        compression_ratio: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> RefragResult:
        """
        Chunk-level retrieval with selective expansion.

        Raises:
            RefragDisabledError: If REFRAG is disabled
        """
        return await self.refrag.retrieve(query, filters, compression_ratio, limit)

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def transition_tiers(self, dry_run: bool = False) -> TierTransitionResult:
        return self.tier_engine.run(dry_run=dry_run)

    def restore_cold(self, memory_id: str) -> MemoryItem:
        return self.tier_engine.restore_cold(memory_id)

    def mark_important(self, memory_id: str, permanent: bool = False) -> MemoryItem:
        return self.tier_engine.mark_important(memory_id, permanent)

    def tier_stats(self) -> Dict[str, TierStats]:
        return {tier.value: stats for tier, stats in self.tier_engine.tier_stats().items()}

    # -------------------------------------------------------------------------
    # Archive
    # -------------------------------------------------------------------------

    def export(
        self,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        mode: ArchiveMode = "copy",
        include: Optional[ArchiveInclude] = None,
    ) -> ArchivePayload:
        return self.archive.export(org_id, start, end, mode, include)

    def restore(
        self, payload: Union[ArchivePayload, Dict[str, Any]], org_id: str
    ) -> RestoreResult:
        return self.archive.restore(payload, org_id)
