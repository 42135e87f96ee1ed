"""folio_rag.pipelines

Pipeline orchestration components for the Folio RAG system.

This package contains high-level pipelines that coordinate the retrieval
engine with its collaborators. Pipelines are stateless beyond their
configured components, making them safe to reuse across requests.

Modules
-------
ingestion_pipeline
    Offline chunking, embedding and storage of source documents.
rag_pipeline
    End-to-end Retrieval-Augmented Generation (RAG) pipeline.
"""
