"""
Retrieval layer of the RAG pipeline.

This package covers everything needed to turn raw books into searchable
vectors and to fetch the most relevant chunks for a question.

Submodules
----------
document_loader
    Loads books (text, Markdown, HTML, EPUB) from a directory.
text_splitter
    Normalisation and sentence-based, overlap-seeded chunking.
embedder
    Embedding model wrappers with batching, retries and timeouts.
vector_store
    Linear-scan and Qdrant vector stores.
retriever
    Progressive threshold-relaxation retrieval.
types
    Protocols decoupling callers from concrete retrievers.
"""
