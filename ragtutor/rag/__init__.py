"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Markdown and PDF source reading
- Document chunking with overlap
- Chroma collection provisioning, upsert and query
- Semantic retrieval and prompt composition
"""
