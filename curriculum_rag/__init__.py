"""
Curriculum RAG - retrieval-augmented question answering over curriculum lessons.

Indexes lesson content into embedded chunks and answers student questions
with grounded, confidence-scored responses.
"""

__version__ = "1.0.0"

from .rag import RAGConfig, RAGPipeline, RAGResponse, create_rag_pipeline

__all__ = ["RAGConfig", "RAGPipeline", "RAGResponse", "create_rag_pipeline"]
