"""
News Agent

Ingests news articles from URLs, normalizes them with an LLM, indexes them
in a FAISS vector store and answers questions about them with
retrieval-augmented generation.
"""

__version__ = "0.1.0"
