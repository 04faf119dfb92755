"""
Prompt Templates

Prompt builders for article extraction, question answering and summaries.
"""

from typing import List, Optional

from .models import ArticleRecord


def build_extraction_prompt(raw_text: str) -> str:
    """Prompt asking the LLM to structure raw page text as JSON."""
    return f"""You are a helpful assistant that extracts and cleans news article content.

Below is the raw text of a news web page. Extract and structure the following information:
1. The article title
2. The main article content (cleaned and well-formatted, without navigation or ads)
3. A brief summary of the article (2-3 sentences)
4. The publication date, if the text states one

Respond with JSON only, using these fields:
- title: The article's title
- content: The cleaned article content
- summary: A brief summary of the article
- published_at: Publication date as YYYY-MM-DD, or null if unknown

RAW TEXT:
{raw_text}
"""


def build_article_prompt(article: ArticleRecord, query: str) -> str:
    """Prompt answering a question about one specific article."""
    return f"""You are a knowledgeable assistant that provides information about news articles.

ARTICLE INFORMATION:
Title: {article.title}
Content: {article.content}
URL: {article.url}
Date: {article.published_at or 'Unknown'}

USER QUERY:
{query or 'Tell me about this article.'}

Provide a comprehensive, informative, and accurate response to the user's query based on the article information above.
Be detailed but concise. If the article doesn't contain information to answer the query, say so clearly."""


def format_context(records: List[ArticleRecord], max_chars: int = 1000) -> str:
    """
    Format retrieved articles as numbered context blocks.

    Args:
        records: Articles in retrieval order
        max_chars: Content characters kept per article

    Returns:
        Context string, one block per article
    """
    blocks = []
    for i, record in enumerate(records, 1):
        content = record.content[:max_chars]
        if len(record.content) > max_chars:
            content += "..."
        blocks.append(
            f"ARTICLE {i}:\n"
            f"Title: {record.title or 'Unknown'}\n"
            f"Content: {content}\n"
            f"URL: {record.url or 'Unknown'}\n"
            f"Date: {record.published_at or 'Unknown'}"
        )
    return "\n\n".join(blocks)


def build_corpus_prompt(context: str, query: str) -> str:
    """Prompt answering a question from several retrieved articles."""
    return f"""You are a knowledgeable news assistant that provides information based on recent news articles.

CONTEXT FROM RELEVANT ARTICLES:
{context}

USER QUERY:
{query}

Provide a comprehensive, informative, and accurate response to the user's query based on the articles provided.
Only use information from the articles provided as context. If the articles don't contain enough information to fully answer the query, say so clearly.
Synthesize information from multiple articles if relevant. Be detailed but concise."""


def build_summary_prompt(article: ArticleRecord, summary_hint: Optional[str] = None) -> str:
    """Prompt producing a standalone summary of one article."""
    hint = f"\nExisting short summary: {summary_hint}\n" if summary_hint else ""
    return f"""You are a professional news summarizer.

ARTICLE INFORMATION:
Title: {article.title}
Content: {article.content}
URL: {article.url}
Date: {article.published_at or 'Unknown'}
{hint}
Task: Create a concise, informative summary of the article above.
Include the main points, key facts, and any important context.
Keep the summary to 3-5 paragraphs and maintain a neutral tone."""
