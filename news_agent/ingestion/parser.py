"""
HTML Parser

Turns raw article HTML into plain text for the structuring step, using
BeautifulSoup4 for markup cleanup and newspaper3k for publish-date detection.
"""

import re
import logging
from typing import Dict, Optional

from bs4 import BeautifulSoup
from newspaper import Article

logger = logging.getLogger(__name__)

# Tags that never carry article text
NON_CONTENT_TAGS = ['script', 'style', 'meta', 'link', 'noscript']

# Semantic containers preferred over the full page body
ARTICLE_SELECTORS = 'article, .article, .content, main, #content, #main'

# Meta tags commonly holding the publish date
PUBLISH_DATE_META = [
    'article:published_time',
    'og:published_time',
    'datePublished',
    'pubdate',
    'publish-date',
    'date',
]


class HTMLParser:
    """Parses HTML content to extract article text and metadata."""

    def parse_html(self, html: str) -> BeautifulSoup:
        """
        Parse HTML content into BeautifulSoup object.

        Args:
            html: HTML content string

        Returns:
            BeautifulSoup object
        """
        return BeautifulSoup(html or '', 'html.parser')

    @staticmethod
    def _normalize_whitespace(text: str) -> str:
        return re.sub(r'\s+', ' ', text).strip()

    def extract_title(self, soup: BeautifulSoup) -> str:
        """Get the page title, falling back to the first <h1>."""
        title_tag = soup.find('title')
        if title_tag and title_tag.get_text(strip=True):
            return self._normalize_whitespace(title_tag.get_text())

        heading = soup.find('h1')
        if heading:
            return self._normalize_whitespace(heading.get_text())
        return ''

    def extract_metadata(self, soup: BeautifulSoup) -> Dict[str, str]:
        """
        Extract metadata from HTML meta tags.

        Args:
            soup: BeautifulSoup object

        Returns:
            Dictionary of meta name/property to content
        """
        metadata = {}
        for meta in soup.find_all('meta'):
            name = meta.get('name') or meta.get('property') or meta.get('itemprop')
            content = meta.get('content')
            if name and content:
                metadata[name] = content
        return metadata

    def extract_body_text(self, soup: BeautifulSoup) -> str:
        """
        Extract readable text, preferring semantic article containers.

        Non-content tags are removed from the soup in place.

        Args:
            soup: BeautifulSoup object

        Returns:
            Whitespace-normalized text (may be empty)
        """
        for tag in soup(NON_CONTENT_TAGS):
            tag.decompose()

        # Nested matches (e.g. <main><article>) would repeat text, so keep
        # only containers that are not inside another matched container
        containers = soup.select(ARTICLE_SELECTORS)
        container_ids = {id(element) for element in containers}
        outermost = [
            element for element in containers
            if not any(id(parent) in container_ids for parent in element.parents)
        ]
        article_text = self._normalize_whitespace(
            ' '.join(element.get_text(' ') for element in outermost)
        )
        if article_text:
            return article_text

        body = soup.find('body') or soup
        return self._normalize_whitespace(body.get_text(' '))

    def extract_text(self, html: str) -> str:
        """
        Convert article HTML into the plain-text form fed to the LLM.

        Args:
            html: Raw HTML

        Returns:
            Text of the form "Title: <title>\\n\\nContent: <text>"
        """
        soup = self.parse_html(html)
        title = self.extract_title(soup)
        content = self.extract_body_text(soup)
        return f"Title: {title}\n\nContent: {content}"

    def extract_publish_date(self, html: str, url: str = '') -> Optional[str]:
        """
        Detect the article's publish date.

        Tries newspaper3k's date heuristics first, then well-known meta tags.

        Returns:
            ISO date string (YYYY-MM-DD) or None if not found
        """
        try:
            article = Article(url or 'http://localhost/')
            article.download(input_html=html)
            article.parse()
            if article.publish_date:
                return article.publish_date.date().isoformat()
        except Exception as e:
            # newspaper3k raises a variety of parser errors on odd markup
            logger.debug(f"newspaper3k could not parse publish date for {url}: {e}")

        metadata = self.extract_metadata(self.parse_html(html))
        for key in PUBLISH_DATE_META:
            value = metadata.get(key)
            if value:
                match = re.match(r'\d{4}-\d{2}-\d{2}', value.strip())
                if match:
                    return match.group(0)
        return None
