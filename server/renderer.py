"""
Inline Markdown rendering.

Markdown files are served as styled HTML unless the request carries the
raw flag. Anything the renderer cannot or should not handle is left to
the static file server by returning None.
"""
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote
import logging

import markdown
from flask import Response, render_template, request

from config import MARKDOWN_SUFFIXES, RAW_QUERY_FLAG
from core.security import sanitize_path

logger = logging.getLogger(__name__)

# GitHub-flavored rule set: tables, fenced code, footnotes, attribute
# lists, definition lists, abbreviations, HTML blocks, heading anchors
MD_EXTENSIONS = [
    'extra',
    'sane_lists',
    'toc',
]


def convert_markdown(source: bytes) -> str:
    """
    Raises:
        UnicodeDecodeError: if source is not UTF-8
    """
    return markdown.markdown(source.decode('utf-8'), extensions=MD_EXTENSIONS)


class MarkdownRenderer:
    """
    Decides render-or-passthrough for a request path.
    """

    def __init__(self, root: Path, style: Optional[str] = None,
                 raw_flag: str = RAW_QUERY_FLAG):
        """
        Args:
            root: Absolute served root
            style: Custom style sheet injected into every rendered page
            raw_flag: Query parameter that requests the unrendered file
        """
        self.root = root
        self.style = style
        self.raw_flag = raw_flag

    def wants_render(self, url_path: str, args: Mapping[str, str]) -> bool:
        if self.raw_flag in args:
            return False
        return Path(url_path).suffix.lower() in MARKDOWN_SUFFIXES

    def render(self, url_path: str, args: Mapping[str, str]) -> Optional[Response]:
        """
        Return the rendered page, an error response, or None for passthrough.
        """
        if not self.wants_render(url_path, args):
            return None

        target = sanitize_path(url_path, self.root)
        if target is None:
            return None

        try:
            source = target.read_bytes()
        except OSError:
            # Missing file or directory: the static server answers
            return None

        try:
            content = convert_markdown(source)
        except Exception as e:
            logger.error("Markdown conversion failed for %s: %s", url_path, e)
            return Response("Error rendering markdown", status=500, mimetype='text/plain')

        page = render_template(
            'markdown.html',
            title=target.name,
            content=content,
            style=self.style,
            raw_url=f"{quote(request.path)}?{self.raw_flag}=1",
        )
        return Response(page, mimetype='text/html')
