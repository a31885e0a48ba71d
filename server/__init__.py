"""
tailserve HTTP layer

Identity-aware dispatcher over the working directory, with inline
Markdown rendering.
"""

from .gateway import create_app, serve_static
from .renderer import MarkdownRenderer

__all__ = [
    'create_app',
    'serve_static',
    'MarkdownRenderer',
]
