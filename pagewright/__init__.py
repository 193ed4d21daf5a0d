"""
Pagewright - a static site builder with memoized components and usage-tracked CSS.

Pagewright renders pages written as Python source files, composes them through
slot-based layouts and reusable components, consolidates the CSS of exactly the
components each page uses, queries immutable in-memory data collections, and
rebuilds only the pages affected by a change.
"""

__version__ = "1.0.0"

from .builder import SiteBuilder, PageContext
from .data import DataRegistry, Collection, Query, Record, Page
from .errors import (PagewrightError, TemplateNotFound, DataFileError, ScopeError,
                     ItemMethodError, ImmutableMutation, InvalidArgument)
from .render import Engine, RenderContext, Template, TemplateKey, RenderResult, fingerprint
from .settings import SiteSettings

__all__ = [
    'SiteBuilder', 'PageContext',
    'DataRegistry', 'Collection', 'Query', 'Record', 'Page',
    'PagewrightError', 'TemplateNotFound', 'DataFileError', 'ScopeError',
    'ItemMethodError', 'ImmutableMutation', 'InvalidArgument',
    'Engine', 'RenderContext', 'Template', 'TemplateKey', 'RenderResult', 'fingerprint',
    'SiteSettings',
]
