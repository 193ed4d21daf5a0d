"""
Exception types raised by the Pagewright render, data and build layers.
"""


class PagewrightError(Exception):
    """Base class for every error raised by Pagewright."""


class TemplateNotFound(PagewrightError, LookupError):
    """Raised when a page, layout or component has not been defined."""

    def __init__(self, template_id):
        self.template_id = template_id
        super().__init__(f"No template defined for {template_id}")


class DataFileError(PagewrightError):
    """Raised when a collection source is missing or malformed."""


class ScopeError(PagewrightError):
    """Raised when a named scope fails while building a query."""

    def __init__(self, scope_name, model_name, original):
        self.scope_name = scope_name
        self.model_name = model_name
        super().__init__(
            f"Error in scope '{scope_name}' for model '{model_name}': {original}"
        )


class ItemMethodError(PagewrightError):
    """Raised when a computed item method fails for a record."""

    def __init__(self, method_name, model_name, original):
        self.method_name = method_name
        self.model_name = model_name
        super().__init__(
            f"Error in item method '{method_name}' for model '{model_name}': {original}"
        )


class ImmutableMutation(PagewrightError, TypeError):
    """Raised on any attempt to modify a collection record."""


class InvalidArgument(PagewrightError, ValueError):
    """Raised when a query receives an out-of-range argument."""
