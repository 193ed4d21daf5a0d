"""
Template registry, memoizing render cache and slot based composition.

An ``Engine`` owns every registry a render touches: templates, compiled layout
skeletons, the render cache and the style caches. Each render call gets a
fresh ``RenderContext`` carrying its own buffer, slot map, used-id set and the
owner id that ``styles`` blocks attach to.
"""

import logging
import os
import re
from collections import namedtuple
from collections.abc import Mapping, Set

import mistune
from jinja2 import Environment, select_autoescape
from markupsafe import Markup, escape

from .errors import TemplateNotFound
from .styles import StyleCollector, StyleRegistry

KINDS = ('page', 'layout', 'component')
SLOT_PATTERN = re.compile(r'<!--SLOT:(.*?)-->')
STYLES_MARKER = '<!--STYLES-->'
EXTERNAL_STYLES_MARKER = '<!--EXTERNAL_STYLES-->'
VOID_ELEMENTS = frozenset([
    'area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input',
    'link', 'meta', 'source', 'track', 'wbr',
])

TemplateKey = namedtuple('TemplateKey', 'kind name')
RenderResult = namedtuple('RenderResult', 'html used')


class Template(namedtuple('Template', 'kind name renderer')):
    __slots__ = ()

    @property
    def template_id(self):
        return f'{self.kind}_{self.name}'


def template_id(kind, name):
    return f'{kind}_{name}'


def fingerprint(value):
    """Return a hashable structural fingerprint of ``value``.

    Mappings and sets are order-insensitive, sequences are order-sensitive and
    anything exposing ``to_dict`` is fingerprinted by its content. Unhashable
    leaves fall back to their ``repr``. Numbers are tagged with their type so
    ``True``, ``1`` and ``1.0`` stay distinct.
    """
    if isinstance(value, (str, bytes, type(None))):
        return value
    if isinstance(value, (bool, int, float)):
        return (type(value).__name__, value)
    if isinstance(value, Mapping):
        return ('map', frozenset((fingerprint(k), fingerprint(v)) for k, v in value.items()))
    if isinstance(value, Set):
        return ('set', frozenset(fingerprint(v) for v in value))
    if isinstance(value, (list, tuple)):
        return ('seq', tuple(fingerprint(v) for v in value))
    if hasattr(value, 'to_dict'):
        return ('record', type(value).__name__, fingerprint(value.to_dict()))
    try:
        hash(value)
    except TypeError:
        return ('repr', repr(value))
    return value


def create_markdown_parser():
    """Create a Mistune markdown parser with a custom renderer."""
    class CustomRenderer(mistune.HTMLRenderer):
        def __init__(self):
            super().__init__(escape=False)

        def block_code(self, code, info=None):
            escaped_code = mistune.escape(code)
            return '<pre style="white-space: pre-wrap;"><code>{}</code></pre>'.format(escaped_code)

    return mistune.create_markdown(
        renderer=CustomRenderer(),
        plugins=['table', 'task_lists', 'strikethrough']
    )


def _attribute_name(name):
    if name in ('cls', 'class_', 'klass'):
        return 'class'
    return name.rstrip('_').replace('_', '-')


class RenderContext:
    """Per-render state: output buffer, slots, used template ids and owner."""

    def __init__(self, engine, owner=None):
        self.engine = engine
        self.owner = owner
        self.buffer = []
        self.slots = {}
        self.used = set()

    def getvalue(self):
        return ''.join(self.buffer)

    def _capture(self, block, *args):
        previous = self.buffer
        self.buffer = []
        try:
            if block is not None:
                block(self, *args)
            return ''.join(self.buffer)
        finally:
            self.buffer = previous

    def raw(self, content):
        if content is not None:
            self.buffer.append(str(content))

    def text(self, content):
        if content is not None:
            self.buffer.append(str(escape(content)))

    def doctype(self):
        self.raw('<!DOCTYPE html>')

    def markdown(self, source):
        html = self.engine.markdown_parser(source or '')
        self.raw(html)
        return html

    def tag(self, name, content=None, **attrs):
        """Emit ``<name attrs>content</name>``.

        ``content`` may be a string (escaped) or a block called with this
        context. Attribute values of ``True`` render bare, ``None``/``False``
        are dropped.
        """
        parts = [name]
        for key, value in attrs.items():
            if value is None or value is False:
                continue
            attr = _attribute_name(key)
            if value is True:
                parts.append(attr)
            else:
                parts.append(f'{attr}="{escape(value)}"')
        self.raw('<' + ' '.join(parts) + '>')
        if name in VOID_ELEMENTS and content is None:
            return
        if callable(content):
            content(self)
        else:
            self.text(content)
        self.raw(f'</{name}>')

    def push(self, slot, block):
        self.slots[slot] = self._capture(block)

    def pull(self, slot='main'):
        self.raw(f'<!--SLOT:{slot}-->')

    def pull_styles(self):
        self.raw(STYLES_MARKER)

    def pull_external_styles(self):
        self.raw(EXTERNAL_STYLES_MARKER)

    def comp(self, name, *args, **kwargs):
        result = self.engine.render_result('component', name, *args, **kwargs)
        self.used.add(template_id('component', name))
        self.used.update(result.used)
        self.raw(result.html)
        return result.html

    def layout(self, name, block=None):
        """Render ``block`` into layout ``name`` and append the result."""
        skeleton = self.engine.layout_skeleton(name)
        direct = self._capture(block)
        if direct and 'main' not in self.slots:
            self.slots['main'] = direct
        # components rendered by the layout itself count as used by this context
        self.used.update(self.engine.layout_used.get(name, frozenset()))
        html = self.engine.substitute(skeleton, self.slots, self.used)
        self.raw(html)
        return html

    def styles(self, block, scoped=False):
        owner = self.owner
        if not owner:
            return
        registry = self.engine.styles
        if not registry.is_compiled(owner):
            collector = StyleCollector()
            block(collector)
            registry.compile(owner, collector, scoped)
        self.used.add(owner)


class Engine:
    """Template registry, render cache and style caches for one site."""

    def __init__(self, css_path='public/css', css_url='/css', minify=False, globals=None):
        self.templates = {}
        self.layouts = {}
        self.layout_used = {}
        self.cache = {}
        self.globals = dict(globals or {})
        self.styles = StyleRegistry(css_path=css_path, css_url=css_url, minify=minify)
        self.markdown_parser = create_markdown_parser()
        self.jinja_env = Environment(autoescape=select_autoescape(['html', 'xml'], default_for_string=True))
        self.logger = logging.getLogger('Pagewright.render')

    @property
    def css_path(self):
        return self.styles.css_path

    @css_path.setter
    def css_path(self, value):
        self.styles.css_path = value

    @property
    def css_url(self):
        return self.styles.css_url

    @css_url.setter
    def css_url(self, value):
        self.styles.css_url = value

    @property
    def minify(self):
        return self.styles.minify

    @minify.setter
    def minify(self, value):
        self.styles.minify = value

    def define(self, kind, name, template):
        """Register ``template`` under ``(kind, name)``, replacing any previous one."""
        if kind not in KINDS:
            raise ValueError(f"Unknown template kind '{kind}', expected one of {', '.join(KINDS)}")
        key = TemplateKey(kind, name)
        tid = template_id(kind, name)
        self.cache = {k: v for k, v in self.cache.items() if k[0] != tid}
        if kind == 'layout':
            self._compile_layout(name, template)
        self.templates[key] = Template(kind, name, template)
        self.logger.debug(f"Defined {tid}")
        return template

    def define_layout_file(self, path, name=None):
        """Register a Jinja2 layout file; the name defaults to the file stem."""
        if name is None:
            name = os.path.splitext(os.path.basename(path))[0]
        with open(path, 'r', encoding='utf-8') as f:
            source = f.read()
        return self.define('layout', name, source)

    def _compile_layout(self, name, template):
        context = RenderContext(self, owner=template_id('layout', name))
        if isinstance(template, str):
            jinja_template = self.jinja_env.from_string(template)

            def comp(component_name, *args, **kwargs):
                return Markup(context.comp(component_name, *args, **kwargs))

            skeleton = jinja_template.render(
                self.globals,
                pull=lambda slot='main': Markup(f'<!--SLOT:{slot}-->'),
                styles=lambda: Markup(STYLES_MARKER),
                external_styles=lambda: Markup(EXTERNAL_STYLES_MARKER),
                comp=comp,
            )
        else:
            template(context)
            skeleton = context.getvalue()
        self.layouts[name] = skeleton
        self.layout_used[name] = frozenset(context.used)

    def component(self, name):
        def decorator(fn):
            self.define('component', name, fn)
            return fn
        return decorator

    def page(self, name):
        def decorator(fn):
            self.define('page', name, fn)
            return fn
        return decorator

    def layout(self, name):
        def decorator(fn):
            self.define('layout', name, fn)
            return fn
        return decorator

    def lookup(self, kind, name):
        template = self.templates.get(TemplateKey(kind, name))
        if template is None:
            raise TemplateNotFound(template_id(kind, name))
        return template

    def layout_skeleton(self, name):
        if name not in self.layouts:
            raise TemplateNotFound(template_id('layout', name))
        return self.layouts[name]

    def substitute(self, skeleton, slots, used):
        """Fill slot markers and style markers of a compiled skeleton."""
        html = SLOT_PATTERN.sub(lambda m: slots.get(m.group(1), ''), skeleton)
        if STYLES_MARKER in html:
            html = html.replace(STYLES_MARKER, self.styles.render_consolidated_styles(used))
        if EXTERNAL_STYLES_MARKER in html:
            html = html.replace(EXTERNAL_STYLES_MARKER, self.styles.render_external_styles(used))
        return html

    def render(self, kind, name, *args, **kwargs):
        return self.render_result(kind, name, *args, **kwargs).html

    def render_result(self, kind, name, *args, **kwargs):
        template = self.lookup(kind, name)
        if kind == 'layout':
            used = self.layout_used.get(name, frozenset())
            return RenderResult(self.substitute(self.layouts[name], {}, used), used)

        cache_key = (template.template_id, fingerprint((args, kwargs)))
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        context = RenderContext(self, owner=template.template_id)
        template.renderer(context, *args, **kwargs)
        result = RenderResult(context.getvalue(), frozenset(context.used))
        self.cache[cache_key] = result
        return result

    def clear_cache(self):
        """Drop rendered results and styles; layouts are recompiled against the empty caches."""
        self.cache.clear()
        self.styles.clear()
        for key, template in list(self.templates.items()):
            if key.kind == 'layout':
                self._compile_layout(key.name, template.renderer)

    def reset(self):
        self.templates.clear()
        self.layouts.clear()
        self.layout_used.clear()
        self.clear_cache()
