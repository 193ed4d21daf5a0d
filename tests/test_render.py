"""Tests for the template registry, render cache and slot composition."""

import pytest
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pagewright.render import (Engine, RenderContext, Template, TemplateKey,
                               fingerprint)
from pagewright.errors import TemplateNotFound
from pagewright.data import DataRegistry


class TestFingerprint:
    """Test cases for structural argument fingerprints."""

    def test_mapping_order_does_not_matter(self):
        """Test that dicts with the same items fingerprint equally."""
        assert fingerprint({'a': 1, 'b': 2}) == fingerprint({'b': 2, 'a': 1})

    def test_sequence_order_matters(self):
        """Test that lists are order-sensitive."""
        assert fingerprint([1, 2]) != fingerprint([2, 1])

    def test_sets_are_order_insensitive(self):
        """Test that sets fingerprint by membership."""
        assert fingerprint({3, 1, 2}) == fingerprint({1, 2, 3})

    def test_unhashable_leaf_falls_back_to_repr(self):
        """Test that unhashable objects still produce a hashable fingerprint."""
        class Thing:
            __hash__ = None

            def __repr__(self):
                return 'Thing()'

        hash(fingerprint([Thing()]))

    def test_numbers_keep_their_type(self):
        """Test that booleans, ints and floats of equal value stay distinct."""
        assert fingerprint(True) != fingerprint(1)
        assert fingerprint(1) != fingerprint(1.0)
        assert fingerprint([0]) != fingerprint([False])
        assert fingerprint({'a': 1}) == fingerprint({'a': 1})

    def test_records_fingerprint_by_content(self):
        """Test that data records with equal content share a fingerprint."""
        registry = DataRegistry()
        registry.define('items').from_list([{'id': 1}, {'id': 1}])
        first, second = registry.query('items').all()
        assert fingerprint(first) == fingerprint(second)


class TestEngineRegistry:
    """Test cases for defining and looking up templates."""

    def test_define_and_lookup(self, engine):
        """Test that a defined component is stored as a tagged template."""
        def hello(r):
            r.raw('hi')

        engine.define('component', 'hello', hello)
        template = engine.lookup('component', 'hello')
        assert template == Template('component', 'hello', hello)
        assert template.template_id == 'component_hello'
        assert TemplateKey('component', 'hello') in engine.templates

    def test_unknown_kind_raises(self, engine):
        """Test that an unknown template kind is rejected."""
        with pytest.raises(ValueError, match='Unknown template kind'):
            engine.define('widget', 'x', lambda r: None)

    def test_undefined_template_raises(self, engine):
        """Test that rendering an undefined template names its id."""
        with pytest.raises(TemplateNotFound, match='component_missing'):
            engine.render('component', 'missing')

    def test_undefined_template_is_lookup_error(self, engine):
        """Test that TemplateNotFound can be caught as LookupError."""
        with pytest.raises(LookupError):
            engine.render('page', 'missing')

    def test_decorators_register(self, engine):
        """Test the component, page and layout decorators."""
        @engine.component('badge')
        def badge(r, label):
            r.text(label)

        @engine.page('home')
        def home(r):
            r.comp('badge', 'new')

        @engine.layout('bare')
        def bare(r):
            r.pull()

        assert engine.render('page', 'home') == 'new'
        assert 'bare' in engine.layouts

    def test_reset_clears_templates(self, engine):
        """Test that reset drops templates and layouts."""
        engine.define('component', 'a', lambda r: r.raw('a'))
        engine.define('layout', 'l', lambda r: r.pull())
        engine.reset()
        assert engine.templates == {}
        assert engine.layouts == {}


class TestRenderCache:
    """Test cases for memoized page and component rendering."""

    def test_same_arguments_render_once(self, engine):
        """Test that equal arguments are served from the cache."""
        calls = []

        def card(r, title, tags=None):
            calls.append(title)
            r.text(title)

        engine.define('component', 'card', card)
        first = engine.render('component', 'card', 'Hello', tags={'a': 1, 'b': 2})
        second = engine.render('component', 'card', 'Hello', tags={'b': 2, 'a': 1})
        assert first == second == 'Hello'
        assert calls == ['Hello']

    def test_different_arguments_render_again(self, engine):
        """Test that new arguments produce a new render."""
        calls = []
        engine.define('component', 'card', lambda r, title: calls.append(title) or r.text(title))
        engine.render('component', 'card', 'One')
        engine.render('component', 'card', 'Two')
        assert calls == ['One', 'Two']

    def test_bool_and_int_arguments_are_cached_apart(self, engine):
        """Test that rendering with 1 does not serve the result for True."""
        engine.define('component', 'badge', lambda r, value: r.text(repr(value)))
        assert engine.render('component', 'badge', 1) == '1'
        assert engine.render('component', 'badge', True) == 'True'
        assert engine.render('component', 'badge', 1.0) == '1.0'

    def test_clear_cache_re_renders(self, engine):
        """Test that clear_cache forces the renderer to run again."""
        calls = []
        engine.define('component', 'card', lambda r: calls.append(1) or r.raw('x'))
        engine.render('component', 'card')
        engine.clear_cache()
        engine.render('component', 'card')
        assert len(calls) == 2

    def test_redefine_drops_cached_results(self, engine):
        """Test that redefining a template invalidates its cached output."""
        engine.define('component', 'card', lambda r: r.raw('old'))
        assert engine.render('component', 'card') == 'old'
        engine.define('component', 'card', lambda r: r.raw('new'))
        assert engine.render('component', 'card') == 'new'

    def test_failed_render_is_not_cached(self, engine):
        """Test that an exception leaves no cache entry behind."""
        attempts = []

        def flaky(r):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError('boom')
            r.raw('ok')

        engine.define('component', 'flaky', flaky)
        with pytest.raises(RuntimeError):
            engine.render('component', 'flaky')
        assert engine.render('component', 'flaky') == 'ok'

    def test_cached_result_keeps_used_ids(self, engine):
        """Test that the used-id set of a nested component survives caching."""
        engine.define('component', 'inner', lambda r: r.raw('i'))
        engine.define('component', 'outer', lambda r: r.comp('inner'))
        engine.render('component', 'outer')

        context = RenderContext(engine)
        context.comp('outer')
        assert context.used == {'component_outer', 'component_inner'}


class TestSlots:
    """Test cases for layouts, push/pull and slot substitution."""

    def _define_layout(self, engine):
        def base(r):
            r.raw('<title>')
            r.pull('title')
            r.raw('</title><main>')
            r.pull('main')
            r.raw('</main><aside>')
            r.pull('sidebar')
            r.raw('</aside>')
        engine.define('layout', 'base', base)

    def test_push_fills_named_slots(self, engine):
        """Test that pushed content lands in its slot."""
        self._define_layout(engine)
        context = RenderContext(engine)

        def body(r):
            r.push('title', lambda r: r.text('Home'))
            r.push('main', lambda r: r.raw('<p>Body</p>'))

        html = context.layout('base', body)
        assert html == '<title>Home</title><main><p>Body</p></main><aside></aside>'
        assert context.getvalue() == html

    def test_direct_output_fills_main(self, engine):
        """Test that output written directly by the block becomes the main slot."""
        self._define_layout(engine)
        context = RenderContext(engine)
        html = context.layout('base', lambda r: r.raw('<p>Direct</p>'))
        assert '<main><p>Direct</p></main>' in html

    def test_explicit_main_push_wins(self, engine):
        """Test that an explicit main push is not replaced by direct output."""
        self._define_layout(engine)
        context = RenderContext(engine)

        def body(r):
            r.push('main', lambda r: r.raw('pushed'))
            r.raw('direct')

        html = context.layout('base', body)
        assert '<main>pushed</main>' in html
        assert 'direct' not in html

    def test_rendering_layout_empties_slots(self, engine):
        """Test that a layout rendered on its own has empty slots."""
        self._define_layout(engine)
        assert engine.render('layout', 'base') == '<title></title><main></main><aside></aside>'

    def test_missing_layout_raises(self, engine):
        """Test that an undefined layout names its id."""
        context = RenderContext(engine)
        with pytest.raises(TemplateNotFound, match='layout_nope'):
            context.layout('nope', lambda r: None)

    def test_jinja_layout_string(self, engine):
        """Test a Jinja2 layout using pull and styles markers."""
        engine.define('layout', 'page', "<title>{{ pull('title') }}</title><style>{{ styles() }}</style>{{ pull() }}")

        def card(r):
            r.styles(lambda s: s.css('.card { color: red; }'))
            r.raw('<div class="card"></div>')

        engine.define('component', 'card', card)
        context = RenderContext(engine)

        def body(r):
            r.push('title', lambda r: r.text('A & B'))
            r.comp('card')

        html = context.layout('page', body)
        assert html == '<title>A &amp; B</title><style>.card { color: red; }</style><div class="card"></div>'

    def test_jinja_layout_file(self, engine, temp_dir):
        """Test that a layout file is registered under its stem."""
        path = os.path.join(temp_dir, 'shell.html')
        with open(path, 'w', encoding='utf-8') as f:
            f.write("<body>{{ pull() }}</body>")
        engine.define_layout_file(path)
        context = RenderContext(engine)
        assert context.layout('shell', lambda r: r.raw('x')) == '<body>x</body>'

    def test_layout_components_contribute_styles(self, engine):
        """Test that components rendered by a layout add their styles."""
        def nav(r):
            r.styles(lambda s: s.css('nav { margin: 0; }'))
            r.raw('<nav></nav>')

        engine.define('component', 'nav', nav)

        def base(r):
            r.raw('<style>')
            r.pull_styles()
            r.raw('</style>')
            r.comp('nav')
            r.pull()

        engine.define('layout', 'base', base)
        context = RenderContext(engine)
        assert context.layout('base', lambda r: r.raw('x')) == '<style>nav { margin: 0; }</style><nav></nav>x'
        assert 'component_nav' in context.used


class TestContextHelpers:
    """Test cases for raw/text/tag/doctype/markdown helpers."""

    def test_text_escapes(self, engine):
        """Test that text output is HTML-escaped."""
        context = RenderContext(engine)
        context.text('<b>"x"</b>')
        assert context.getvalue() == '&lt;b&gt;&#34;x&#34;&lt;/b&gt;'

    def test_raw_passes_through(self, engine):
        """Test that raw output is not escaped."""
        context = RenderContext(engine)
        context.raw('<b>')
        context.raw(None)
        assert context.getvalue() == '<b>'

    def test_tag_with_attributes(self, engine):
        """Test tag attribute rendering and escaping."""
        context = RenderContext(engine)
        context.tag('a', 'Link', href='/a?b=1&c=2', cls='nav', data_id='7', hidden=True, title=None)
        assert context.getvalue() == '<a href="/a?b=1&amp;c=2" class="nav" data-id="7" hidden>Link</a>'

    def test_tag_with_block_and_void(self, engine):
        """Test block content and void elements."""
        context = RenderContext(engine)
        context.tag('ul', lambda r: r.tag('li', 'one'))
        context.tag('br')
        assert context.getvalue() == '<ul><li>one</li></ul><br>'

    def test_doctype(self, engine):
        """Test the doctype helper."""
        context = RenderContext(engine)
        context.doctype()
        assert context.getvalue() == '<!DOCTYPE html>'

    def test_markdown(self, engine):
        """Test that markdown is converted to HTML."""
        context = RenderContext(engine)
        context.markdown('# Title\n\nSome *text*.')
        html = context.getvalue()
        assert '<h1>Title</h1>' in html
        assert '<em>text</em>' in html

    def test_styles_without_owner_is_noop(self, engine):
        """Test that styles outside a component does nothing."""
        calls = []
        context = RenderContext(engine)
        context.styles(lambda s: calls.append(s))
        assert calls == []
        assert context.used == set()
