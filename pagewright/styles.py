"""
Component style compilation and consolidation for Pagewright.

Components and pages declare their CSS once through a ``styles`` block. The
rules are compiled into a ``CompiledStyles`` record the first time the block
runs, and every render pass turns the set of template ids it used into one
deduplicated stylesheet with a fixed breakpoint order.
"""

import logging
import os
import re
from collections import namedtuple
from types import MappingProxyType

import csscompressor

CLASS_SELECTOR = re.compile(r'^\s*\.[a-zA-Z][\w-]*')


class QueryKey(namedtuple('QueryKey', 'target bound values name')):
    """Classification of a bucketed rule: media/container, min/max/minmax."""

    __slots__ = ()

    @property
    def label(self):
        """Short string form, e.g. ``m-min-768`` or ``c-sidebar-max-400``."""
        prefix = 'm' if self.target == 'media' else 'c'
        parts = [prefix]
        if self.name:
            parts.append(self.name)
        parts.append(self.bound)
        parts.extend(str(value) for value in self.values)
        return '-'.join(parts)

    def condition(self):
        """Return the at-rule prelude for this key."""
        at_rule = '@media' if self.target == 'media' else '@container'
        if self.name:
            at_rule = f'{at_rule} {self.name}'
        if self.bound == 'min':
            return f'{at_rule} (min-width: {self.values[0]}px)'
        if self.bound == 'max':
            return f'{at_rule} (max-width: {self.values[0]}px)'
        low, high = self.values
        return f'{at_rule} (min-width: {low}px) and (max-width: {high}px)'


CompiledStyles = namedtuple('CompiledStyles', 'base_css queries')


class StyleCollector:
    """Collects the rules declared inside one ``styles`` block."""

    def __init__(self):
        self.base_css = []
        self.queries = {}

    def _add(self, key, rule):
        self.queries.setdefault(key, []).append(rule)

    def css(self, rule):
        self.base_css.append(rule)

    def media_min(self, breakpoint, rule):
        self._add(QueryKey('media', 'min', (int(breakpoint),), None), rule)

    def media_max(self, breakpoint, rule):
        self._add(QueryKey('media', 'max', (int(breakpoint),), None), rule)

    def media_minmax(self, min_breakpoint, max_breakpoint, rule):
        values = (int(min_breakpoint), int(max_breakpoint))
        self._add(QueryKey('media', 'minmax', values, None), rule)

    def container_min(self, size, rule):
        self._add(QueryKey('container', 'min', (int(size),), None), rule)

    def container_max(self, size, rule):
        self._add(QueryKey('container', 'max', (int(size),), None), rule)

    def container_minmax(self, min_size, max_size, rule):
        values = (int(min_size), int(max_size))
        self._add(QueryKey('container', 'minmax', values, None), rule)

    def named_container_min(self, name, size, rule):
        self._add(QueryKey('container', 'min', (int(size),), name), rule)

    def named_container_max(self, name, size, rule):
        self._add(QueryKey('container', 'max', (int(size),), name), rule)

    def named_container_minmax(self, name, min_size, max_size, rule):
        values = (int(min_size), int(max_size))
        self._add(QueryKey('container', 'minmax', values, name), rule)


def scope_prefix_for(owner):
    """Return the scope selector prefix for an owner id (``.component-card ``)."""
    return '.' + owner.replace('_', '-') + ' '


def scope_css(rule, scope_prefix):
    """Prefix every class selector of ``rule`` with ``scope_prefix``.

    Only the selector list (the text before the first ``{``) is rewritten and
    only selectors that start with a class are scoped. This is a heuristic,
    not a CSS parser.
    """
    if not scope_prefix:
        return rule
    head, brace, body = rule.partition('{')
    trailing = head[len(head.rstrip()):]
    scoped = []
    for selector in head.split(','):
        selector = selector.strip()
        if CLASS_SELECTOR.match(selector):
            scoped.append(f'{scope_prefix}{selector}')
        else:
            scoped.append(selector)
    return ', '.join(scoped) + trailing + brace + body


def compile_styles(owner, base_css, queries, scoped):
    """Build the frozen ``CompiledStyles`` record for one owner."""
    prefix = scope_prefix_for(owner) if scoped else ''
    processed_base = tuple(scope_css(rule, prefix) for rule in base_css)
    processed_queries = {
        key: tuple(scope_css(rule, prefix) for rule in rules)
        for key, rules in queries.items()
    }
    return CompiledStyles(processed_base, MappingProxyType(processed_queries))


def _unique(rules):
    seen = set()
    result = []
    for rule in rules:
        if rule not in seen:
            seen.add(rule)
            result.append(rule)
    return result


def cache_key_for(used_ids):
    """Order-independent cache key for a set of template ids."""
    return ','.join(sorted(set(used_ids)))


class StyleRegistry:
    """Compiled style records plus the consolidated stylesheet caches."""

    def __init__(self, css_path='public/css', css_url='/css', minify=False):
        self.css_path = css_path
        self.css_url = css_url
        self.minify = minify
        self.compiled = {}
        self.consolidated_cache = {}
        self.external_cache = {}
        self.logger = logging.getLogger('Pagewright.styles')

    def is_compiled(self, owner):
        return owner in self.compiled

    def compile(self, owner, collector, scoped=False):
        """Store the compiled record for ``owner`` unless one already exists."""
        if owner in self.compiled:
            return self.compiled[owner]
        record = compile_styles(owner, collector.base_css, collector.queries, scoped)
        self.compiled[owner] = record
        self.logger.debug(f"Compiled styles for {owner} ({len(record.base_css)} base rules)")
        return record

    def render_consolidated_styles(self, used_ids):
        """Return one stylesheet covering every compiled id in ``used_ids``."""
        if not used_ids:
            return ''
        cache_key = cache_key_for(used_ids)
        if cache_key in self.consolidated_cache:
            return self.consolidated_cache[cache_key]

        base_rules = []
        buckets = {}
        named_order = []
        for owner in sorted(set(used_ids)):
            record = self.compiled.get(owner)
            if record is None:
                continue
            base_rules.extend(record.base_css)
            for key, rules in record.queries.items():
                buckets.setdefault(key, []).extend(rules)
                if key.name and key.name not in named_order:
                    named_order.append(key.name)

        parts = _unique(base_rules)
        for target in ('media', 'container'):
            parts.extend(self._render_group(buckets, target, None))
        for name in named_order:
            parts.extend(self._render_group(buckets, 'container', name))

        css = ''.join(parts)
        self.consolidated_cache[cache_key] = css
        return css

    @staticmethod
    def _render_group(buckets, target, name):
        keys = [key for key in buckets if key.target == target and key.name == name]
        max_keys = sorted((k for k in keys if k.bound == 'max'), key=lambda k: k.values, reverse=True)
        min_keys = sorted((k for k in keys if k.bound == 'min'), key=lambda k: k.values)
        minmax_keys = sorted((k for k in keys if k.bound == 'minmax'), key=lambda k: k.values)
        parts = []
        for key in max_keys + min_keys + minmax_keys:
            parts.append(key.condition() + '{')
            parts.extend(_unique(buckets[key]))
            parts.append('}')
        return parts

    def render_external_styles(self, used_ids):
        """Write the consolidated stylesheet to disk once and return a link tag."""
        if not used_ids:
            return ''
        cache_key = cache_key_for(used_ids)
        css_filename = f'{cache_key}.css'
        full_path = os.path.join(self.css_path, css_filename)
        if cache_key not in self.external_cache:
            os.makedirs(self.css_path, exist_ok=True)
            if not os.path.exists(full_path):
                css_content = self.render_consolidated_styles(used_ids)
                if self.minify:
                    css_content = csscompressor.compress(css_content)
                try:
                    with open(full_path, 'x', encoding='utf-8') as f:
                        f.write(css_content)
                    self.logger.debug(f"Wrote external stylesheet: {full_path}")
                except FileExistsError:
                    self.logger.debug(f"External stylesheet already written: {full_path}")
            self.external_cache[cache_key] = full_path
        href = f"{self.css_url.rstrip('/')}/{css_filename}"
        return f'<link rel="stylesheet" href="{href}">'

    def clear(self):
        self.compiled.clear()
        self.consolidated_cache.clear()
        self.external_cache.clear()
