"""
Immutable in-memory collections with chainable queries.

A collection is defined once through ``DataRegistry.define`` from YAML/JSON
files, markdown files with YAML front matter, or a plain list of mappings.
Queries never mutate the collection: every ``where``/``order``/``limit``/
``offset`` call returns a new ``Query``.
"""

import glob
import json
import logging
import math
import os
from collections.abc import Mapping
from datetime import date, datetime, timezone
from numbers import Number
from types import MappingProxyType

import yaml

from .errors import (DataFileError, ImmutableMutation, InvalidArgument,
                     ItemMethodError, ScopeError)

DATA_EXTENSIONS = ('.yml', '.yaml', '.json', '.md')
OPERATORS = frozenset([
    'contains', 'starts_with', 'ends_with',
    'greater_than', 'greater_than_or_equal', 'less_than', 'less_than_or_equal',
    'from', 'to', 'in', 'not_in', 'not', 'exists', 'empty',
])

logger = logging.getLogger('Pagewright.data')


def freeze(value):
    """Recursively convert mappings to read-only proxies and lists to tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, set):
        return frozenset(value)
    return value


def parse_front_matter(content):
    """Split a markdown document into its YAML front matter and body."""
    parts = content.split('---', 2)
    if len(parts) >= 3 and not parts[0].strip():
        metadata = yaml.safe_load(parts[1]) or {}
        return metadata, parts[2].strip()
    return {}, content


def read_data_file(path):
    """Load one data file and return its mapping."""
    ext = os.path.splitext(path)[1].lower()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()
        if ext in ('.yml', '.yaml'):
            data = yaml.safe_load(content)
        elif ext == '.json':
            data = json.loads(content)
        elif ext == '.md':
            metadata, body = parse_front_matter(content)
            if not isinstance(metadata, Mapping):
                raise DataFileError(f"{path} front matter should be a mapping, but is {type(metadata).__name__}.")
            data = dict(metadata)
            data.setdefault('content', body)
        else:
            raise DataFileError(
                f"{path} has an unsupported extension '{ext}'. "
                f"Use one of: {', '.join(DATA_EXTENSIONS)}."
            )
    except yaml.YAMLError as e:
        raise DataFileError(f"{path} has a syntax error:\n{e}\n\nCheck indentation, quotes and colons.") from e
    except json.JSONDecodeError as e:
        raise DataFileError(f"{path} has a syntax error:\n{e}\n\nCheck for missing commas, quotes, or brackets.") from e
    except (IOError, OSError, PermissionError) as e:
        raise DataFileError(f"{path} couldn't be loaded:\n{e}") from e

    if not isinstance(data, Mapping):
        raise DataFileError(
            f"{path} should contain a mapping, but contains {type(data).__name__}.\n\n"
            "Make sure your data file looks like:\n"
            "title: My Post\n"
            "content: ..."
        )
    return data


class Record(Mapping):
    """Read-only view of one collection item plus its computed methods."""

    __slots__ = ('_data', '_item_methods', '_model_name', '_memo')

    def __init__(self, data, item_methods=None, model_name=None):
        object.__setattr__(self, '_data', data)
        object.__setattr__(self, '_item_methods', item_methods or {})
        object.__setattr__(self, '_model_name', model_name)
        object.__setattr__(self, '_memo', {})

    def __getitem__(self, key):
        return self._data[str(key)]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __getattr__(self, name):
        item_methods = object.__getattribute__(self, '_item_methods')
        if name in item_methods:
            return self._bind_method(name, item_methods[name])
        data = object.__getattribute__(self, '_data')
        if name in data:
            return data[name]
        raise AttributeError(f"'{self._model_name}' record has no field or method '{name}'")

    def _bind_method(self, name, fn):
        def method(*args):
            try:
                memo_key = (name, args)
                hash(memo_key)
            except TypeError:
                memo_key = (name, repr(args))
            if memo_key not in self._memo:
                try:
                    self._memo[memo_key] = fn(self, *args)
                except Exception as e:
                    raise ItemMethodError(name, self._model_name, e) from e
            return self._memo[memo_key]
        method.__name__ = name
        return method

    def __setattr__(self, name, value):
        raise ImmutableMutation(f"Cannot set '{name}': {self._model_name} records are read-only")

    def __delattr__(self, name):
        raise ImmutableMutation(f"Cannot delete '{name}': {self._model_name} records are read-only")

    def __setitem__(self, key, value):
        raise ImmutableMutation(f"Cannot set '{key}': {self._model_name} records are read-only")

    def __delitem__(self, key):
        raise ImmutableMutation(f"Cannot delete '{key}': {self._model_name} records are read-only")

    def to_dict(self):
        return dict(self._data)

    def __repr__(self):
        return f'Record({self._model_name}, {dict(self._data)!r})'


class Page:
    """One page of a paginated query result."""

    def __init__(self, items, current_page, total_pages, total_items):
        self.items = list(items)
        self.current_page = current_page
        self.total_pages = total_pages
        self.total_items = total_items
        self.prev_page = current_page - 1 if current_page > 1 else None
        self.next_page = current_page + 1 if current_page < total_pages else None
        self.is_first_page = current_page == 1
        self.is_last_page = current_page == total_pages

    @property
    def posts(self):
        return self.items

    def __iter__(self):
        return iter(self.items)

    def __len__(self):
        return len(self.items)

    def to_dict(self):
        return {
            'items': self.items,
            'current_page': self.current_page,
            'total_pages': self.total_pages,
            'total_items': self.total_items,
            'prev_page': self.prev_page,
            'next_page': self.next_page,
            'is_first_page': self.is_first_page,
            'is_last_page': self.is_last_page,
        }

    def __repr__(self):
        return f'Page({self.current_page}/{self.total_pages}, {len(self.items)} items)'


def paginate_items(items, per_page):
    """Split an already materialized list into ``Page`` objects."""
    if isinstance(per_page, bool) or not isinstance(per_page, int) or per_page <= 0:
        raise InvalidArgument(f"per_page must be a positive integer, got {per_page!r}")
    items = list(items)
    total_items = len(items)
    if total_items == 0:
        return [Page([], 1, 1, 0)]
    total_pages = math.ceil(total_items / per_page)
    return [
        Page(items[(n - 1) * per_page:n * per_page], n, total_pages, total_items)
        for n in range(1, total_pages + 1)
    ]


def _is_empty(value):
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


def _as_text(value):
    return '' if value is None else str(value)


def _as_list(value):
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _apply_operator(op, field_value, expected):
    if op == 'contains':
        if isinstance(field_value, (list, tuple)):
            return expected in field_value
        return _as_text(expected) in _as_text(field_value)
    if op == 'starts_with':
        return _as_text(field_value).startswith(_as_text(expected))
    if op == 'ends_with':
        return _as_text(field_value).endswith(_as_text(expected))
    if op == 'in':
        return field_value in _as_list(expected)
    if op == 'not_in':
        return field_value not in _as_list(expected)
    if op == 'not':
        return field_value != expected
    if op == 'exists':
        return (field_value is not None) == bool(expected)
    if op == 'empty':
        return _is_empty(field_value) == bool(expected)
    if field_value is None:
        return False
    if op == 'greater_than':
        return field_value > expected
    if op == 'greater_than_or_equal' or op == 'from':
        return field_value >= expected
    if op == 'less_than':
        return field_value < expected
    if op == 'less_than_or_equal' or op == 'to':
        return field_value <= expected
    raise InvalidArgument(f"Unknown query operator '{op}'")


def evaluate_condition(field_value, expected):
    """Return True when ``field_value`` satisfies the ``expected`` matcher."""
    try:
        if isinstance(expected, Mapping) and expected and set(expected) <= OPERATORS:
            return all(_apply_operator(op, field_value, value) for op, value in expected.items())
        if isinstance(expected, range):
            return field_value in expected
        if isinstance(expected, (list, tuple)):
            if isinstance(field_value, (list, tuple)):
                return list(field_value) == list(expected)
            return field_value in expected
        return field_value == expected
    except TypeError:
        return False


def _sort_key(value):
    if isinstance(value, Number) and not isinstance(value, bool):
        return (0, value)
    if isinstance(value, str):
        return (1, value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return (2, value)
    if isinstance(value, date):
        return (2, datetime(value.year, value.month, value.day))
    return (3, str(value))


class Collection:
    """A named set of frozen records with scopes and computed item methods."""

    def __init__(self, name, data_path='data'):
        self.name = name
        self.data_path = data_path
        self.records = ()
        self.scopes = {}
        self.item_methods = {}

    def load(self, pattern):
        """Load every file matching ``pattern`` under the data path."""
        file_pattern = os.path.join(self.data_path, pattern)
        files = sorted(glob.glob(file_pattern, recursive=True))
        if not files:
            raise DataFileError(f"No files found matching pattern: {file_pattern}")
        self.records = tuple(freeze(read_data_file(path)) for path in files)
        logger.debug(f"Loaded {len(self.records)} {self.name} records from {file_pattern}")
        return self

    def from_list(self, items):
        if not isinstance(items, (list, tuple)):
            raise DataFileError(
                f"from_list() expects a list of mappings, but got {type(items).__name__}.\n\n"
                "Example:\nfrom_list([\n  {'title': 'First Post', 'content': '...'},\n])"
            )
        frozen = []
        for index, item in enumerate(items, start=1):
            if not isinstance(item, Mapping):
                raise DataFileError(
                    f"from_list() item {index} should be a mapping, but got {type(item).__name__}.\n\n"
                    "Each item should look like: {'title': 'Post Title', 'content': 'Post content'}"
                )
            frozen.append(freeze(item))
        self.records = tuple(frozen)
        return self

    def scope(self, **scopes):
        for name, fn in scopes.items():
            if not callable(fn):
                raise TypeError(f"Scope {name} must be callable")
            self.scopes[name] = fn
        return self

    def item(self, **methods):
        for name, fn in methods.items():
            if not callable(fn):
                raise TypeError(f"Item method {name} must be callable")
            self.item_methods[name] = fn
        return self

    def query(self):
        return Query(self)


class Query:
    """Immutable, chainable query over one collection."""

    def __init__(self, collection, conditions=(), order_field=None, order_desc=False,
                 limit_count=None, offset_count=None):
        self._collection = collection
        self._conditions = tuple(conditions)
        self._order_field = order_field
        self._order_desc = order_desc
        self._limit_count = limit_count
        self._offset_count = offset_count

    @property
    def model_name(self):
        return self._collection.name

    def _copy(self, **changes):
        state = {
            'conditions': self._conditions,
            'order_field': self._order_field,
            'order_desc': self._order_desc,
            'limit_count': self._limit_count,
            'offset_count': self._offset_count,
        }
        state.update(changes)
        return Query(self._collection, **state)

    def where(self, conditions=None, **kwargs):
        group = dict(conditions or {})
        group.update(kwargs)
        return self._copy(conditions=self._conditions + (MappingProxyType(group),))

    def order(self, field, desc=False):
        return self._copy(order_field=str(field), order_desc=bool(desc))

    def limit(self, count):
        if count < 0:
            raise InvalidArgument(f"limit must be non-negative, got {count}")
        return self._copy(limit_count=count)

    def offset(self, count):
        if count < 0:
            raise InvalidArgument(f"offset must be non-negative, got {count}")
        return self._copy(offset_count=count)

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        scopes = self._collection.scopes
        if name not in scopes:
            raise AttributeError(f"No scope '{name}' defined for {self._collection.name}")
        scope_fn = scopes[name]

        def scoped(*args, **kwargs):
            try:
                return scope_fn(self, *args, **kwargs)
            except ScopeError:
                raise
            except Exception as e:
                raise ScopeError(name, self._collection.name, e) from e
        return scoped

    def _wrap(self, data):
        return Record(data, self._collection.item_methods, self._collection.name)

    def _effective(self):
        results = list(self._collection.records)
        for group in self._conditions:
            results = [
                item for item in results
                if all(evaluate_condition(item.get(field), expected) for field, expected in group.items())
            ]

        if self._order_field:
            field = self._order_field
            present = [item for item in results if item.get(field) is not None]
            missing = [item for item in results if item.get(field) is None]
            present.sort(key=lambda item: _sort_key(item[field]))
            if self._order_desc:
                present.reverse()
            results = present + missing

        if self._offset_count:
            results = results[self._offset_count:]
        if self._limit_count is not None:
            results = results[:self._limit_count]
        return results

    def all(self):
        return [self._wrap(item) for item in self._effective()]

    def first(self):
        results = self._effective()
        return self._wrap(results[0]) if results else None

    def last(self):
        results = self._effective()
        return self._wrap(results[-1]) if results else None

    def count(self):
        return len(self._effective())

    def find_by(self, conditions=None, **kwargs):
        return self.where(conditions, **kwargs).first()

    def __iter__(self):
        return iter(self.all())

    def __len__(self):
        return self.count()

    def paginate(self, per_page):
        """Split the effective result into ``Page`` objects of ``per_page`` items."""
        return paginate_items(self.all(), per_page)

    def __repr__(self):
        return f'Query({self._collection.name}, {len(self._conditions)} conditions)'


class DataRegistry:
    """Named collections available to pages through ``data(name)``."""

    def __init__(self, data_path='data'):
        self.data_path = data_path
        self.collections = {}

    def configure(self, data_path='data'):
        self.data_path = data_path

    def define(self, model_name, block=None):
        collection = Collection(str(model_name), self.data_path)
        if block is not None:
            block(collection)
        self.collections[collection.name] = collection
        return collection

    def query(self, model_name):
        collection = self.collections.get(str(model_name))
        if collection is None:
            raise KeyError(
                f"Collection {model_name} not defined. Use define('{model_name}') to define it."
            )
        return collection.query()

    def reload(self):
        self.collections = {}

    def defined_models(self):
        return list(self.collections)
