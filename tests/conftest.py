"""Test configuration and fixtures for Pagewright tests."""

import pytest
import tempfile
import shutil
import os
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pagewright.render import Engine
from pagewright.data import DataRegistry

CARD_COMPONENT = """
@component('card')
def card(r, title):
    r.styles(lambda s: (
        s.css('.card { padding: 1rem; }'),
        s.media_min(768, '.card { padding: 2rem; }'),
    ), scoped=True)
    r.raw('<div class="component-card"><div class="card">')
    r.text(title)
    r.raw('</div></div>')
"""

FOOTER_COMPONENT = """
@component('footer')
def footer(r):
    r.styles(lambda s: (
        s.css('footer { color: gray; }'),
        s.media_min(768, 'footer { color: black; }'),
    ))
    r.raw('<footer>Footer</footer>')
"""

MAIN_LAYOUT = """
@layout('main')
def main(r):
    r.doctype()
    r.raw('<html><head><title>')
    r.pull('title')
    r.raw('</title><style>')
    r.pull_styles()
    r.raw('</style></head><body>')
    r.pull('main')
    r.raw('</body></html>')
"""

PLAIN_LAYOUT = "<main>{{ pull() }}</main><style>{{ styles() }}</style>"

INDEX_PAGE = """
def body(r):
    r.push('title', lambda r: r.text('Home'))
    r.comp('card', 'Welcome')

layout('main', body)
"""

NOT_FOUND_PAGE = """
layout('main', lambda r: r.raw('<h1>Not Found</h1>'))
"""

POSTS_PAGE = """
def listing(r, page):
    for post in page.items:
        r.tag('h2', post['title'])
    if page.next_page:
        r.raw(f'<a href="page-{page.next_page}/">Next</a>')

def body(r):
    r.push('title', lambda r: r.text('Posts'))
    paginate(data('posts').order('published_at', desc=True), 2, listing)

layout('main', body)
"""

ABOUT_PAGE = """
layout('plain', lambda r: r.comp('footer'))
"""

POSTS_DATA = """
posts = define('posts')
posts.load('posts/*.yml')
posts.scope(featured=lambda q: q.where(featured=True))
posts.item(slug_url=lambda post: f"/posts/{post['slug']}/")
"""

APP_CSS = b'body { margin: 0; }\n'


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def mock_site_dir(temp_dir):
    """Create a two-domain project: content, data and public directories."""
    root = Path(temp_dir)
    default = root / 'content' / 'default'
    blog = root / 'content' / 'blog'
    for directory in (default / '_components', default / '_layouts', default / 'assets',
                      blog / '_layouts', root / 'data' / 'posts', root / 'public'):
        directory.mkdir(parents=True)

    (default / '_components' / 'card.py').write_text(CARD_COMPONENT)
    (default / '_components' / 'footer.py').write_text(FOOTER_COMPONENT)
    (default / '_layouts' / 'main.py').write_text(MAIN_LAYOUT)
    (blog / '_layouts' / 'plain.html').write_text(PLAIN_LAYOUT)
    (default / 'index.py').write_text(INDEX_PAGE)
    (default / '404.py').write_text(NOT_FOUND_PAGE)
    (default / 'assets' / 'app.css').write_bytes(APP_CSS)
    (blog / 'posts.py').write_text(POSTS_PAGE)
    (blog / 'about.py').write_text(ABOUT_PAGE)

    (root / 'data' / 'posts_data.py').write_text(POSTS_DATA)
    (root / 'data' / 'posts' / 'first.yml').write_text(
        "title: First Post\nslug: first\nfeatured: true\npublished_at: 2024-01-01\n")
    (root / 'data' / 'posts' / 'second.yml').write_text(
        "title: Second Post\nslug: second\nfeatured: false\npublished_at: 2024-02-01\n")
    (root / 'data' / 'posts' / 'third.yml').write_text(
        "title: Third Post\nslug: third\nfeatured: true\npublished_at: 2024-03-01\n")

    (root / 'public' / 'robots.txt').write_text("User-agent: *\n")
    return str(root)


@pytest.fixture
def mock_content_dir(mock_site_dir):
    return os.path.join(mock_site_dir, 'content')


@pytest.fixture
def mock_output_dir(temp_dir):
    """Create a mock output directory."""
    output_dir = Path(temp_dir) / 'dist'
    output_dir.mkdir()
    return str(output_dir)


@pytest.fixture
def engine(temp_dir):
    """An engine whose external stylesheets land in the temp directory."""
    return Engine(css_path=os.path.join(temp_dir, 'css'), css_url='/css')


@pytest.fixture
def seed_posts():
    """Three posts; two featured, the newest one not featured."""
    return [
        {'title': 'Alpha', 'featured': True, 'published_at': date(2024, 1, 10), 'views': 10, 'tags': ['python', 'web']},
        {'title': 'Beta', 'featured': False, 'published_at': date(2024, 3, 5), 'views': 30, 'tags': ['web']},
        {'title': 'Gamma', 'featured': True, 'published_at': date(2024, 2, 20), 'views': None, 'tags': []},
    ]


@pytest.fixture
def registry(seed_posts):
    """A data registry with a ``posts`` collection built from ``seed_posts``."""
    data = DataRegistry()
    posts = data.define('posts')
    posts.from_list(seed_posts)
    posts.scope(
        featured=lambda q: q.where(featured=True),
        recent=lambda q, n=2: q.order('published_at', desc=True).limit(n),
    )
    posts.item(shout=lambda post: post['title'].upper())
    return data
