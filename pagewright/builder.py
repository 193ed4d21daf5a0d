import glob
import json
import logging
import os
import re
import shutil
from datetime import datetime
from hashlib import md5

import csscompressor
import rjsmin

from .data import DataRegistry, Query, paginate_items
from .errors import DataFileError
from .render import Engine, RenderContext

EXCLUDED_SEGMENTS = ('_components', '_layouts', 'assets')
ERROR_PAGE_PATTERN = re.compile(r'^\d{3}$')
LAYOUT_EXTENSIONS = ('.py', '.html', '.jinja')
DEPENDENCIES_FILE = '.ssg_dependencies.json'
MANIFEST_FILE = '.asset_manifest.json'


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages to be shown in the console."""
    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        allowed_messages = [
            "Site build completed in",
            "Total pages generated:",
            "Building error pages",
            "Processing assets",
            "Incremental build"
        ]
        return any(msg in record.getMessage() for msg in allowed_messages)


def hashed_filename(relative_path, content):
    """Return ``base-<md5[:8]>.ext`` for an asset's relative path and raw bytes."""
    digest = md5(content).hexdigest()[:8]
    base, ext = os.path.splitext(relative_path)
    return f'{base}-{digest}{ext}'


def _is_within(path, directory):
    path = os.path.abspath(path)
    directory = os.path.abspath(directory)
    try:
        return os.path.commonpath([path, directory]) == directory
    except ValueError:
        return False


class PageContext(RenderContext):
    """Render context a page source file executes against.

    Besides the render helpers it records the components, layouts and data
    models the page touches, and drives pagination expansion.
    """

    def __init__(self, builder, page, current_page=None, capturing=False, extra=None):
        super().__init__(builder.engine, owner=builder.page_owner_id(page))
        self.builder = builder
        self.page = page
        self.current_page = current_page
        self.capturing = capturing
        self.captured_paginations = []
        self.used_components = []
        self.used_layouts = []
        self.used_data = []
        self.params = {}
        self.session = {}
        self.extra = extra or {}

    @staticmethod
    def _remember(items, name):
        if name not in items:
            items.append(name)

    def comp(self, name, *args, **kwargs):
        self._remember(self.used_components, name)
        return super().comp(name, *args, **kwargs)

    def layout(self, name, block=None):
        self._remember(self.used_layouts, name)
        return super().layout(name, block)

    def data(self, model_name):
        self._remember(self.used_data, str(model_name))
        return self.builder.data.query(model_name)

    def paginate(self, collection, per_page, block=None):
        """Capture the pages of ``collection`` or emit ``block`` for the current page."""
        if self.capturing:
            if isinstance(collection, Query):
                pages = collection.paginate(per_page)
            else:
                pages = paginate_items(collection, per_page)
            self.captured_paginations.append(pages)
            return ''
        if self.current_page is not None and block is not None:
            html = self._capture(block, self.current_page)
            self.raw(html)
            return html
        return ''

    def asset_path(self, name):
        return self.builder.asset_path(name, self.page['domain'])

    def asset_url(self, name):
        path = self.asset_path(name)
        site_url = self.builder.site_url
        return f"{site_url.rstrip('/')}{path}" if site_url else path

    def dependencies(self):
        components = list(self.used_components)
        for template_id in sorted(self.used):
            if template_id.startswith('component_'):
                self._remember(components, template_id[len('component_'):])
        return {
            'components': components,
            'layouts': list(self.used_layouts),
            'data': list(self.used_data),
        }

    def namespace(self):
        namespace = {
            '__name__': '__pagewright_page__',
            '__file__': self.page['file_path'],
            'r': self,
            'layout': self.layout,
            'comp': self.comp,
            'push': self.push,
            'pull': self.pull,
            'raw': self.raw,
            'text': self.text,
            'tag': self.tag,
            'doctype': self.doctype,
            'markdown': self.markdown,
            'styles': self.styles,
            'data': self.data,
            'paginate': self.paginate,
            'asset_path': self.asset_path,
            'asset_url': self.asset_url,
            'params': self.params,
            'session': self.session,
            'current_page': self.current_page,
            'page': dict(self.page),
            'site': self.builder.site,
        }
        namespace.update(self.extra)
        return namespace


class SiteBuilder:
    def __init__(self, content_dir='content', output_dir='dist', data_dir=None, site_url=None,
                 css_path=None, css_url='/css', minify=False, global_asset_dirs=None,
                 default_domain='default', log_dir=None):
        self.content_dir = content_dir
        self.output_dir = output_dir
        self.project_root = os.path.dirname(os.path.abspath(content_dir))
        self.data_dir = data_dir or os.path.join(self.project_root, 'data')
        self.site_url = site_url
        self.minify = minify
        self.global_asset_dirs = ['public', 'static'] if global_asset_dirs is None else list(global_asset_dirs)
        self.default_domain = default_domain
        self.log_dir = log_dir
        self.site = {'url': site_url, 'default_domain': default_domain}

        self.engine = Engine(
            css_path=css_path or os.path.join(output_dir, 'css'),
            css_url=css_url,
            minify=minify,
            globals={'site': self.site, 'site_url': site_url},
        )
        self.data = DataRegistry(self.data_dir)

        self.dependencies = {'templates': {}, 'data': {}}
        self.asset_manifest = {}
        self.persisted_manifest = None
        self.error_pages = {}
        self._data_loaded = False
        self._templates_loaded = False

        self.pages_built = 0
        self.pages_skipped = 0
        self.assets_processed = 0

        self.setup_logging()

    def setup_logging(self):
        """Set up logging configuration."""
        self.logger = logging.getLogger('Pagewright')
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            # Console handler with filter
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.addFilter(InfoFilter())
            console_handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(console_handler)

        if self.log_dir:
            self.logger.setLevel(logging.DEBUG)
            os.makedirs(self.log_dir, exist_ok=True)
            log_filename = datetime.now().strftime('pagewright_%Y-%m-%d_%H-%M-%S.log')
            log_filepath = os.path.join(self.log_dir, log_filename)
            if not any(getattr(h, 'baseFilename', None) == os.path.abspath(log_filepath)
                       for h in self.logger.handlers):
                file_handler = logging.FileHandler(log_filepath)
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
                self.logger.addHandler(file_handler)

    # Paths

    def file_path_to_url(self, relative_path):
        """Map ``blog/post.py`` to ``/blog/post/`` and ``index.py`` to ``/``."""
        path = relative_path.replace(os.sep, '/')
        if path.endswith('.py'):
            path = path[:-3]
        if path == 'index':
            return '/'
        if path.endswith('/index'):
            path = path[:-len('/index')]
        path = path.strip('/')
        return f'/{path}/' if path else '/'

    def url_to_output_path(self, domain, url_path):
        """Return the output file for ``url_path`` relative to the output root."""
        clean = re.sub(r'[^a-zA-Z0-9/\-_]', '', url_path).strip('/')
        parts = [] if domain == self.default_domain else [domain]
        if clean:
            parts.append(clean)
        parts.append('index.html')
        return '/'.join(parts)

    @staticmethod
    def paginated_output_path(output_path, page_number):
        if page_number == 1:
            return output_path
        return output_path[:-len('index.html')] + f'page-{page_number}/index.html'

    def page_owner_id(self, page):
        relative = os.path.relpath(page['file_path'], self.content_dir)
        stem = os.path.splitext(relative)[0]
        return 'page_' + re.sub(r'[^A-Za-z0-9]+', '_', stem).strip('_')

    def _page_key(self, path):
        return os.path.abspath(path)

    def domain_dirs(self):
        if not os.path.isdir(self.content_dir):
            return []
        return sorted(
            entry for entry in os.listdir(self.content_dir)
            if os.path.isdir(os.path.join(self.content_dir, entry)) and not entry.startswith(('.', '_'))
        )

    # Loading

    def _exec_file(self, path, namespace):
        with open(path, 'r', encoding='utf-8') as f:
            source = f.read()
        namespace = dict(namespace, __file__=path, __name__='__pagewright_definition__')
        exec(compile(source, path, 'exec'), namespace)

    def load_data_definitions(self):
        """Execute every ``*_data.py`` file under the data directory."""
        self.data.reload()
        self.data.configure(self.data_dir)
        self._data_loaded = True
        if not os.path.isdir(self.data_dir):
            return
        pattern = os.path.join(self.data_dir, '**', '*_data.py')
        for path in sorted(glob.glob(pattern, recursive=True)):
            try:
                self._exec_file(path, {'define': self.data.define, 'data_path': self.data_dir})
                self.logger.debug(f"Loaded data definitions from {path}")
            except DataFileError as e:
                self.logger.error(f"Failed to load data definitions from {path}: {e}")
                raise

    def load_templates(self):
        """Load components first, then layouts, from every domain."""
        namespace = {
            'define': self.engine.define,
            'component': self.engine.component,
            'layout': self.engine.layout,
            'page': self.engine.page,
            'data': self.data.query,
        }
        self._templates_loaded = True
        component_files = sorted(glob.glob(os.path.join(self.content_dir, '*', '_components', '*.py')))
        for path in component_files:
            self._exec_file(path, namespace)
            self.logger.debug(f"Loaded component file {path}")

        layout_files = sorted(
            path for path in glob.glob(os.path.join(self.content_dir, '*', '_layouts', '*'))
            if path.endswith(LAYOUT_EXTENSIONS)
        )
        for path in layout_files:
            if path.endswith('.py'):
                self._exec_file(path, namespace)
            else:
                self.engine.define_layout_file(path)
            self.logger.debug(f"Loaded layout file {path}")

    # Discovery

    def analyze_page_file(self, path):
        """Describe one page source file, or return None when it is not a page."""
        relative = os.path.relpath(path, self.content_dir)
        parts = relative.split(os.sep)
        if len(parts) < 2 or parts[0] == '..':
            return None
        if any(part in EXCLUDED_SEGMENTS for part in parts[:-1]):
            return None
        domain = parts[0]
        page_relative = '/'.join(parts[1:])
        base = os.path.splitext(parts[-1])[0]
        url_path = self.file_path_to_url(page_relative)
        return {
            'file_path': path,
            'domain': domain,
            'url_path': url_path,
            'output_path': self.url_to_output_path(domain, url_path),
            'error_code': base if ERROR_PAGE_PATTERN.match(base) else None,
        }

    def discover_pages(self):
        """Return the regular pages and collect error pages by (domain, code)."""
        pages = []
        self.error_pages = {}
        pattern = os.path.join(self.content_dir, '**', '*.py')
        for path in sorted(glob.glob(pattern, recursive=True)):
            info = self.analyze_page_file(path)
            if info is None:
                continue
            if info['error_code']:
                self.error_pages.setdefault((info['domain'], info['error_code']), info)
                continue
            pages.append(info)
        self.logger.debug(f"Discovered {len(pages)} pages and {len(self.error_pages)} error pages")
        return pages

    # Rendering

    def _execute_page(self, page, source, current_page=None, capturing=False, extra=None):
        context = PageContext(self, page, current_page=current_page, capturing=capturing, extra=extra)
        exec(compile(source, page['file_path'], 'exec'), context.namespace())
        return context

    def _render_page_outputs(self, page, source):
        """Return ``(outputs, contexts)`` where outputs are ``(path, html)`` pairs."""
        if 'paginate(' not in source:
            context = self._execute_page(page, source)
            return [(page['output_path'], context.getvalue())], [context]

        capture = self._execute_page(page, source, capturing=True)
        if not capture.captured_paginations:
            return [(page['output_path'], capture.getvalue())], [capture]
        if len(capture.captured_paginations) > 1:
            self.logger.warning(f"{page['file_path']} paginates more than once; only the first call is expanded")

        outputs = []
        contexts = [capture]
        for page_obj in capture.captured_paginations[0]:
            context = self._execute_page(page, source, current_page=page_obj)
            contexts.append(context)
            output_path = self.paginated_output_path(page['output_path'], page_obj.current_page)
            outputs.append((output_path, context.getvalue()))
        return outputs, contexts

    def _write_output(self, relative_path, html):
        full_path = os.path.join(self.output_dir, relative_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, 'w', encoding='utf-8') as f:
            f.write(html)

    def build_page(self, page):
        """Render one page (and its pagination pages) and return the written paths."""
        try:
            with open(page['file_path'], 'r', encoding='utf-8') as f:
                source = f.read()
            outputs, contexts = self._render_page_outputs(page, source)
            for output_path, html in outputs:
                self._write_output(output_path, html)
        except Exception as e:
            self.logger.error(f"Failed to build page {page['file_path']}: {e}")
            self.logger.debug("Page build traceback", exc_info=True)
            self.pages_skipped += 1
            return []

        self.record_dependencies(page['file_path'], contexts)
        self.pages_built += len(outputs)
        for output_path, _ in outputs:
            self.logger.debug(f"Built {output_path}")
        return [output_path for output_path, _ in outputs]

    def error_page_output_path(self, domain, code):
        if domain == self.default_domain:
            return f'{code}.html'
        return f'{domain}/{code}.html'

    def build_error_page(self, page):
        """Render one error page and return its output path, or None on failure."""
        domain, code = page['domain'], page['error_code']
        try:
            with open(page['file_path'], 'r', encoding='utf-8') as f:
                source = f.read()
            context = self._execute_page(page, source)
            output_path = self.error_page_output_path(domain, code)
            self._write_output(output_path, context.getvalue())
        except Exception as e:
            self.logger.error(f"Failed to build error page {page['file_path']}: {e}")
            self.pages_skipped += 1
            return None
        self.record_dependencies(page['file_path'], [context])
        return output_path

    def build_error_pages(self):
        """Render every discovered error page to ``<domain>/<code>.html``."""
        self.logger.info("Building error pages")
        built = []
        for _, page in sorted(self.error_pages.items()):
            output_path = self.build_error_page(page)
            if output_path is not None:
                built.append(output_path)
        return built

    def render_error_page(self, domain, code, **context):
        """Render an error page on demand, falling back to the default domain."""
        if not self.error_pages:
            self.discover_pages()
        code = str(code)
        page = self.error_pages.get((domain, code)) or self.error_pages.get((self.default_domain, code))
        if page is None:
            return None
        try:
            with open(page['file_path'], 'r', encoding='utf-8') as f:
                source = f.read()
            return self._execute_page(page, source, extra=context).getvalue()
        except Exception as e:
            self.logger.error(f"Failed to render error page {page['file_path']}: {e}")
            return None

    # Dependency graph

    def record_dependencies(self, page_path, contexts):
        """Replace the dependency entry of ``page_path`` with what ``contexts`` used."""
        page_key = self._page_key(page_path)
        entry = {'components': [], 'layouts': [], 'data': []}
        for context in contexts:
            for kind, names in context.dependencies().items():
                for name in names:
                    if name not in entry[kind]:
                        entry[kind].append(name)
        self.dependencies['templates'][page_key] = entry

        for pages in self.dependencies['data'].values():
            if page_key in pages:
                pages.remove(page_key)
        for model in entry['data']:
            self.dependencies['data'].setdefault(model, []).append(page_key)

    def forget_page(self, page_path):
        page_key = self._page_key(page_path)
        self.dependencies['templates'].pop(page_key, None)
        for pages in self.dependencies['data'].values():
            if page_key in pages:
                pages.remove(page_key)

    def pages_depending_on(self, kind, name):
        return sorted(
            page for page, entry in self.dependencies['templates'].items()
            if name in entry.get(kind, [])
        )

    def _read_json(self, filename):
        path = os.path.join(self.output_dir, filename)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (IOError, OSError, ValueError) as e:
            self.logger.warning(f"Ignoring unreadable {path}: {e}")
            return None

    def _write_json(self, filename, payload):
        path = os.path.join(self.output_dir, filename)
        os.makedirs(self.output_dir, exist_ok=True)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, sort_keys=True)
        except (IOError, OSError, PermissionError) as e:
            self.logger.error(f"Failed to write {path}: {e}")
            raise

    def load_dependencies(self):
        loaded = self._read_json(DEPENDENCIES_FILE)
        if isinstance(loaded, dict):
            self.dependencies = {
                'templates': dict(loaded.get('templates', {})),
                'data': {model: list(pages) for model, pages in loaded.get('data', {}).items()},
            }
        return self.dependencies

    def save_dependencies(self):
        self._write_json(DEPENDENCIES_FILE, self.dependencies)

    def load_asset_manifest(self):
        loaded = self._read_json(MANIFEST_FILE)
        self.persisted_manifest = loaded if isinstance(loaded, dict) else {}
        return self.persisted_manifest

    def save_asset_manifest(self):
        self._write_json(MANIFEST_FILE, self.asset_manifest)

    # Assets

    def asset_path(self, name, domain=None):
        """Public URL of an asset: in-memory manifest, persisted manifest, then ``/assets/<name>``."""
        key = f'{domain or self.default_domain}/{name}'
        if key in self.asset_manifest:
            return self.asset_manifest[key]
        if self.persisted_manifest is None:
            self.load_asset_manifest()
        if key in self.persisted_manifest:
            return self.persisted_manifest[key]
        return f'/assets/{name}'

    def copy_global_assets(self):
        """Copy ``public/`` and ``static/`` verbatim into the output root."""
        for directory in self.global_asset_dirs:
            source = directory if os.path.isabs(directory) else os.path.join(self.project_root, directory)
            if not os.path.isdir(source):
                continue
            for root, _, files in os.walk(source):
                for filename in files:
                    src_path = os.path.join(root, filename)
                    dest_path = os.path.join(self.output_dir, os.path.relpath(src_path, source))
                    os.makedirs(os.path.dirname(dest_path), exist_ok=True)
                    shutil.copy2(src_path, dest_path)
                    self.assets_processed += 1
            self.logger.debug(f"Copied global assets from {source}")

    def minify_asset(self, filename, content):
        """Minify CSS and JS bytes; other content is returned unchanged."""
        if filename.endswith('.css'):
            return csscompressor.compress(content.decode('utf-8')).encode('utf-8')
        if filename.endswith('.js'):
            return rjsmin.jsmin(content.decode('utf-8')).encode('utf-8')
        return content

    def process_domain_assets(self):
        """Fingerprint every file under ``content/<domain>/assets``."""
        for domain in self.domain_dirs():
            assets_dir = os.path.join(self.content_dir, domain, 'assets')
            if not os.path.isdir(assets_dir):
                continue
            prefix = 'assets' if domain == self.default_domain else f'{domain}/assets'
            for root, dirs, files in os.walk(assets_dir):
                dirs.sort()
                for filename in sorted(files):
                    src_path = os.path.join(root, filename)
                    relative = os.path.relpath(src_path, assets_dir).replace(os.sep, '/')
                    with open(src_path, 'rb') as f:
                        content = f.read()
                    hashed = hashed_filename(relative, content)
                    if self.minify:
                        try:
                            content = self.minify_asset(filename, content)
                        except UnicodeDecodeError as e:
                            self.logger.error(f"Failed to minify asset {src_path}: {e}")
                    dest_path = os.path.join(self.output_dir, prefix, hashed)
                    os.makedirs(os.path.dirname(dest_path), exist_ok=True)
                    with open(dest_path, 'wb') as f:
                        f.write(content)
                    self.asset_manifest[f'{domain}/{relative}'] = f'/{prefix}/{hashed}'
                    self.assets_processed += 1
                    self.logger.debug(f"Fingerprinted asset {src_path} -> /{prefix}/{hashed}")

    def process_assets(self):
        self.logger.info("Processing assets")
        self.asset_manifest = {}
        self.copy_global_assets()
        self.process_domain_assets()
        return self.asset_manifest

    # Builds

    def setup_output_dir(self, force=False):
        if force and os.path.exists(self.output_dir):
            shutil.rmtree(self.output_dir)
        os.makedirs(self.output_dir, exist_ok=True)

    def build(self, force=False):
        """Run a full build and return the written page paths."""
        self.logger.info("Starting site build...")
        self.pages_built = 0
        self.pages_skipped = 0
        self.assets_processed = 0
        self.setup_output_dir(force)
        self.engine.clear_cache()
        self.dependencies = {'templates': {}, 'data': {}}

        self.load_data_definitions()
        self.load_templates()
        pages = self.discover_pages()
        self.process_assets()

        built = []
        for page in pages:
            built.extend(self.build_page(page))
        self.build_error_pages()

        self.save_dependencies()
        self.save_asset_manifest()
        self.logger.info(f"Total pages generated: {len(built)}")
        return built

    def classify_change(self, path):
        """Return the kind of a changed file: component, layout, data, asset, page or None."""
        parts = os.path.abspath(path).split(os.sep)
        if '_components' in parts:
            return 'component'
        if '_layouts' in parts:
            return 'layout'
        if _is_within(path, self.data_dir):
            return 'data'
        if _is_within(path, self.content_dir):
            relative_parts = os.path.relpath(path, self.content_dir).split(os.sep)
            if 'assets' in relative_parts[:-1]:
                return 'asset'
            if path.endswith('.py'):
                return 'page'
            return None
        for directory in self.global_asset_dirs:
            source = directory if os.path.isabs(directory) else os.path.join(self.project_root, directory)
            if _is_within(path, source):
                return 'asset'
        return None

    def model_for_data_file(self, path):
        """Name of the model a data file feeds: stem minus ``_data`` or its first directory."""
        relative_parts = os.path.relpath(path, self.data_dir).split(os.sep)
        stem = os.path.splitext(relative_parts[-1])[0]
        if stem.endswith('_data'):
            return stem[:-len('_data')]
        if len(relative_parts) > 1:
            return relative_parts[0]
        return stem

    def build_incremental(self, changed_files):
        """Re-render only the pages affected by ``changed_files``."""
        self.logger.info(f"Incremental build for {len(changed_files)} changed file(s)")
        self.load_dependencies()
        self.load_asset_manifest()

        changes = {}
        for path in changed_files:
            kind = self.classify_change(path)
            if kind is None:
                self.logger.debug(f"Ignoring change to {path}")
                continue
            changes.setdefault(kind, []).append(path)

        self.engine.clear_cache()
        if 'data' in changes or not self._data_loaded:
            self.load_data_definitions()
        if 'component' in changes or 'layout' in changes or not self._templates_loaded:
            self.load_templates()

        affected = set()
        for kind, dependency_kind in (('component', 'components'), ('layout', 'layouts')):
            for path in changes.get(kind, []):
                name = os.path.splitext(os.path.basename(path))[0]
                affected.update(self.pages_depending_on(dependency_kind, name))
        for path in changes.get('data', []):
            model = self.model_for_data_file(path)
            affected.update(self.dependencies['data'].get(model, []))
        for path in changes.get('page', []):
            affected.add(self._page_key(path))

        if 'asset' in changes:
            self.process_assets()
            self.save_asset_manifest()

        built = []
        for page_path in sorted(affected):
            if not os.path.exists(page_path):
                self.logger.debug(f"Dropping deleted page {page_path}")
                self.forget_page(page_path)
                continue
            page = self.analyze_page_file(page_path)
            if page is None:
                continue
            if page['error_code']:
                self.error_pages[(page['domain'], page['error_code'])] = page
                self.build_error_page(page)
                continue
            built.extend(self.build_page(page))

        self.save_dependencies()
        self.logger.info(f"Incremental build rebuilt {len(built)} page(s)")
        return built
