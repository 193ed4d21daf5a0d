#!/usr/bin/env python3
"""
Command-line interface for Pagewright - static site builder.
"""

import os
import sys
import argparse
import time
from typing import List, Optional

from . import __version__
from .builder import SiteBuilder
from .settings import SiteSettings


def create_builder(final_settings) -> SiteBuilder:
    """Create a SiteBuilder from merged settings."""
    output_dir = os.path.expanduser(final_settings['output'])
    css_path = final_settings['css_path']
    return SiteBuilder(
        content_dir=final_settings['content'],
        output_dir=output_dir,
        data_dir=final_settings['data'],
        site_url=final_settings['site_url'],
        css_path=os.path.expanduser(css_path) if css_path else None,
        css_url=final_settings['css_url'],
        minify=final_settings['minify'],
        global_asset_dirs=final_settings['global_asset_dirs'],
        default_domain=final_settings['default_domain'],
        log_dir=final_settings['log_dir']
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Pagewright - Static Site Builder')
    parser.add_argument('--content', type=str,
                        help='Content directory containing one sub-directory per domain')
    parser.add_argument('--output', type=str,
                        help='Output directory for generated site')
    parser.add_argument('--data', type=str,
                        help="Data directory (defaults to 'data' beside the content directory)")
    parser.add_argument('--site-url', type=str,
                        help='Site URL used by asset_url()')
    parser.add_argument('--css-url', type=str,
                        help='Public URL of generated external stylesheets')
    parser.add_argument('--log-dir', type=str,
                        help='Write a debug log file into this directory')
    parser.add_argument('--minify', action='store_true', default=None,
                        help='Minify CSS and JS assets')
    parser.add_argument('--force', action='store_true', default=None,
                        help='Remove the output directory before building')
    parser.add_argument('--changed', type=str, nargs='+', metavar='FILE',
                        help='Only rebuild pages affected by these changed files')
    parser.add_argument('--init', type=str, choices=['yml', 'yaml', 'json'],
                        help='Create a sample configuration file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    # Handle init command
    if args.init:
        settings_loader = SiteSettings()
        config_path = settings_loader.create_sample_config(args.init)
        print(f"Created sample configuration file: {config_path}")
        return

    # Load settings from configuration file
    settings_loader = SiteSettings()
    settings_loader.load_settings()

    args_dict = {k: v for k, v in vars(args).items() if v is not None and k not in ('changed', 'init')}

    # Command line arguments take precedence
    final_settings = settings_loader.merge_with_args(args_dict)

    overall_start_time = time.time()

    try:
        builder = create_builder(final_settings)

        if args.changed:
            builder.build_incremental(args.changed)
        else:
            builder.build(force=final_settings['force'])

        # Show build statistics
        total_time = time.time() - overall_start_time
        builder.logger.info(f"Site build completed in {total_time:.6f} seconds.")
        if args.changed:
            builder.logger.info(f"Total pages generated: {builder.pages_built}")
        if builder.pages_skipped:
            builder.logger.warning(f"Pages skipped because of errors: {builder.pages_skipped}")

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
