#!/usr/bin/env python3
"""
Settings loader for the Pagewright site builder.
Supports configuration from pagewright.yml, pagewright.yaml, or pagewright.json files.
"""

import os
import json
import logging
import yaml
from typing import Dict, Any, Optional


class SiteSettings:
    """Load and manage Pagewright configuration settings."""

    # Default configuration
    DEFAULT_SETTINGS = {
        'content': 'content',
        'data': None,
        'output': 'dist',
        'css_path': None,
        'css_url': '/css',
        'site_url': None,
        'minify': False,
        'force': False,
        'log_dir': None,
        'global_asset_dirs': ['public', 'static'],
        'default_domain': 'default'
    }

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['pagewright.yml', 'pagewright.yaml', 'pagewright.json']

    def __init__(self, config_dir: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
        """
        self.config_dir = config_dir or os.getcwd()
        self.settings = self.DEFAULT_SETTINGS.copy()
        self.config_file_path = None
        self.logger = logging.getLogger('Pagewright.settings')

    def load_settings(self) -> Dict[str, Any]:
        """
        Load settings from configuration file if it exists.

        Returns:
            Dictionary of configuration settings
        """
        config_file = self._find_config_file()

        if config_file:
            self.config_file_path = config_file
            try:
                loaded_settings = self._load_config_file(config_file)
                if loaded_settings:
                    unknown = sorted(set(loaded_settings) - set(self.DEFAULT_SETTINGS))
                    if unknown:
                        self.logger.warning(f"Ignoring unknown settings in {config_file}: {', '.join(unknown)}")
                    # Merge with defaults, giving preference to loaded settings
                    self.settings.update({k: v for k, v in loaded_settings.items() if k in self.DEFAULT_SETTINGS})
                    self.logger.info(f"Loaded configuration from: {os.path.relpath(config_file)}")
            except (ValueError, IOError, OSError) as e:
                self.logger.warning(f"Failed to load config file {config_file}: {e}")

        return self.settings.copy()

    def _find_config_file(self) -> Optional[str]:
        """Return the first available configuration file, or None."""
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dictionary of configuration settings
        """
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    loaded = yaml.safe_load(f) or {}
                elif file_ext == '.json':
                    loaded = json.load(f) or {}
                else:
                    raise ValueError(f"Unsupported config file format: {file_ext}")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file {config_path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        return loaded

    def create_sample_config(self, file_format: str = 'yml') -> str:
        """
        Create a sample configuration file.

        Args:
            file_format: Format for config file ('yml', 'yaml', or 'json')

        Returns:
            Path to created sample config file
        """
        if file_format not in ('yml', 'yaml', 'json'):
            raise ValueError(f"Unsupported config file format: {file_format}")

        filename = f'pagewright.{file_format}'
        config_path = os.path.join(self.config_dir, filename)

        with open(config_path, 'w', encoding='utf-8') as f:
            if file_format in ['yml', 'yaml']:
                f.write("# Pagewright Configuration File\n\n")
                f.write("# Site information\n")
                f.write("site_url: https://example.com\n\n")
                f.write("# Source and output directories\n")
                f.write("content: content\n")
                f.write("data: data  # defaults to a 'data' directory beside content\n")
                f.write("output: dist\n")
                f.write("global_asset_dirs:\n")
                f.write("  - public\n")
                f.write("  - static\n\n")
                f.write("# Stylesheets\n")
                f.write("css_url: /css  # public URL of external stylesheets\n\n")
                f.write("# Build settings\n")
                f.write("minify: false\n")
                f.write("force: false\n")
            else:
                sample_config = {
                    'site_url': 'https://example.com',
                    'content': 'content',
                    'data': 'data',
                    'output': 'dist',
                    'global_asset_dirs': ['public', 'static'],
                    'css_url': '/css',
                    'minify': False,
                    'force': False
                }
                json.dump(sample_config, f, indent=2)

        return config_path

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.
        """
        merged = self.settings.copy()

        # Override with non-None command line arguments
        for key, value in args_dict.items():
            if value is None:
                continue
            if key == 'global_asset_dirs' and isinstance(value, str):
                merged[key] = [d.strip() for d in value.split(',') if d.strip()]
            else:
                merged[key] = value

        return merged
