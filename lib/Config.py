"""
Configuration Module

This module loads the job kit configuration. The configuration is a
JSON document merged over built-in defaults, so every value the core
needs is defined even when the file leaves it unset.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import os
import copy
import json

## built-in defaults
DEFAULTS = {
    'log': {
        'level': 'INFO',
        'path': None,
        'max_bytes': 10 * 1024 * 1024,
        'backup_count': 5,
        'db_url': None,
        'table': 'jk_log',
    },
    'jobkit': {
        'timezone': 'UTC',
        'max_log_bytes': 10 * 1024,
        'max_history': 10,
        'cancel_grace': 1.0,
        'shutdown_grace': 30.0,
        'status_interval': 60.0,
    },
    'jobs': [],
}

## default config location under the work path
DEFAULT_PATH = os.path.join('etc', 'JobKit.json')

def merge(base: dict, override: dict) -> dict:
    """
    Recursively merge override into a copy of base.

    Args:
        base (dict): Default values
        override (dict): User values

    Returns:
        dict: Merged configuration
    """

    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)

        else:
            merged[key] = value

    return merged

class Config(object):
    """
    Configuration loader.

    Attributes:
        path (str): Config file location
        config (dict): Merged configuration
    """

    def __init__(self, workpath: str, path: str = None) -> None:
        """
        Load the configuration.

        An explicitly given path must exist. When no path is given the
        default location is used if present, the defaults otherwise.

        Args:
            workpath (str): Project root directory
            path (str): Config file location

        Returns:
            None
        """

        self.workpath = workpath
        self.path = path or os.path.join(workpath, DEFAULT_PATH)

        user = {}
        if path is not None or os.path.isfile(self.path):
            with open(self.path, 'r', encoding = 'utf-8') as f:
                user = json.load(f)

        if not isinstance(user, dict):
            raise ValueError('config %s must hold a JSON object' % (self.path))

        self.config = merge(DEFAULTS, user)
