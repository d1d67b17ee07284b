"""
Configuration loader for the merge request automator.

Settings come from three layers, later layers winning:

1. ``DEFAULT_CONFIG`` below
2. an optional YAML file (``MR_AUTOMATOR_CONFIG`` or ``.mr-automator.yaml``
   in the working directory)
3. environment variables (``GITLAB_URL``, ``GITLAB_TOKEN``, ``GROUP_ID``,
   ``APPROVAL_THRESHOLD``, ``APPROVAL_LABEL``, ``READY_TO_MERGE_LABEL``,
   ``BOT_USERNAME``, ``FAIL_FAST``, ``GITLAB_TIMEOUT``)

Nothing here touches the network; ``validate_config`` is expected to run
before the first API call.
"""

import copy
import os
import yaml
import logging

from .params import MRALabels, MRALimits, MRAConstants

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Required setting missing or malformed."""


DEFAULT_CONFIG = {
    'gitlab': {
        'url': None,
        'token': None,
        'group_id': None,
        'timeout': None,  # seconds; None keeps the requests default
    },
    'approval': {
        'threshold': MRALimits.APPROVAL_THRESHOLD.value,
        'label': MRALabels.APPROVAL.value,
    },
    'ready_to_merge': {
        'label': MRALabels.READY_TO_MERGE.value,
    },
    'bot': {
        'username': MRAConstants.bot_username.value,
    },
    'run': {
        'fail_fast': False,
    },
}

# environment variable -> (section, key)
ENV_OVERRIDES = {
    'GITLAB_URL': ('gitlab', 'url'),
    'GITLAB_TOKEN': ('gitlab', 'token'),
    'GROUP_ID': ('gitlab', 'group_id'),
    'GITLAB_TIMEOUT': ('gitlab', 'timeout'),
    'APPROVAL_THRESHOLD': ('approval', 'threshold'),
    'APPROVAL_LABEL': ('approval', 'label'),
    'READY_TO_MERGE_LABEL': ('ready_to_merge', 'label'),
    'BOT_USERNAME': ('bot', 'username'),
    'FAIL_FAST': ('run', 'fail_fast'),
}

TRUTHY = ('1', 'true', 'yes', 'on')


def deep_merge(base, override):
    """
    Deep merge two dictionaries. Override values take precedence.

    Args:
        base: Base configuration dict
        override: Override configuration dict

    Returns:
        dict: Merged configuration
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def find_config_file(environ):
    path = environ.get('MR_AUTOMATOR_CONFIG')
    if path:
        return path
    default_path = os.path.join(os.getcwd(), MRAConstants.config_file.value)
    if os.path.exists(default_path):
        return default_path
    return None


def load_file_config(config_path):
    """
    Read the YAML config file.

    Returns an empty dict when the file is missing, empty or unparsable so
    the caller falls back to defaults.
    """
    if not config_path or not os.path.exists(config_path):
        logger.info(f"No config file found at {config_path}, using defaults")
        return {}

    try:
        with open(config_path, 'r') as f:
            file_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing {config_path}: {e}")
        logger.warning("Using default configuration")
        return {}

    if not file_config or not isinstance(file_config, dict):
        logger.warning(f"Config file {config_path} is empty or invalid, using defaults")
        return {}

    for section, value in list(file_config.items()):
        if section in DEFAULT_CONFIG and not isinstance(value, dict):
            logger.warning(f"Ignoring section '{section}' in {config_path}: expected a mapping, got {value!r}")
            del file_config[section]

    logger.info(f"Loaded configuration from {config_path}")
    return file_config


def load_config(environ=None, config_path=None):
    """
    Build the raw configuration dict.

    Args:
        environ: Mapping to read variables from (default: os.environ)
        config_path: Explicit YAML file path, overrides discovery

    Returns:
        dict: Configuration with defaults, file and environment applied.
              Values are not validated yet, see validate_config().
    """
    environ = os.environ if environ is None else environ
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is None:
        config_path = find_config_file(environ)
    if config_path:
        config = deep_merge(config, load_file_config(config_path))

    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value is not None and value != '':
            config.setdefault(section, {})[key] = value

    return config


def _parse_threshold(value):
    try:
        threshold = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"APPROVAL_THRESHOLD must be an integer, got {value!r}")
    if threshold < 0:
        raise ConfigError(f"APPROVAL_THRESHOLD must not be negative, got {threshold}")
    return threshold


def _parse_timeout(value):
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"GITLAB_TIMEOUT must be a number of seconds, got {value!r}")


def _parse_flag(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def validate_config(config, single_target=False):
    """
    Check required settings and normalize types.

    Args:
        config: Raw dict from load_config()
        single_target: True when a PROJECT_ID/MR_IID pair was given, in which
                       case GROUP_ID is not needed

    Returns:
        dict: A normalized copy of the configuration

    Raises:
        ConfigError: naming the first missing or malformed variable
    """
    config = copy.deepcopy(config)
    gitlab = config['gitlab']

    if not gitlab.get('url'):
        raise ConfigError("GitLab URL is not defined. Set the GITLAB_URL environment variable. "
                          "Example: GITLAB_URL=https://gitlab.example.com")
    gitlab['url'] = str(gitlab['url']).rstrip('/')

    if not gitlab.get('token'):
        raise ConfigError("GitLab token is not defined. Set the GITLAB_TOKEN environment variable.")

    if not single_target and not gitlab.get('group_id'):
        raise ConfigError("Group ID is not defined. Set the GROUP_ID environment variable.")

    gitlab['timeout'] = _parse_timeout(gitlab.get('timeout'))
    config['approval']['threshold'] = _parse_threshold(config['approval'].get('threshold'))
    config['run']['fail_fast'] = _parse_flag(config['run'].get('fail_fast', False))

    return config


def get_gitlab_settings(config):
    """Get GitLab connection settings."""
    return config.get('gitlab', DEFAULT_CONFIG['gitlab'])


def get_label_settings(config):
    """Get the settings the review rules work with."""
    return {
        'threshold': config['approval']['threshold'],
        'approval_label': config['approval']['label'],
        'ready_label': config['ready_to_merge']['label'],
        'bot_username': config['bot']['username'],
    }


def get_run_settings(config):
    return config.get('run', DEFAULT_CONFIG['run'])
