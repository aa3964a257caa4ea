"""
Configuration loading for the image linker
"""
import copy
import logging
import os
from typing import Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'database': {
        'path': 'data/image_links.db'
    },
    'storage': {
        'backend': 'local',
        'root': 'images',
        'folder': '',
        'recursive': True,
        'probe_dimensions': False,
        'public_base_url': '',
        'supabase_url': '',
        'supabase_key': '',
        'bucket': 'product-images',
        'timeout': 15
    },
    'matching': {
        'link_threshold': 80,
        'candidate_threshold': 60
    },
    'scan': {
        'page_size': 200,
        'batch_size': 5,
        'batch_pause_seconds': 0.1,
        'batch_timeout_seconds': 30,
        'max_errors': 20,
        'max_unresolved': 1000
    },
    'review': {
        'auto_promote_threshold': 70
    },
    'logging': {
        'level': 'INFO'
    },
    'server': {
        'host': '127.0.0.1',
        'port': 8847,
        'debug': False
    }
}


def merge_config(base: dict, override: Optional[dict]) -> dict:
    """Deep-merge override onto a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_config(config: dict) -> dict:
    """
    Check threshold and batch settings.

    Raises:
        ValueError: When a setting is out of range
    """
    matching = config['matching']
    link_threshold = matching['link_threshold']
    candidate_threshold = matching['candidate_threshold']

    for name, value in (('link_threshold', link_threshold), ('candidate_threshold', candidate_threshold)):
        if not 0 <= value <= 100:
            raise ValueError(f"matching.{name} must be between 0 and 100, got {value}")
    if candidate_threshold > link_threshold:
        raise ValueError("matching.candidate_threshold cannot exceed matching.link_threshold")

    scan = config['scan']
    for key in ('page_size', 'batch_size'):
        if int(scan[key]) < 1:
            raise ValueError(f"scan.{key} must be at least 1")

    return config


def load_config(config_path: str = 'config.yaml') -> dict:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to configuration file (defaults apply if it is missing)

    Returns:
        Configuration dictionary merged over DEFAULT_CONFIG
    """
    load_dotenv()

    if not config_path or not os.path.exists(config_path):
        logger.info(f"No config file at {config_path}, using defaults")
        return validate_config(merge_config(DEFAULT_CONFIG, None))

    try:
        with open(config_path, 'r') as f:
            config_content = f.read()

        # Replace environment variables
        config_content = os.path.expandvars(config_content)

        user_config = yaml.safe_load(config_content) or {}
    except Exception as e:
        logger.error(f"Error loading config from {config_path}: {str(e)}")
        raise

    return validate_config(merge_config(DEFAULT_CONFIG, user_config))


def setup_logging(config: dict) -> None:
    log_level = getattr(logging, str(config.get('logging', {}).get('level', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
