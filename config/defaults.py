"""
Default configuration values for firesearch.

Centralized defaults that can be overridden by environment variables or config files.
"""

from typing import Any, Dict

# Global default settings
DEFAULT_SETTINGS = {
    # Elasticsearch search sink
    "elasticsearch": {
        "url": "http://localhost:9200",
        "api_key": None,
        "timeout": 30.0,
        "max_concurrent_writes": 16,
        "retry_on_conflict": 2
    },

    # Firestore document store
    "firestore": {
        "project": None,
        "database": None,
        "credentials_path": None
    },

    # Query bridge control collection
    "query_bridge": {
        "enabled": True,
        "collection": "search",
        "request_key": "request",
        "response_key": "response",
        "cleanup_interval_s": 3600.0
    },

    # Reference catalog, "module:attribute"
    "references": "config.references:REFERENCES",

    "log_level": "INFO"
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'FIRESEARCH_ES_URL': 'elasticsearch.url',
    'FIRESEARCH_ES_API_KEY': 'elasticsearch.api_key',
    'FIRESEARCH_ES_TIMEOUT': 'elasticsearch.timeout',
    'FIRESEARCH_ES_MAX_CONCURRENT_WRITES': 'elasticsearch.max_concurrent_writes',
    'FIRESEARCH_FIRESTORE_PROJECT': 'firestore.project',
    'FIRESEARCH_FIRESTORE_DATABASE': 'firestore.database',
    'FIRESEARCH_FIRESTORE_CREDENTIALS': 'firestore.credentials_path',
    'FIRESEARCH_QUERY_BRIDGE_ENABLED': 'query_bridge.enabled',
    'FIRESEARCH_SEARCH_COLLECTION': 'query_bridge.collection',
    'FIRESEARCH_SEARCH_REQUEST_KEY': 'query_bridge.request_key',
    'FIRESEARCH_SEARCH_RESPONSE_KEY': 'query_bridge.response_key',
    'FIRESEARCH_CLEANUP_INTERVAL_S': 'query_bridge.cleanup_interval_s',
    'FIRESEARCH_REFERENCES': 'references',
    'FIRESEARCH_LOG_LEVEL': 'log_level'
}

# Settings whose environment values are never coerced to bool or numbers
STRING_SETTINGS = {
    'elasticsearch.api_key',
    'firestore.project',
    'firestore.database',
    'firestore.credentials_path',
    'query_bridge.collection',
    'query_bridge.request_key',
    'query_bridge.response_key',
}


def get_default_config() -> Dict[str, Any]:
    """Get a fresh copy of the default configuration"""
    return {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in DEFAULT_SETTINGS.items()
    }
