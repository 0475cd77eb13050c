"""
firesearch entry point.

Usage:
    python -m firesearch run [--config PATH] [--no-query-bridge]

Environment Variables:
    FIRESEARCH_CONFIG_FILE: JSON configuration file
    FIRESEARCH_ES_URL: Elasticsearch URL (default: http://localhost:9200)
    FIRESEARCH_FIRESTORE_PROJECT: Google Cloud project
    FIRESEARCH_REFERENCES: Reference catalog, "module:attribute"
    FIRESEARCH_LOG_LEVEL: Logging level (default: INFO)
"""

from firesearch.cli import main


if __name__ == "__main__":
    main(prog_name="firesearch")
