"""
Configuration models for firesearch.

Handles Elasticsearch connection settings, Firestore access, and the
query bridge control collection.
"""

from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ElasticsearchConfig(BaseModel):
    """Elasticsearch search sink configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Connection settings
    url: str = "http://localhost:9200"
    api_key: Optional[str] = None
    timeout: float = 30.0

    # Write settings
    max_concurrent_writes: int = Field(default=16, ge=1, le=256)
    retry_on_conflict: int = Field(default=2, ge=0, le=10)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Elasticsearch URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Elasticsearch URL must start with http:// or https://')
        return v.rstrip('/')


class FirestoreConfig(BaseModel):
    """Firestore document store configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    project: Optional[str] = None
    database: Optional[str] = None
    credentials_path: Optional[Path] = None

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[Path]) -> Optional[Path]:
        """Credentials file must exist when given"""
        if v is not None and not v.exists():
            raise ValueError(f'Credentials file does not exist: {v}')
        return v


class QueryBridgeConfig(BaseModel):
    """Control collection used to run searches through Firestore"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    enabled: bool = True
    collection: str = "search"
    request_key: str = "request"
    response_key: str = "response"

    # Retention of answered requests, also the sweep period
    cleanup_interval_s: float = Field(default=3600.0, gt=0)

    @field_validator('collection', 'request_key', 'response_key')
    @classmethod
    def validate_names(cls, v: str) -> str:
        """Firestore paths and field names cannot be empty or contain slashes"""
        if not v or '/' in v:
            raise ValueError('Collection and field names must be non-empty and contain no "/"')
        return v


class ReplicationConfig(BaseModel):
    """Top-level configuration for a replication process"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    elasticsearch: ElasticsearchConfig = Field(default_factory=ElasticsearchConfig)
    firestore: FirestoreConfig = Field(default_factory=FirestoreConfig)
    query_bridge: QueryBridgeConfig = Field(default_factory=QueryBridgeConfig)

    # Import path of the reference catalog, "module:attribute"
    references: str = "config.references:REFERENCES"

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    @field_validator('references')
    @classmethod
    def validate_references(cls, v: str) -> str:
        """Catalog path must look like module:attribute"""
        module, _, attribute = v.partition(':')
        if not module or not attribute:
            raise ValueError('references must be given as "module:attribute"')
        return v

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = self.model_dump()
        if data['firestore']['credentials_path'] is not None:
            data['firestore']['credentials_path'] = str(data['firestore']['credentials_path'])
        return data


class GlobalSettings(BaseSettings):
    """Process-wide settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="FIRESEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Optional JSON config file read by the loader
    config_file: Optional[Path] = None

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_to_file: Optional[Path] = None
