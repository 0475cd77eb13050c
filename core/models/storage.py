"""
Storage models for search sink operations.

Every write against the sink reports back a StorageResult instead of raising,
so callers can decide per operation what counts as a failure.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class StorageErrorCode:
    """Error codes attached to failed storage results"""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SINK_ERROR = "sink_error"


class StorageResult(BaseModel):
    """Result of a single sink operation with timing information"""
    model_config = ConfigDict(
        json_encoders={
            datetime: lambda v: v.isoformat()
        }
    )

    # Operation details
    operation: str  # create, update, upsert, delete, create_index
    index_name: str
    document_id: Optional[str] = None
    success: bool

    # Performance metrics
    processing_time_ms: float = 0.0

    # Error handling
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    warnings: List[str] = Field(default_factory=list)

    # Timestamps
    started_at: datetime = Field(default_factory=datetime.now)

    @field_validator('operation')
    @classmethod
    def validate_operation(cls, v: str) -> str:
        """Validate operation type"""
        valid_ops = {'create', 'update', 'upsert', 'delete', 'create_index', 'put_mapping'}
        if v.lower() not in valid_ops:
            raise ValueError(f'Invalid operation: {v}')
        return v.lower()

    @property
    def not_found(self) -> bool:
        """True when the sink reported the target document as missing"""
        return not self.success and self.error_code == StorageErrorCode.NOT_FOUND

    @property
    def conflict(self) -> bool:
        """True when a version conflict outlived the retry budget"""
        return not self.success and self.error_code == StorageErrorCode.CONFLICT

    @classmethod
    def successful(
        cls,
        operation: str,
        index_name: str,
        document_id: Optional[str],
        processing_time_ms: float
    ) -> 'StorageResult':
        """Create successful result"""
        return cls(
            operation=operation,
            index_name=index_name,
            document_id=document_id,
            success=True,
            processing_time_ms=processing_time_ms
        )

    @classmethod
    def failed_operation(
        cls,
        operation: str,
        index_name: str,
        document_id: Optional[str],
        error: str,
        processing_time_ms: float,
        error_code: str = StorageErrorCode.SINK_ERROR,
        error_details: Optional[Dict[str, Any]] = None
    ) -> 'StorageResult':
        """Create failed operation result"""
        return cls(
            operation=operation,
            index_name=index_name,
            document_id=document_id,
            success=False,
            processing_time_ms=processing_time_ms,
            error=error,
            error_code=error_code,
            error_details=error_details
        )
