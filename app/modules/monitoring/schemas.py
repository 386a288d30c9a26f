from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Literal
from datetime import datetime
from enum import Enum


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class ErrorType(str, Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    DATA = "data"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    PERFORMANCE = "performance"
    ERROR = "error"
    TIMEOUT = "timeout"
    RESOURCE = "resource"
    DEPENDENCY = "dependency"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ExecutionLogCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1)
    level: LogLevel = LogLevel.INFO
    message: str = Field(..., min_length=1)
    timestamp: Optional[datetime] = None
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    step_number: Optional[int] = None
    duration_ms: Optional[int] = Field(None, ge=0)
    metadata: Dict[str, Any] = {}


class ExecutionLogResponse(BaseModel):
    id: str
    workflow_id: str
    execution_id: str
    level: LogLevel
    message: str
    timestamp: datetime
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    step_number: Optional[int] = None
    duration_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class WorkflowErrorCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1)
    error_type: ErrorType = ErrorType.UNKNOWN
    error_code: Optional[str] = None
    error_message: str = Field(..., min_length=1)
    error_stack: Optional[str] = None
    timestamp: Optional[datetime] = None
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    metadata: Dict[str, Any] = {}


class WorkflowErrorResponse(BaseModel):
    id: str
    workflow_id: str
    execution_id: str
    error_type: ErrorType
    error_code: Optional[str] = None
    error_message: str
    error_stack: Optional[str] = None
    timestamp: datetime
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    severity: ErrorSeverity
    resolved: bool = False
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class ErrorResolveRequest(BaseModel):
    resolution_notes: Optional[str] = None


class PerformanceMetricsCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1)
    timestamp: Optional[datetime] = None
    total_duration_ms: int = Field(..., ge=0)
    node_count: int = Field(0, ge=0)
    successful_nodes: int = Field(0, ge=0)
    failed_nodes: int = Field(0, ge=0)
    memory_peak: int = Field(0, ge=0)
    memory_average: int = Field(0, ge=0)
    cpu_peak: float = Field(0.0, ge=0)
    cpu_average: float = Field(0.0, ge=0)
    network_requests: int = Field(0, ge=0)
    network_data_transferred: int = Field(0, ge=0)
    throughput: float = Field(0.0, ge=0)
    bottleneck_nodes: List[str] = []
    metadata: Dict[str, Any] = {}


class PerformanceMetricsResponse(PerformanceMetricsCreate):
    id: str
    timestamp: datetime

    class Config:
        from_attributes = True


class AlertCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1)
    alert_type: AlertType
    severity: AlertSeverity = AlertSeverity.INFO
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    metadata: Dict[str, Any] = {}


class AlertResponse(BaseModel):
    id: str
    workflow_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    timestamp: datetime
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class ErrorRecordResponse(BaseModel):
    error: WorkflowErrorResponse
    alerts: List[AlertResponse] = []


class PerformanceRecordResponse(BaseModel):
    metrics: PerformanceMetricsResponse
    alerts: List[AlertResponse] = []


class LiveStatusResponse(BaseModel):
    workflow_id: str
    execution_id: Optional[str] = None
    state: str
    progress_percentage: int = 0
    started_at: Optional[datetime] = None
    elapsed_ms: Optional[int] = None
    estimated_remaining_ms: Optional[int] = None
    error_count: int = 0
    warning_count: int = 0
    last_activity: Optional[datetime] = None


class WorkflowErrorCount(BaseModel):
    workflow_id: str
    error_count: int


class DashboardResponse(BaseModel):
    running_workflows: int
    unresolved_errors: int
    critical_alerts: int
    average_duration_ms: float
    system_health: Literal["healthy", "warning", "critical"]
    recent_logs: List[ExecutionLogResponse] = []
    top_error_workflows: List[WorkflowErrorCount] = []


class BatchItem(BaseModel):
    type: Literal["log", "error", "performance", "alert"]
    data: Dict[str, Any]


class BatchRequest(BaseModel):
    items: List[BatchItem] = Field(..., min_length=1, max_length=500)


class BatchItemResult(BaseModel):
    index: int
    type: str
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class BatchResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BatchItemResult]


class RetentionResponse(BaseModel):
    retention_days: int
    deleted: Dict[str, int]
