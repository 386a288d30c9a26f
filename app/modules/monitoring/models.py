# Supabase tables: workflow_execution_logs, workflow_errors, workflow_performance_metrics, monitoring_alerts
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
workflow_execution_logs:
- id: uuid (primary key)
- workflow_id: text (not null)
- execution_id: text (not null)
- level: text (not null, default: 'info') - values: debug, info, warn, error, fatal
- message: text (not null)
- timestamp: timestamptz (not null, default: now())
- node_id, node_name: text (nullable)
- step_number: integer (nullable)
- duration_ms: integer (nullable)
- metadata: jsonb (default: {})
- created_at: timestamptz (default: now())

workflow_errors:
- id: uuid (primary key)
- workflow_id: text (not null)
- execution_id: text (not null)
- error_type: text (not null, default: 'unknown') - values: validation, network, timeout, permission, data, system, unknown
- error_code: text (nullable)
- error_message: text (not null)
- error_stack: text (nullable)
- timestamp: timestamptz (not null, default: now())
- node_id, node_name: text (nullable)
- severity: text (not null, default: 'medium') - values: low, medium, high, critical
- resolved: boolean (default: false)
- resolution_notes: text (nullable)
- resolved_at: timestamptz (nullable)
- resolved_by: text (nullable)
- metadata: jsonb (default: {})
- created_at, updated_at: timestamptz

workflow_performance_metrics:
- id: uuid (primary key)
- workflow_id: text (not null)
- execution_id: text (not null)
- timestamp: timestamptz (not null, default: now())
- total_duration_ms: integer (not null)
- node_count, successful_nodes, failed_nodes: integer (default: 0)
- memory_peak, memory_average: bigint (default: 0) - bytes
- cpu_peak, cpu_average: numeric(5,2) (default: 0) - percent
- network_requests: integer (default: 0)
- network_data_transferred: bigint (default: 0) - bytes
- throughput: numeric(10,2) (default: 0) - items per second
- bottleneck_nodes: text[] (default: {})
- metadata: jsonb (default: {})
- created_at: timestamptz (default: now())

monitoring_alerts:
- id: uuid (primary key)
- workflow_id: text (not null)
- alert_type: text (not null) - values: performance, error, timeout, resource, dependency
- severity: text (not null, default: 'info') - values: info, warning, critical
- title: text (not null)
- description: text (not null)
- timestamp: timestamptz (not null, default: now())
- acknowledged: boolean (default: false)
- acknowledged_by: text (nullable)
- acknowledged_at: timestamptz (nullable)
- resolved: boolean (default: false)
- resolved_by: text (nullable)
- resolved_at: timestamptz (nullable)
- metadata: jsonb (default: {})
- created_at, updated_at: timestamptz
"""
