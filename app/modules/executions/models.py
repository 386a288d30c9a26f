# Supabase table: workflow_executions
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
workflow_executions:
- id: uuid (primary key)
- workflow_id: text (not null)
- execution_id: text (not null, unique) - n8n execution id
- status: text (not null) - values: running, completed, failed, cancelled
- started_at: timestamptz (not null, default: now())
- completed_at: timestamptz (nullable)
- duration_ms: bigint (nullable)
- input_data: jsonb (default: {})
- output_data: jsonb (nullable)
- error_message: text (nullable)
- error_details: jsonb (nullable)
- triggered_by: text (nullable)
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)
"""
