# Supabase tables: webhook_endpoints, webhook_events
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
webhook_endpoints:
- id: uuid (primary key)
- name: text (not null, unique)
- url: text (not null)
- webhook_type: text (not null) - values: incoming, outgoing, bidirectional
- method: text (default: 'POST') - values: GET, POST, PUT, PATCH, DELETE
- headers: jsonb (default: {})
- secret: text (nullable) - HMAC secret; never returned by the API
- is_active: boolean (default: true)
- retry_config: jsonb (default: {"max_retries": 3, "retry_delay": 5})
- trigger_count, success_count, error_count: integer (default: 0)
- last_triggered: timestamptz (nullable)
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)

webhook_events:
- id: uuid (primary key)
- workflow_id: text (not null)
- execution_id: text (nullable)
- event_type: text (not null) - values: execution_started, execution_completed, execution_failed, workflow_updated
- payload: jsonb (not null) - sanitised copy of the inbound body
- source: text (not null) - values: n8n, dashboard
- status: text (not null, default: 'pending') - values: pending, processed, failed
- idempotency_key: text (not null, unique)
- retry_count: integer (default: 0)
- next_retry_at: timestamptz (nullable) - null on a failed event means no retries left
- last_error: text (nullable)
- metadata: jsonb (default: {})
- endpoint_id: uuid (nullable, foreign key to webhook_endpoints.id)
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)
- processed_at: timestamptz (nullable)
"""
