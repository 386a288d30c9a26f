# Supabase tables: workflow_states, workflow_state_transitions, workflow_triggers
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
workflow_states:
- id: uuid (primary key)
- workflow_id: text (not null, unique) - one live state row per workflow
- current_state: text (not null) - values: idle, pending, running, paused, completed, failed, cancelled, retrying, scheduled
- previous_state: text (nullable)
- execution_id: text (nullable)
- started_at: timestamptz (nullable)
- completed_at: timestamptz (nullable)
- duration_ms: bigint (nullable)
- progress_percentage: integer (default: 0, check 0..100)
- metadata: jsonb (default: {})
- version: integer (not null, default: 1) - bumped on every transition, used for compare-and-swap
- created_at: timestamptz (default: now())
- updated_at: timestamptz (not null)

workflow_state_transitions:
- id: uuid (primary key)
- workflow_state_id: uuid (foreign key to workflow_states.id, on delete cascade)
- workflow_id: text (not null)
- from_state: text (nullable) - null for the creating transition
- to_state: text (not null)
- transition_type: text (not null) - values: start, pause, resume, complete, fail, cancel, retry, schedule, reset
- duration_in_previous_state_ms: bigint (nullable)
- triggered_by: text (nullable)
- reason: text (nullable)
- metadata: jsonb (default: {})
- created_at: timestamptz (default: now())

workflow_triggers:
- id: uuid (primary key)
- workflow_id: text (not null)
- trigger_type: text (not null) - values: webhook, schedule, manual, event
- conditions: jsonb (default: {})
- enabled: boolean (default: true)
- endpoint_id: uuid (nullable, foreign key to webhook_endpoints.id)
- trigger_count: integer (default: 0)
- last_triggered: timestamptz (nullable)
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)
"""
