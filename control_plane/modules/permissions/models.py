# Supabase tables: actions, roles, role_permissions, role_assignments, permission_requests, service_tree
# This file documents the expected database schema; the DDL and the rpc functions
# live in control_plane/database/migrations/permissions.sql
# Actual operations are handled via the Supabase SDK in repository.py

"""
Expected Supabase table structure:

actions:
- id: uuid (primary key)
- code: text (not null, unique) - e.g., "table:read", "directory:admin"
- resource_type: text (not null) - directory | table | form | chart | app
- action_type: text (not null) - read | write | update | delete | admin
- name: text (nullable)
- description: text (nullable)
- is_system: boolean (default: false)
- created_by: text (nullable)
- created_at: timestamptz (default: now())

roles:
- id: uuid (primary key)
- name: text (not null)
- code: text (not null) - e.g., "viewer", "developer", "admin"
- resource_type: text (not null) - primary resource type of the role
- description: text (nullable)
- is_system: boolean (default: false)
- is_default: boolean (default: false)
- created_by: text (nullable)
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)
- unique constraint on (code, resource_type)
- partial unique index on (resource_type) where is_default

role_permissions:
- id: uuid (primary key)
- role_id: uuid (foreign key to roles.id, not null, on delete cascade)
- action_id: uuid (foreign key to actions.id, not null)
- created_at: timestamptz (default: now())
- unique constraint on (role_id, action_id)

role_assignments:
- id: uuid (primary key)
- tenant: text (not null)
- workspace: text (not null)
- subject_type: text (not null) - user | department
- subject: text (not null) - username or department path (/org/...)
- role_id: uuid (foreign key to roles.id, not null)
- resource_path: text (not null) - /<tenant>/<workspace>/...
- start_time: timestamptz (not null)
- end_time: timestamptz (nullable) - check (end_time is null or end_time > start_time)
- created_by: text (nullable)
- created_at: timestamptz (default: now())
- index on (tenant, workspace, subject_type, subject)
- index on (resource_path)

permission_requests:
- id: uuid (primary key)
- tenant: text (not null)
- workspace: text (not null)
- applicant: text (not null)
- subject_type: text (not null)
- subject: text (not null)
- resource_path: text (not null)
- role_id: uuid (not null, no foreign key; a request outlives its role)
- start_time: timestamptz (not null)
- end_time: timestamptz (nullable)
- reason: text (nullable)
- status: text (not null, default: 'pending') - pending | approved | rejected | cancelled
- approved_by, rejected_by, cancelled_by: text (nullable)
- approved_at, rejected_at, cancelled_at: timestamptz (nullable)
- reject_reason: text (nullable)
- role_assignment_id: uuid (nullable, foreign key to role_assignments.id, on delete set null)
- created_at: timestamptz (default: now())
- updated_at: timestamptz (nullable)
- index on (resource_path, status)
- index on (applicant)

service_tree (owned by the workspace service, read only here):
- full_code_path: text (primary key)
- admins: text[] - usernames administering the node

Postgres functions called through supabase.rpc (each runs in one transaction,
defined in control_plane/database/migrations/permissions.sql):
- replace_role_permissions(p_role_id uuid, p_action_ids uuid[])
    delete from role_permissions where role_id = p_role_id, then insert one row per action id
- delete_role_cascade(p_role_id uuid)
    refuses system roles; deletes role_assignments, role_permissions, then the role
- set_default_role(p_role_id uuid)
    clears is_default on every other role of the same resource_type, sets it on p_role_id
- approve_permission_request(p_request_id uuid, p_approved_by text, p_approved_at timestamptz, p_assignment jsonb)
    updates the request from 'pending' to 'approved' (no-op returning null when not pending),
    inserts the assignment, stores its id on the request and returns the updated request row
"""
