# Supabase Auth
# Users live in Supabase's auth.users table; no custom table is required here.
# Access control tables used alongside it (see migrations/001_workflow_orchestration.sql):

"""
- permissions: id uuid, name text unique ("<resource>:<action>"), resource text, action text, description text
- roles: id uuid, name text unique, description text
- role_permissions: role_id uuid -> roles.id, permission_id uuid -> permissions.id, unique (role_id, permission_id)
- user_roles: user_id uuid -> auth.users.id, role_id uuid -> roles.id, unique (user_id, role_id)

Super users are flagged with app_metadata.type = "super_user", which only the
service-role admin API can write.
"""
