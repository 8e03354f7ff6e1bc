# Credential database schema
# Holds the credential records and every security table owned by the identity service

USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    email TEXT UNIQUE NOT NULL COLLATE NOCASE,
    display_name TEXT,
    phone_number TEXT,
    password_hash TEXT NOT NULL,              -- bcrypt hash, includes cost and salt
    email_verified INTEGER NOT NULL DEFAULT 0,
    email_verified_at TEXT,
    email_verification_token_hash TEXT,       -- sha256 of the emailed token, never the token
    email_verification_expires_at TEXT,
    email_verification_last_sent_at TEXT,
    sms_verified INTEGER NOT NULL DEFAULT 0,
    sms_verification_code TEXT,
    sms_verification_expires_at TEXT,
    login_attempts INTEGER NOT NULL DEFAULT 0,
    lockout_until TEXT,
    is_admin INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_login TEXT,
    created_at TEXT NOT NULL
)
"""

SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS sessions (
    session_hash TEXT PRIMARY KEY,            -- sha256 of the cookie value
    user_id INTEGER NOT NULL,
    username TEXT NOT NULL,
    is_admin INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_activity TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    ip_address TEXT,
    user_agent TEXT,
    FOREIGN KEY (user_id) REFERENCES users(id)
)
"""

AUDIT_LOGS_TABLE = """
CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,                          -- null for anonymous or failed attempts
    username TEXT,
    action TEXT NOT NULL,
    entity_type TEXT,
    entity_id INTEGER,
    status TEXT NOT NULL,
    ip_address TEXT,
    user_agent TEXT,
    details TEXT,                             -- JSON
    created_at TEXT NOT NULL
)
"""

PASSWORD_RESET_TOKENS_TABLE = """
CREATE TABLE IF NOT EXISTS password_reset_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    token_hash TEXT NOT NULL,
    email TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    used_at TEXT,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
)
"""

REVOKED_TOKENS_TABLE = """
CREATE TABLE IF NOT EXISTS revoked_tokens (
    jti TEXT PRIMARY KEY,
    user_id INTEGER,
    expires_at TEXT NOT NULL,
    revoked_at TEXT NOT NULL
)
"""

SCHEMA_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""

ALL_TABLES = [
    USERS_TABLE,
    SESSIONS_TABLE,
    AUDIT_LOGS_TABLE,
    PASSWORD_RESET_TOKENS_TABLE,
    REVOKED_TOKENS_TABLE,
    SCHEMA_MIGRATIONS_TABLE,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_email_token ON users(email_verification_token_hash)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_user ON audit_logs(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_action ON audit_logs(action)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_created ON audit_logs(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_password_reset_token_hash ON password_reset_tokens(token_hash)",
    "CREATE INDEX IF NOT EXISTS idx_password_reset_user ON password_reset_tokens(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_revoked_tokens_expires ON revoked_tokens(expires_at)",
]
