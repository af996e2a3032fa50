from prometheus_client import Counter

LOGINS = Counter("sessionguard_logins_total", "Login attempts by outcome", ["outcome"])
REFRESHES = Counter("sessionguard_refreshes_total", "Refresh attempts by outcome", ["outcome"])
SESSIONS_REVOKED = Counter("sessionguard_sessions_revoked_total", "Session records revoked by cause", ["cause"])
SESSIONS_PURGED = Counter("sessionguard_sessions_purged_total", "Session records deleted by retention sweeps")
