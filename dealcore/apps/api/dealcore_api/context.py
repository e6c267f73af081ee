"""Request context management for observability.

Context variables for request tracking across async boundaries. The JSON log
formatter reads these so every log line carries the request, tenant and actor.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Tenant (county) ID - set once the tenant boundary has been resolved
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

# Actor ID - caller identity forwarded by the upstream gateway
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")
