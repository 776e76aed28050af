"""Hosted store endpoints (PostgREST-style API)."""

REST_PREFIX = "/rest/v1"
AUTH_USER = "/auth/v1/user"

# PostgREST error code for "no rows returned" on single-object requests
NOT_FOUND_CODE = "PGRST116"
