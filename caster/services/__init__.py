# Service layer for the payload caster
# - stream / datagram: single-flight TCP and UDP dispatchers
# - orchestrator:      busy guard, progress ticker, liveness notices, display restore
# - log_store:         bounded HTML request log with atomic writes
# - timers:            owned deadline / ticker / delayed handles
