"""Domain events: request telemetry records and the retry, refresh,
fallback and session-expiry notifications dispatched through TelemetryHook.
"""
