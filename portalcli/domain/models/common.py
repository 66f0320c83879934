"""Defines common Value Objects used across the client.

These objects represent simple values such as endpoints, HTTP methods and
tokens, keeping signatures self-describing.
"""

from typing import NewType, Dict, Any

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
Endpoint = NewType("Endpoint", str)          # Path relative to the base URL, e.g. '/api/users'
HttpMethod = NewType("HttpMethod", str)      # 'GET', 'POST', 'PUT', 'PATCH', 'DELETE'
RequestId = NewType("RequestId", str)        # Correlates every attempt of one logical call

# === Credential Context ===
AccessToken = NewType("AccessToken", str)    # Short-lived bearer token (JWT)
RefreshToken = NewType("RefreshToken", str)  # Long-lived token exchanged for a new pair
TokenClaims = NewType("TokenClaims", Dict[str, Any])  # Decoded JWT payload

# === Storage Context ===
StorageKey = NewType("StorageKey", str)      # Well-known key in the local credential store

SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


def normalize_method(method: str) -> HttpMethod:
    """Upper-cases and validates an HTTP verb.

    Raises:
        ValueError: If the verb is not one the client speaks.
    """
    verb = method.strip().upper()
    if verb not in SUPPORTED_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method!r}")
    return HttpMethod(verb)
