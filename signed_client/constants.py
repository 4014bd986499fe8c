"""
Configuration constants for the signed API client

This module contains the defaults used throughout the client.
Each numeric constant can be overridden by setting an environment variable with the same name.
"""

import os


def _get_env_int(name: str, default: int) -> int:
    """Retrieve an integer value from an environment variable.

    Attempts to parse the environment variable as an integer. If the variable
    is not set or cannot be parsed, prints a warning and returns the default value.

    Args:
        name: The name of the environment variable to read.
        default: The default integer value to return if parsing fails.

    Returns:
        The parsed integer value from the environment, or the default if unavailable.
    """
    value = os.getenv(name)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            print(
                f"Warning: Invalid integer value for {name}='{value}', using default {default}"
            )
    return default


# Network behaviour
API_REQUEST_TIMEOUT_MS = _get_env_int(
    "API_REQUEST_TIMEOUT_MS", 30000
)  # Upper bound for a single network attempt
API_RETRY_ATTEMPTS = _get_env_int(
    "API_RETRY_ATTEMPTS", 3
)  # Retries after the first attempt when no response is received
API_RETRY_DELAY_MS = _get_env_int(
    "API_RETRY_DELAY_MS", 1000
)  # Fixed delay between network retries

# Signing material sizes
NONCE_BYTE_LENGTH = _get_env_int("API_NONCE_LENGTH", 16)
DEVICE_ID_BYTE_LENGTH = 16
MIN_NONCE_BYTE_LENGTH = 8

DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_KEYRING_SERVICE = "signed-api-client"

# Secure store keys
DEVICE_ID_KEY = "apiDeviceId"
ACCESS_TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "refreshToken"

# Refresh endpoint contract
REFRESH_ENDPOINT = "/auth/refresh"

# Multipart uploads
UPLOAD_FIELD_NAME = "files"
UPLOAD_CHUNK_SIZE = 64 * 1024  # Bytes handed to the socket per progress report
APPLICATION_OCTET_STREAM = "application/octet-stream"

# Wire headers
APPLICATION_JSON = "application/json"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_LENGTH = "Content-Length"
HEADER_AUTHORIZATION = "Authorization"
HEADER_DEVICE_ID = "X-Device-Id"
HEADER_TIMESTAMP = "X-Timestamp"
HEADER_NONCE = "X-Nonce"
HEADER_SIGNATURE = "X-Signature"
HEADER_APP_ID = "X-App-Id"
HEADER_BYPASS = "x-vercel-protection-bypass"
