"""Status package: enums and exceptions for handling application state and errors.

This package defines:
    - Status: a StrEnum of possible application states
    - STATUS_MESSAGE: default user-facing messages per status
    - get_message: helper to retrieve messages for statuses
    - BaseStatusException: base exception for status-driven error handling
    - The error taxonomy (AuthError, RemoteError, ValidationError, NotFoundError, StorageError)
    - HTTP_STATUS and error_response: the mapping onto HTTP error responses
"""
