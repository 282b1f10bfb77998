# hybrid_users/users_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class RemoteError(Exception):
    """Base exception for users_api errors."""
    pass

class APIConnectionError(RemoteError):
    """Raised for network or connection issues, including timeouts."""
    pass

class APIRequestError(RemoteError):
    """Raised when the service rejects the request itself (bad data, validation)."""
    def __init__(self, message: str, response_data: dict = None):
        super().__init__(message)
        self.response_data = response_data or {}

class APIResponseError(RemoteError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class NotFoundError(APIResponseError):
    """Raised when the remote record does not exist (404)."""
    def __init__(self, message: str, response_data: dict = None):
        super().__init__(404, message, response_data=response_data)

#
# End of hybrid_users/users_api/exceptions.py
########################################################################################################################
