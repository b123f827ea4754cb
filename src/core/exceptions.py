"""
HTTP-status-carrying exceptions shared by services and routers
"""
from fastapi import HTTPException, status


class NotFoundException(HTTPException):
    """An organization, workspace, role or other record does not exist"""
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictException(HTTPException):
    """Duplicate slug, membership or name"""
    def __init__(self, detail: str = "Already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ValidationException(HTTPException):
    """Request is well-formed but breaks a business rule"""
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ForbiddenException(HTTPException):
    """Authenticated, but lacking the role or permission"""
    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class UnauthorizedException(HTTPException):
    """Missing or invalid credentials"""
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class TooManyRequestsException(HTTPException):
    """Rate limit exceeded"""
    def __init__(self, detail: str = "Too many requests", headers: dict = None):
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail, headers=headers)


class ServiceUnavailableException(HTTPException):
    """A backing service (database, Redis, IdP) is not reachable"""
    def __init__(self, detail: str = "Service unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


class IdentityProviderError(Exception):
    """Raised by identity provider implementations"""
    pass


class BackupError(Exception):
    """Raised by the backup subsystem"""
    pass
