"""
Domain error taxonomy.

Services raise these; main.py translates them into HTTP responses of the form
{"detail": message} with the status code carried by the exception class.
"""

from fastapi import status


class TeamworkError(Exception):
    """Base class for every expected failure of a core operation."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Unexpected error"
    headers = None

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(TeamworkError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"
    headers = {"WWW-Authenticate": "Bearer"}


class Forbidden(TeamworkError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class NotFound(TeamworkError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AlreadyMember(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "User is already a member of this team"


class InvalidLead(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Only team leads and admins can lead a team"


class InvalidAssignee(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Some assignees are not members of the team"


class InvalidObserver(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Some observers are not members of the team"


class InvalidParent(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Parent task not found in this project"


class InvalidRelatedTask(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Some related tasks were not found in this project"


class CyclicDependency(TeamworkError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Circular task hierarchy detected"


class Unexpected(TeamworkError):
    pass
