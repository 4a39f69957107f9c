"""
Engine error taxonomy.

Every failure the match engine reports is one of these.  Each carries a short
machine-checkable ``kind`` and the HTTP status the API layer maps it to; the
``detail`` string is safe to show to players (no storage internals).
"""


class MatchError(Exception):
    kind = "Internal"
    status_code = 500

    def __init__(self, detail: str = "Internal error"):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class Unauthorized(MatchError):
    kind = "Unauthorized"
    status_code = 401


class Forbidden(MatchError):
    kind = "Forbidden"
    status_code = 403


class NotFound(MatchError):
    kind = "NotFound"
    status_code = 404


class Conflict(MatchError):
    kind = "Conflict"
    status_code = 409


class Invalid(MatchError):
    kind = "Invalid"
    status_code = 400


class Internal(MatchError):
    kind = "Internal"
    status_code = 500
