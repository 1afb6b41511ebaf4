class CrmError(Exception):
    """A CRM call failed: transport error, HTTP error, or an error payload."""

    def __init__(self, message, status_code=None, detail=None, method=None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.method = method

    def __str__(self):
        base = super().__str__()
        if self.detail and self.detail not in base:
            return f"{base}: {self.detail}"
        return base


class UnknownFieldError(KeyError):
    """A local field has no entry in the CRM translation table."""

    def __str__(self):
        return f"No CRM field mapping for {self.args[0]!r}"
