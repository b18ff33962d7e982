"""Error kinds raised by the bin/route/collection operations."""


class WasteOpsError(Exception):
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.message}


class NotFound(WasteOpsError):
    status_code = 404

    @classmethod
    def for_id(cls, kind, ident):
        return cls(f"{kind} not found with id: {ident}")


class DuplicateQrCode(WasteOpsError):
    status_code = 409

    def __init__(self, qr_code):
        super().__init__(f"Bin with QR code {qr_code} already exists")
        self.qr_code = qr_code


class InvalidTransition(WasteOpsError):
    status_code = 409

    def __init__(self, kind, ident, current, target):
        super().__init__(f"{kind} {ident} cannot move from {current} to {target}")
        self.current = current
        self.target = target


class ValidationError(WasteOpsError):
    status_code = 400


class DisposalFailed(WasteOpsError):
    """Storage kept failing after every retry of a resident disposal."""

    status_code = 503

    def __init__(self, message, disposal_id=None):
        super().__init__(message)
        self.disposal_id = disposal_id
