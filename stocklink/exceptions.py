"""
Typed exceptions for stocklink.

    StockLinkError (base)
    |
    +-- StoreError                 any failed call to the platform
    |   +-- TransportError         timeout, connection failure, non-2xx, GraphQL errors
    |   +-- UserErrorsRaised       the platform accepted the call but rejected the input
    |
    +-- ExportError                the bulk export could not be started or read
    |
    +-- EditInFlight               an item already has an unconfirmed local edit

Every exception carries a machine-readable ``code``. Validation problems are not
exceptions: the reconciler reports them as ``Rejected`` results.
"""


class StockLinkError(Exception):
    code: str = "STOCKLINK_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.code}: {message}")


class StoreError(StockLinkError):
    code = "STORE_ERROR"


class TransportError(StoreError):
    code = "TRANSPORT_ERROR"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class UserErrorsRaised(StoreError):
    code = "USER_ERRORS"

    def __init__(self, errors: list[dict]):
        self.errors = errors
        detail = "; ".join(e.get("message", "unknown error") for e in errors)
        super().__init__(detail or "platform rejected the request")


class ExportError(StockLinkError):
    code = "EXPORT_ERROR"


class EditInFlight(StockLinkError):
    code = "EDIT_IN_FLIGHT"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item {item_id} already has an unconfirmed edit.")
