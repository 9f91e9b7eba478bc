"""Custom exceptions for the quote pricing and negotiation engine."""
import enum


class ErrorKind(enum.Enum):
    """Error kinds surfaced to callers."""
    INVALID_INPUT = "InvalidInput"
    INVALID_CONFIG = "InvalidConfig"
    MISSING_CONDITION = "MissingCondition"
    IMMUTABLE = "Immutable"
    DUPLICATE_NAME = "DuplicateName"
    INVALID_TRANSITION = "InvalidTransition"
    CONCURRENT_MUTATION = "ConcurrentMutation"
    NOT_FOUND = "NotFound"


class QuoteEngineError(Exception):
    """Base exception for all application errors."""
    kind = None

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        if self.kind is not None:
            rv['kind'] = self.kind.value
        return rv


class InvalidInputError(QuoteEngineError):
    """Raised for negative amounts or malformed engine input."""
    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class InvalidConfigError(QuoteEngineError):
    """Raised when the pricing configuration cannot produce a price."""
    kind = ErrorKind.INVALID_CONFIG

    def __init__(self, message, payload=None):
        super().__init__(message, 422, payload)


class MissingConditionError(QuoteEngineError):
    """Raised when closing is attempted without a commercial condition."""
    kind = ErrorKind.MISSING_CONDITION

    def __init__(self, message="La cotización requiere una condición comercial para pasar a cierre.", payload=None):
        super().__init__(message, 409, payload)


class ImmutableQuoteError(QuoteEngineError):
    """Raised when a commercial field of an authorized quote is mutated."""
    kind = ErrorKind.IMMUTABLE

    def __init__(self, field, status="autorizada", payload=None):
        message = f"La cotización está {status}; '{field}' no puede modificarse."
        super().__init__(message, 409, dict(payload or (), field=field, quote_status=status))
        self.field = field


class DuplicateNameError(QuoteEngineError):
    """Raised when another quote of the same promise already uses the name."""
    kind = ErrorKind.DUPLICATE_NAME

    def __init__(self, name, payload=None):
        message = f"Ya existe una cotización llamada '{name}'."
        super().__init__(message, 409, dict(payload or (), name=name))
        self.name = name


class InvalidTransitionError(QuoteEngineError):
    """Raised for lifecycle transitions that are not legal."""
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, current, target):
        message = f"Transición inválida: {current} -> {target}"
        super().__init__(message, 409, {'current': current, 'target': target})


class ConcurrentMutationError(QuoteEngineError):
    """Raised when a mutating call is already in flight for the same quote."""
    kind = ErrorKind.CONCURRENT_MUTATION

    def __init__(self, key):
        super().__init__(f"Ya hay una operación en curso para {key}.", 409, {'key': key})


class NotFoundError(QuoteEngineError):
    """Exception raised when a resource is not found."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)
