class FedTrustError(Exception):
    pass


class ParseError(FedTrustError):
    pass


class UnknownCriticalExtension(ParseError):
    pass


class ResolutionError(FedTrustError):
    pass


class FetchError(ResolutionError):
    pass


class SignatureInvalid(ResolutionError):
    pass


class Expired(ResolutionError):
    pass


class NotYetValid(ResolutionError):
    pass


class CycleDetected(ResolutionError):
    pass


class NoTrustPath(ResolutionError):
    pass


class WrongSubject(ResolutionError):
    pass


class ConstraintViolation(ResolutionError):
    MAX_PATH_LENGTH_EXCEEDED = "max_path_length_exceeded"
    NAMING_PERMITTED = "naming_constraint_permitted"
    NAMING_EXCLUDED = "naming_constraint_excluded"

    def __init__(self, kind, detail=""):
        ResolutionError.__init__(self, f"{kind}: {detail}" if detail else kind)
        self.kind = kind
        self.detail = detail


class PolicyViolation(FedTrustError):
    CONFLICTING_VALUE = "conflicting_value"
    EMPTY_INTERSECTION = "empty_intersection"
    INCONSISTENT_DEFAULT = "inconsistent_default"
    UNSUPPORTED_CRITICAL_OPERATION = "unsupported_critical_operation"
    ESSENTIAL_MISSING = "essential_missing"
    VALUE_NOT_ALLOWED = "value_not_allowed"

    def __init__(self, parameter, operation, detail, kind):
        FedTrustError.__init__(self, f"{parameter}/{operation}: {detail}")
        self.parameter = parameter
        self.operation = operation
        self.detail = detail
        self.kind = kind


class UnsupportedCriticalOperation(PolicyViolation):

    def __init__(self, parameter, operation, detail=""):
        PolicyViolation.__init__(self, parameter or "*", operation,
                                 detail or f"Critical policy operation '{operation}' not supported",
                                 PolicyViolation.UNSUPPORTED_CRITICAL_OPERATION)
