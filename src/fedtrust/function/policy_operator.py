"""
The metadata policy operations.

Each operation is a small immutable value carrying its configuration. What an operation
does when policies are combined or applied is decided by the combiner and the applier,
both of which dispatch on the operation name over the full set in OPERATIONS.
"""
from types import MappingProxyType

from fedtrust.defaults import POLICY_OPERATION_NAMES
from fedtrust.exception import ParseError


def _is_json_object(val):
    return isinstance(val, dict)


class PolicyOperation(object):
    name = ""

    def __init__(self, config):
        self._config = config

    @property
    def config(self):
        return self._config

    def to_config(self):
        return self._config

    def __eq__(self, other):
        if not isinstance(other, PolicyOperation):
            return False
        return self.name == other.name and self.to_config() == other.to_config()

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return f"{self.__class__.__name__}({self._config!r})"


class ListOperation(PolicyOperation):
    """
    An operation configured with a list of values. A single value is accepted and kept
    as given, so that serializing returns what was parsed.
    """

    def __init__(self, config):
        if _is_json_object(config):
            raise ParseError(f"'{self.name}' must be configured with a value or a list of values")
        if isinstance(config, list):
            config = list(config)
        PolicyOperation.__init__(self, config)

    @property
    def values(self) -> list:
        if isinstance(self._config, list):
            return list(self._config)
        return [self._config]

    def to_config(self):
        if isinstance(self._config, list):
            return list(self._config)
        return self._config


class Value(PolicyOperation):
    name = "value"


class Default(PolicyOperation):
    name = "default"

    def __init__(self, config):
        if config is None:
            raise ParseError("'default' can not be null")
        PolicyOperation.__init__(self, config)


class Add(ListOperation):
    name = "add"


class OneOf(ListOperation):
    name = "one_of"


class SubsetOf(ListOperation):
    name = "subset_of"


class SupersetOf(ListOperation):
    name = "superset_of"


class Essential(PolicyOperation):
    name = "essential"

    def __init__(self, config):
        if not isinstance(config, bool):
            raise ParseError(f"'essential' must be a boolean: {config!r}")
        PolicyOperation.__init__(self, config)


class Unknown(PolicyOperation):
    """An operation this implementation does not know. Kept so it can be serialized again."""

    def __init__(self, name, config):
        PolicyOperation.__init__(self, config)
        self.name = name

    def __repr__(self):
        return f"Unknown({self.name!r}, {self._config!r})"


OPERATIONS = MappingProxyType({
    'value': Value,
    'add': Add,
    "default": Default,
    "one_of": OneOf,
    "subset_of": SubsetOf,
    "superset_of": SupersetOf,
    "essential": Essential
})


def check_dispatch(table, user):
    """Every operation must be handled by the combiner and the applier."""
    _missing = set(OPERATIONS).difference(table)
    if _missing:
        raise RuntimeError(f"{user} does not handle: {sorted(_missing)}")


check_dispatch(POLICY_OPERATION_NAMES, "POLICY_OPERATION_NAMES")


def is_known_operation(name: str) -> bool:
    return name in OPERATIONS


def parse_operation(name: str, config) -> PolicyOperation:
    try:
        _cls = OPERATIONS[name]
    except KeyError:
        return Unknown(name, config)
    return _cls(config)
