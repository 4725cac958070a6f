import json
import logging
from typing import Iterable
from typing import List
from typing import Optional
from typing import Union

from fedtrust.exception import ParseError
from fedtrust.function.policy_applier import PolicyApplier
from fedtrust.function.policy_operator import parse_operation
from fedtrust.function.policy_operator import PolicyOperation
from fedtrust.function.policy_operator import Unknown

logger = logging.getLogger(__name__)


class MetadataPolicyEntry(object):
    """The policy operations for one metadata parameter."""

    def __init__(self, parameter_name: str, operations: Iterable[PolicyOperation]):
        self._parameter_name = parameter_name
        _ops = {}
        for op in operations:
            # Only one operation of a kind per parameter, the last one wins
            _ops[op.name] = op
        self._operations = _ops

    @property
    def parameter_name(self) -> str:
        return self._parameter_name

    @property
    def operations(self) -> List[PolicyOperation]:
        return list(self._operations.values())

    def get_operation(self, name: str) -> Optional[PolicyOperation]:
        return self._operations.get(name)

    def operation_names(self) -> List[str]:
        return list(self._operations.keys())

    def unknown_operations(self) -> List[Unknown]:
        return [op for op in self._operations.values() if isinstance(op, Unknown)]

    def serialize(self) -> dict:
        return {name: op.to_config() for name, op in self._operations.items()}

    def __eq__(self, other):
        if not isinstance(other, MetadataPolicyEntry):
            return False
        return (self._parameter_name == other.parameter_name
                and self.serialize() == other.serialize())

    def __repr__(self):
        return f"MetadataPolicyEntry({self._parameter_name!r}, {self.operations!r})"


class MetadataPolicy(object):
    """
    The metadata policy for one entity type: an ordered mapping from metadata parameter
    name to the policy operations that apply to it. Instances are not modified after
    construction.
    """

    def __init__(self, entries: Optional[Iterable[MetadataPolicyEntry]] = None):
        self._entries = {}
        for entry in entries or []:
            self._entries[entry.parameter_name] = entry

    @classmethod
    def parse(cls, json_object: Union[dict, str]) -> "MetadataPolicy":
        """
        :param json_object: {"<parameter>": {"<operation>": <config>, ...}, ...} either as a
            dictionary or as a JSON document.
        """
        if isinstance(json_object, str):
            try:
                json_object = json.loads(json_object)
            except ValueError as err:
                raise ParseError(f"Metadata policy not valid JSON: {err}") from err

        if not isinstance(json_object, dict):
            raise ParseError("Metadata policy must be a JSON object")

        entries = []
        for parameter, operations in json_object.items():
            if not isinstance(operations, dict):
                raise ParseError(f"Policy for '{parameter}' must be a JSON object")
            entries.append(MetadataPolicyEntry(
                parameter, [parse_operation(name, config) for name, config in operations.items()]))

        return cls(entries)

    def serialize(self) -> dict:
        return {name: entry.serialize() for name, entry in self._entries.items()}

    def to_json(self) -> str:
        return json.dumps(self.serialize())

    def get(self, parameter: str) -> Optional[List[PolicyOperation]]:
        _entry = self._entries.get(parameter)
        if _entry is None:
            return None
        return _entry.operations

    def get_entry(self, parameter: str) -> Optional[MetadataPolicyEntry]:
        return self._entries.get(parameter)

    def get_operation(self, parameter: str, name: str) -> Optional[PolicyOperation]:
        _entry = self._entries.get(parameter)
        if _entry is None:
            return None
        return _entry.get_operation(name)

    def entries(self) -> List[MetadataPolicyEntry]:
        return list(self._entries.values())

    def parameter_names(self) -> List[str]:
        return list(self._entries.keys())

    def apply(self, metadata: dict) -> dict:
        return PolicyApplier().apply(self, metadata)

    def __contains__(self, parameter):
        return parameter in self._entries

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def __bool__(self):
        return bool(self._entries)

    def __eq__(self, other):
        if not isinstance(other, MetadataPolicy):
            return False
        return self.serialize() == other.serialize()

    def __repr__(self):
        return f"MetadataPolicy({self.serialize()})"
