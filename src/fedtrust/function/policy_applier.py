import copy
import logging

from fedtrust.exception import PolicyViolation
from fedtrust.function.policy_operator import check_dispatch

logger = logging.getLogger(__name__)

POLICY_APPLICATION_ORDER = ['value', 'add', 'default', 'one_of', 'subset_of', 'superset_of',
                            'essential']

# A policy entry for a parameter the metadata does not have only has an effect if it
# carries one of these, or 'essential' set to true which then fails. Restrictions like
# 'one_of' or 'subset_of' on an absent parameter are inert.
SYNTHESIZING_OPERATIONS = ("value", "add", "default")


def synthesizes(operations: dict) -> bool:
    return any(name in operations for name in SYNTHESIZING_OPERATIONS)


def _as_list(value):
    if isinstance(value, list):
        return value
    return [value]


def do_value(claim, operation, operations, metadata):
    if operation.config is None:
        # A null value means the parameter must not be there
        if claim in metadata:
            del metadata[claim]
    else:
        # value overrides everything
        metadata[claim] = copy.deepcopy(operation.config)


def do_add(claim, operation, operations, metadata):
    if "value" in operations:
        return

    if claim not in metadata:
        metadata[claim] = copy.deepcopy(operation.values)
    elif isinstance(metadata[claim], list):
        for val in operation.values:
            if val not in metadata[claim]:
                metadata[claim].append(copy.deepcopy(val))
    else:
        raise PolicyViolation(claim, operation.name,
                              f"Can not add to a non array value: {metadata[claim]!r}",
                              PolicyViolation.VALUE_NOT_ALLOWED)


def do_default(claim, operation, operations, metadata):
    if "value" in operations:
        return

    if claim not in metadata:
        metadata[claim] = copy.deepcopy(operation.config)


def do_one_of(claim, operation, operations, metadata):
    if claim in metadata:
        if metadata[claim] not in operation.values:
            raise PolicyViolation(claim, operation.name,
                                  f"{metadata[claim]!r} not among {operation.values}",
                                  PolicyViolation.VALUE_NOT_ALLOWED)


def do_subset_of(claim, operation, operations, metadata):
    if claim in metadata:
        _allowed = operation.values
        _extra = [v for v in _as_list(metadata[claim]) if v not in _allowed]
        if _extra:
            raise PolicyViolation(claim, operation.name,
                                  f"{_extra} not in allowed subset: {_allowed}",
                                  PolicyViolation.VALUE_NOT_ALLOWED)


def do_superset_of(claim, operation, operations, metadata):
    if claim in metadata:
        _value = _as_list(metadata[claim])
        _missing = [v for v in operation.values if v not in _value]
        if _missing:
            raise PolicyViolation(claim, operation.name,
                                  f"{metadata[claim]!r} not superset of {operation.values}",
                                  PolicyViolation.VALUE_NOT_ALLOWED)


def do_essential(claim, operation, operations, metadata):
    if operation.config is True and metadata.get(claim) is None:
        raise PolicyViolation(claim, operation.name, f"Essential value missing for {claim}",
                              PolicyViolation.ESSENTIAL_MISSING)


APPLY_OPERATION = {
    "value": do_value,
    "add": do_add,
    "default": do_default,
    "one_of": do_one_of,
    "subset_of": do_subset_of,
    "superset_of": do_superset_of,
    "essential": do_essential
}

check_dispatch(APPLY_OPERATION, "PolicyApplier")


class PolicyApplier(object):
    """
    Applies a combined metadata policy to the metadata an entity published about itself.
    """

    def apply_entry(self, claim, operations: dict, metadata: dict):
        if claim not in metadata and not synthesizes(operations):
            # Only a missing essential parameter matters here
            if "essential" in operations:
                do_essential(claim, operations["essential"], operations, metadata)
            return

        for name in POLICY_APPLICATION_ORDER:
            if name in operations:
                APPLY_OPERATION[name](claim, operations[name], operations, metadata)

    def apply(self, policy, metadata: dict) -> dict:
        """
        Apply a metadata policy to a metadata statement.

        :param policy: A MetadataPolicy instance
        :param metadata: Metadata as a dictionary
        :return: A new dictionary. Parameters the policy says nothing about are copied as is.
        """
        _metadata = copy.deepcopy(dict(metadata))

        for entry in policy.entries():
            _ops = {op.name: op for op in entry.operations if op.name in APPLY_OPERATION}
            _ignored = [op.name for op in entry.operations if op.name not in APPLY_OPERATION]
            if _ignored:
                logger.debug(f"Ignoring unknown operations {_ignored} on {entry.parameter_name}")
            self.apply_entry(entry.parameter_name, _ops, _metadata)

        return _metadata
