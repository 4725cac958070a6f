import copy
import logging
from typing import List
from typing import Optional

from fedtrust.exception import PolicyViolation
from fedtrust.exception import UnsupportedCriticalOperation
from fedtrust.function.metadata_policy import MetadataPolicy
from fedtrust.function.metadata_policy import MetadataPolicyEntry
from fedtrust.function.policy_applier import POLICY_APPLICATION_ORDER
from fedtrust.function.policy_operator import check_dispatch
from fedtrust.function.policy_operator import is_known_operation
from fedtrust.function.policy_operator import parse_operation

logger = logging.getLogger(__name__)


# Values may be JSON objects, which are not hashable, so sets are not used.

def _union(s1: list, s2: list) -> list:
    res = list(s1)
    for val in s2:
        if val not in res:
            res.append(val)
    return res


def _intersection(s1: list, s2: list) -> list:
    return [val for val in s1 if val in s2]


def _is_subset(s1: list, s2: list) -> bool:
    return all(val in s2 for val in s1)


def _as_list(value) -> list:
    if isinstance(value, list):
        return value
    return [value]


def combine_value(parameter, running, operation):
    if "value" in running and running["value"] != operation.config:
        raise PolicyViolation(parameter, "value",
                              f"{operation.config!r} differs from {running['value']!r}",
                              PolicyViolation.CONFLICTING_VALUE)
    running["value"] = copy.deepcopy(operation.config)


def combine_add(parameter, running, operation):
    running["add"] = _union(running.get("add", []), operation.values)


def combine_default(parameter, running, operation):
    # The most subordinate default is the one that counts
    running["default"] = copy.deepcopy(operation.config)


def _combine_intersection(parameter, running, operation):
    if operation.name in running:
        _res = _intersection(running[operation.name], operation.values)
        if not _res:
            raise PolicyViolation(parameter, operation.name,
                                  f"No overlap between {running[operation.name]} and "
                                  f"{operation.values}",
                                  PolicyViolation.EMPTY_INTERSECTION)
        running[operation.name] = _res
    else:
        running[operation.name] = operation.values


def combine_one_of(parameter, running, operation):
    _combine_intersection(parameter, running, operation)


def combine_subset_of(parameter, running, operation):
    _combine_intersection(parameter, running, operation)


def combine_superset_of(parameter, running, operation):
    running["superset_of"] = _union(running.get("superset_of", []), operation.values)


def combine_essential(parameter, running, operation):
    running["essential"] = running.get("essential", False) or operation.config


COMBINE_OPERATION = {
    "value": combine_value,
    "add": combine_add,
    "default": combine_default,
    "one_of": combine_one_of,
    "subset_of": combine_subset_of,
    "superset_of": combine_superset_of,
    "essential": combine_essential
}

check_dispatch(COMBINE_OPERATION, "MetadataPolicyEngine")


def check_superset_of(parameter, running):
    if "superset_of" not in running:
        return

    for name in ["subset_of", "one_of"]:
        if name in running and not _is_subset(running["superset_of"], running[name]):
            raise PolicyViolation(parameter, "superset_of",
                                  f"{running['superset_of']} not within {name} "
                                  f"{running[name]}",
                                  PolicyViolation.CONFLICTING_VALUE)


def check_value(parameter, running):
    _value = running.get("value")
    if _value is None:
        return

    if "one_of" in running and _value not in running["one_of"]:
        raise PolicyViolation(parameter, "value", f"{_value!r} not one of {running['one_of']}",
                              PolicyViolation.CONFLICTING_VALUE)
    if "subset_of" in running and not _is_subset(_as_list(_value), running["subset_of"]):
        raise PolicyViolation(parameter, "value",
                              f"{_value!r} not subset of {running['subset_of']}",
                              PolicyViolation.CONFLICTING_VALUE)
    if "superset_of" in running and not _is_subset(running["superset_of"], _as_list(_value)):
        raise PolicyViolation(parameter, "value",
                              f"{_value!r} not superset of {running['superset_of']}",
                              PolicyViolation.CONFLICTING_VALUE)


def check_default(parameter, running):
    if "default" not in running:
        return

    _default = running["default"]
    if "one_of" in running and _default not in running["one_of"]:
        raise PolicyViolation(parameter, "default",
                              f"{_default!r} not one of {running['one_of']}",
                              PolicyViolation.INCONSISTENT_DEFAULT)
    if "subset_of" in running and not _is_subset(_as_list(_default), running["subset_of"]):
        raise PolicyViolation(parameter, "default",
                              f"{_default!r} not subset of {running['subset_of']}",
                              PolicyViolation.INCONSISTENT_DEFAULT)
    if "superset_of" in running and not _is_subset(running["superset_of"], _as_list(_default)):
        raise PolicyViolation(parameter, "default",
                              f"{_default!r} not superset of {running['superset_of']}",
                              PolicyViolation.INCONSISTENT_DEFAULT)


def _parameter_using(statement, operation_name) -> str:
    for _policy in (statement.metadata_policy or {}).values():
        for entry in _policy.entries():
            if operation_name in entry.operation_names():
                return entry.parameter_name
    return "*"


def check_critical_operations(statement):
    """
    Operations a statement marks as critical must all be supported, whatever entity type
    the policy using them is for.

    :param statement: An EntityStatement
    """
    for name in statement.policy_critical_operations:
        if is_known_operation(name):
            continue
        logger.error(f"{statement.issuer} requires unsupported policy operation '{name}'")
        raise UnsupportedCriticalOperation(_parameter_using(statement, name), name)


class MetadataPolicyEngine(object):
    """
    Combines the metadata policies of all the authorities in a trust chain into one policy.
    Statements are folded in starting with the trust anchor's. A subordinate authority may
    restrict what its superiors allowed but never contradict it.
    """

    def _fold(self, combined: dict, statement, policy: MetadataPolicy):
        for entry in policy.entries():
            _running = combined.setdefault(entry.parameter_name, {})
            for operation in entry.operations:
                if operation.name in COMBINE_OPERATION:
                    COMBINE_OPERATION[operation.name](entry.parameter_name, _running, operation)
                else:
                    logger.debug(
                        f"Keeping unknown operation '{operation.name}' on "
                        f"{entry.parameter_name} from {statement.issuer}")
                    _running[operation.name] = copy.deepcopy(operation.config)

            check_superset_of(entry.parameter_name, _running)
            check_value(entry.parameter_name, _running)

    def merge(self, statements: list, entity_type: str) -> MetadataPolicy:
        """
        Combines the policies for one entity type.

        :param statements: EntityStatement instances, trust anchor first. Self-issued
            statements are ignored.
        :param entity_type: The metadata type, e.g. openid_relying_party
        :return: A MetadataPolicy instance
        """
        combined = {}
        for statement in statements:
            if statement.is_self_issued():
                continue
            check_critical_operations(statement)
            _policy = statement.policy_for(entity_type)
            if _policy is None:
                continue
            logger.debug(f"Combining {entity_type} policy from {statement.issuer}")
            self._fold(combined, statement, _policy)

        entries = []
        for parameter, running in combined.items():
            check_default(parameter, running)
            _names = [n for n in POLICY_APPLICATION_ORDER if n in running]
            _names.extend(n for n in running if n not in POLICY_APPLICATION_ORDER)
            entries.append(MetadataPolicyEntry(
                parameter, [parse_operation(n, running[n]) for n in _names]))

        return MetadataPolicy(entries)

    def merge_all(self, statements: list, entity_types: Optional[List[str]] = None) -> dict:
        """
        Combines the policies for every entity type any of the statements has a policy for.

        :return: Dictionary with entity type as key and MetadataPolicy as value
        """
        if entity_types is None:
            entity_types = []
            for statement in statements:
                if statement.is_self_issued() or statement.metadata_policy is None:
                    continue
                for _type in statement.metadata_policy.keys():
                    if _type not in entity_types:
                        entity_types.append(_type)

        return {t: self.merge(statements, t) for t in entity_types}

    def check_critical_operations(self, statements: list):
        for statement in statements:
            if not statement.is_self_issued():
                check_critical_operations(statement)

    def combine_metadata(self, statements: list, entity_type: str) -> dict:
        """
        Collects the metadata the leaf's superiors set for the leaf. These values replace
        whatever the leaf says about itself before any policy is applied. Metadata in a
        statement about someone else, e.g. the trust anchor's statement about an
        intermediate, describes that entity and is not used.

        :param statements: EntityStatement instances, trust anchor first and the leaf, or
            the leaf's immediate superior's statement about it, last
        :param entity_type: The metadata type
        :return: Dictionary of parameter values
        """
        if not statements:
            return {}

        _leaf_id = statements[-1].subject
        res = {}
        for statement in statements:
            if statement.is_self_issued() or statement.subject != _leaf_id:
                continue
            _metadata = statement.get_metadata(entity_type)
            if not _metadata:
                continue

            _policy = statement.policy_for(entity_type)
            if _policy is not None:
                _both = [p for p in _metadata if p in _policy]
                if _both:
                    raise PolicyViolation(
                        _both[0], "metadata",
                        f"{statement.issuer} sets both metadata and metadata_policy",
                        PolicyViolation.CONFLICTING_VALUE)

            for parameter, value in _metadata.items():
                if parameter in res and res[parameter] != value:
                    raise PolicyViolation(parameter, "metadata",
                                          f"{value!r} differs from {res[parameter]!r}",
                                          PolicyViolation.CONFLICTING_VALUE)
                res[parameter] = value

        return res
