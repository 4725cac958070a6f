import json
import logging
from typing import List
from typing import Optional
from typing import Union

from idpyoidc.exception import MissingRequiredAttribute

from fedtrust.entity_statement.utils import matches_prefix
from fedtrust.entity_statement.utils import normalize_entity_id
from fedtrust.exception import ParseError
from fedtrust.message import Constraints

logger = logging.getLogger(__name__)


class TrustChainConstraints(object):
    """
    Path length and naming constraints an authority places on the entities below it.
    A value of None means the dimension is unconstrained; max_path_length 0 is a real limit.
    """

    def __init__(self,
                 max_path_length: Optional[int] = None,
                 permitted: Optional[List[str]] = None,
                 excluded: Optional[List[str]] = None):
        if max_path_length is not None and max_path_length < 0:
            raise ParseError(f"max_path_length must not be negative: {max_path_length}")
        self._max_path_length = max_path_length
        self._permitted = tuple(permitted) if permitted is not None else None
        self._excluded = tuple(excluded) if excluded is not None else None

    @property
    def max_path_length(self) -> Optional[int]:
        return self._max_path_length

    @property
    def permitted(self) -> Optional[List[str]]:
        if self._permitted is None:
            return None
        return list(self._permitted)

    @property
    def excluded(self) -> Optional[List[str]]:
        if self._excluded is None:
            return None
        return list(self._excluded)

    def is_unconstrained(self) -> bool:
        return self._max_path_length is None and not self._permitted and not self._excluded

    def allows(self, entity_id: str) -> Optional[str]:
        """
        Checks an entity ID against the naming constraints.

        :return: None if allowed, otherwise the kind of constraint that rejected it
        """
        if self._excluded and excluded(entity_id, self._excluded):
            return "excluded"
        if self._permitted and not permitted(entity_id, self._permitted):
            return "permitted"
        return None

    @classmethod
    def parse(cls, json_object: Union[dict, str]) -> "TrustChainConstraints":
        if isinstance(json_object, str):
            try:
                json_object = json.loads(json_object)
            except ValueError as err:
                raise ParseError(f"Constraints not valid JSON: {err}") from err

        if not isinstance(json_object, dict):
            raise ParseError("Constraints must be a JSON object")

        _max = json_object.get("max_path_length")
        if _max is not None and (isinstance(_max, bool) or not isinstance(_max, int)):
            raise ParseError(f"max_path_length must be an integer: {_max!r}")

        try:
            _msg = Constraints(**json_object)
            _msg.verify()
        except (ValueError, TypeError, MissingRequiredAttribute) as err:
            raise ParseError(f"Invalid constraints: {err}") from err

        if _max is not None and _max < 0:
            raise ParseError(f"max_path_length must not be negative: {_max}")

        _permitted = None
        _excluded = None
        _naming = _msg.get("naming_constraints")
        if _naming:
            if _naming.get("permitted") is not None:
                _permitted = [normalize_entity_id(p) for p in _naming["permitted"]]
            if _naming.get("excluded") is not None:
                _excluded = [normalize_entity_id(p) for p in _naming["excluded"]]

        return cls(max_path_length=_max, permitted=_permitted, excluded=_excluded)

    def serialize(self) -> dict:
        res = {}
        if self._max_path_length is not None:
            res["max_path_length"] = self._max_path_length

        _naming = {}
        if self._permitted:
            _naming["permitted"] = list(self._permitted)
        if self._excluded:
            _naming["excluded"] = list(self._excluded)
        if _naming:
            res["naming_constraints"] = _naming

        return res

    def to_json(self) -> str:
        return json.dumps(self.serialize())

    def __eq__(self, other):
        if not isinstance(other, TrustChainConstraints):
            return False
        return self.serialize() == other.serialize()

    def __hash__(self):
        return hash(self.to_json())

    def __repr__(self):
        return f"TrustChainConstraints({self.serialize()})"


def excluded(entity_id: str, excluded_ids) -> bool:
    for excl in excluded_ids:
        if matches_prefix(entity_id, excl):
            return True
    return False


def permitted(entity_id: str, permitted_ids) -> bool:
    for perm in permitted_ids:
        if matches_prefix(entity_id, perm):
            return True
    return False
