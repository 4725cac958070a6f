""" Message classes describing the claims of an OpenID Connect Federation entity statement."""
import logging

from idpyoidc.message import Message
from idpyoidc.message import msg_ser
from idpyoidc.message import OPTIONAL_LIST_OF_STRINGS
from idpyoidc.message import SINGLE_OPTIONAL_INT
from idpyoidc.message import SINGLE_OPTIONAL_JSON
from idpyoidc.message import SINGLE_OPTIONAL_STRING
from idpyoidc.message import SINGLE_REQUIRED_INT
from idpyoidc.message import SINGLE_REQUIRED_STRING
from idpyoidc.message.oidc import deserialize_from_one_of
from idpyoidc.message.oidc import SINGLE_OPTIONAL_DICT

from fedtrust.defaults import ENTITY_STATEMENT_CLAIMS
from fedtrust.exception import UnknownCriticalExtension

logger = logging.getLogger(__name__)


class NamingConstraints(Message):
    """Class representing naming constraints."""
    c_param = {
        "permitted": OPTIONAL_LIST_OF_STRINGS,
        "excluded": OPTIONAL_LIST_OF_STRINGS
    }


def naming_constraints_deser(val, sformat="json"):
    """Deserializes a JSON object (most likely) into an NamingConstraints."""
    return deserialize_from_one_of(val, NamingConstraints, sformat)


SINGLE_OPTIONAL_NAMING_CONSTRAINTS = (Message, False, msg_ser, naming_constraints_deser, False)


class Constraints(Message):
    """The types of constraints that can be applied to a trust chain."""
    c_param = {
        "max_path_length": SINGLE_OPTIONAL_INT,
        "naming_constraints": SINGLE_OPTIONAL_NAMING_CONSTRAINTS
    }


def constraints_deser(val, sformat="json"):
    """Deserializes a JSON object (most likely) into a Constraints."""
    return deserialize_from_one_of(val, Constraints, sformat)


SINGLE_OPTIONAL_CONSTRAINTS = (Message, False, msg_ser, constraints_deser, False)


class EntityStatementMessage(Message):
    """The Entity Statement"""
    c_param = {
        "iss": SINGLE_REQUIRED_STRING,
        "sub": SINGLE_REQUIRED_STRING,
        "iat": SINGLE_REQUIRED_INT,
        "exp": SINGLE_REQUIRED_INT,
        "jwks": SINGLE_OPTIONAL_DICT,
        "aud": OPTIONAL_LIST_OF_STRINGS,
        "jti": SINGLE_OPTIONAL_STRING,
        "authority_hints": OPTIONAL_LIST_OF_STRINGS,
        "metadata": SINGLE_OPTIONAL_JSON,
        "metadata_policy": SINGLE_OPTIONAL_JSON,
        "constraints": SINGLE_OPTIONAL_CONSTRAINTS,
        "crit": OPTIONAL_LIST_OF_STRINGS,
        "policy_language_crit": OPTIONAL_LIST_OF_STRINGS,
        "trust_anchor_id": SINGLE_OPTIONAL_STRING
    }

    def verify(self, **kwargs):
        super(EntityStatementMessage, self).verify(**kwargs)

        _critical = self.get("crit")
        if _critical is not None:
            if not _critical:
                raise ValueError("Empty list not allowed for 'crit'")

            _missing = [c for c in _critical if c not in self]
            if _missing:
                raise UnknownCriticalExtension(f"Missing critical claim(s): {_missing}")

            _extensions = set(_critical).difference(ENTITY_STATEMENT_CLAIMS)
            if _extensions:
                _known = kwargs.get("known_extensions") or []
                if set(_known).issuperset(_extensions) is False:
                    raise UnknownCriticalExtension(_extensions.difference(set(_known)))

        _policy_crit = self.get("policy_language_crit")
        if _policy_crit is not None and not _policy_crit:
            raise ValueError("Empty list not allowed for 'policy_language_crit'")

        for claim in ["metadata", "metadata_policy"]:
            _value = self.get(claim)
            if _value is not None and not isinstance(_value, dict):
                raise ValueError(f"'{claim}' must be a JSON object")

        return True
