import copy
import logging
from typing import Dict
from typing import List
from typing import Optional

from idpyoidc.exception import MissingRequiredAttribute

from fedtrust.defaults import ENTITY_TYPES
from fedtrust.entity_statement.constraints import TrustChainConstraints
from fedtrust.entity_statement.utils import normalize_entity_id
from fedtrust.exception import Expired
from fedtrust.exception import NotYetValid
from fedtrust.exception import ParseError
from fedtrust.function.metadata_policy import MetadataPolicy
from fedtrust.message import EntityStatementMessage

logger = logging.getLogger(__name__)


class EntityStatement(object):
    """
    The claims of a verified entity statement. Created once by parse() and not changed
    afterwards.
    """

    def __init__(self,
                 issuer: str,
                 subject: str,
                 issued_at: int,
                 expires_at: int,
                 jwks: Optional[dict] = None,
                 metadata: Optional[dict] = None,
                 metadata_policy: Optional[Dict[str, MetadataPolicy]] = None,
                 constraints: Optional[TrustChainConstraints] = None,
                 authority_hints: Optional[List[str]] = None,
                 critical: Optional[List[str]] = None,
                 policy_critical_operations: Optional[List[str]] = None,
                 audience: Optional[List[str]] = None,
                 jwt_id: Optional[str] = None,
                 trust_marks: Optional[list] = None,
                 claims: Optional[dict] = None,
                 signed_jwt: Optional[str] = None):
        self._issuer = issuer
        self._subject = subject
        self._issued_at = issued_at
        self._expires_at = expires_at
        self._jwks = jwks
        self._metadata = metadata or {}
        self._metadata_policy = metadata_policy
        self._constraints = constraints
        self._authority_hints = tuple(authority_hints) if authority_hints is not None else None
        self._critical = tuple(critical or [])
        self._policy_critical_operations = tuple(policy_critical_operations or [])
        self._audience = audience
        self._jwt_id = jwt_id
        self._trust_marks = trust_marks
        self._claims = claims or {}
        self._signed_jwt = signed_jwt

    @classmethod
    def parse(cls,
              claims: dict,
              signed_jwt: Optional[str] = None,
              known_extensions: Optional[List[str]] = None) -> "EntityStatement":
        """
        Builds an entity statement from the payload of a verified JWS.

        :param claims: The payload as a dictionary
        :param signed_jwt: The signed JWT the claims came from
        :param known_extensions: Critical extension claims this application understands
        """
        if not isinstance(claims, dict):
            raise ParseError("Entity statement claims must be a JSON object")

        for claim in ["iss", "sub", "iat", "exp"]:
            if claim not in claims:
                raise ParseError(f"Missing required claim '{claim}'")

        for claim in ["iat", "exp"]:
            if isinstance(claims[claim], bool) or not isinstance(claims[claim], int):
                raise ParseError(f"'{claim}' must be an integer")

        for claim in ["crit", "policy_language_crit"]:
            if claim in claims and (not isinstance(claims[claim], list) or not claims[claim]):
                raise ParseError(f"'{claim}' must be a non empty list")

        try:
            _msg = EntityStatementMessage(**claims)
            _msg.verify(known_extensions=known_extensions)
        except (ValueError, TypeError, MissingRequiredAttribute) as err:
            raise ParseError(f"Invalid entity statement: {err}") from err

        _metadata = copy.deepcopy(claims.get("metadata") or {})
        for entity_type, _value in _metadata.items():
            if not isinstance(_value, dict):
                raise ParseError(f"Metadata for '{entity_type}' must be a JSON object")
            if entity_type not in ENTITY_TYPES:
                logger.info(f"Unregistered entity type in metadata: {entity_type}")

        _policies = None
        if "metadata_policy" in claims:
            _policies = {}
            for entity_type, _policy in claims["metadata_policy"].items():
                if entity_type not in ENTITY_TYPES:
                    logger.info(f"Unregistered entity type in metadata_policy: {entity_type}")
                _policies[entity_type] = MetadataPolicy.parse(_policy)

        _constraints = None
        if "constraints" in claims:
            _constraints = TrustChainConstraints.parse(claims["constraints"])

        _hints = None
        if "authority_hints" in claims:
            _hints = [normalize_entity_id(h) for h in _msg["authority_hints"]]

        _jwks = claims.get("jwks")
        if _jwks is not None and not isinstance(_jwks.get("keys"), list):
            raise ParseError("'jwks' must hold a list of keys")

        return cls(
            issuer=normalize_entity_id(claims["iss"]),
            subject=normalize_entity_id(claims["sub"]),
            issued_at=claims["iat"],
            expires_at=claims["exp"],
            jwks=copy.deepcopy(_jwks),
            metadata=_metadata,
            metadata_policy=_policies,
            constraints=_constraints,
            authority_hints=_hints,
            critical=claims.get("crit"),
            policy_critical_operations=claims.get("policy_language_crit"),
            audience=_msg.get("aud"),
            jwt_id=claims.get("jti"),
            trust_marks=claims.get("trust_marks"),
            claims=copy.deepcopy(claims),
            signed_jwt=signed_jwt
        )

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def issued_at(self) -> int:
        return self._issued_at

    @property
    def expires_at(self) -> int:
        return self._expires_at

    @property
    def jwks(self) -> Optional[dict]:
        return copy.deepcopy(self._jwks)

    @property
    def metadata(self) -> dict:
        return copy.deepcopy(self._metadata)

    @property
    def metadata_policy(self) -> Optional[Dict[str, MetadataPolicy]]:
        if self._metadata_policy is None:
            return None
        return dict(self._metadata_policy)

    @property
    def constraints(self) -> Optional[TrustChainConstraints]:
        return self._constraints

    @property
    def authority_hints(self) -> Optional[List[str]]:
        if self._authority_hints is None:
            return None
        return list(self._authority_hints)

    @property
    def critical(self) -> List[str]:
        return list(self._critical)

    @property
    def policy_critical_operations(self) -> List[str]:
        return list(self._policy_critical_operations)

    @property
    def audience(self) -> Optional[List[str]]:
        return self._audience

    @property
    def jwt_id(self) -> Optional[str]:
        return self._jwt_id

    @property
    def trust_marks(self) -> Optional[list]:
        return self._trust_marks

    @property
    def signed_jwt(self) -> Optional[str]:
        return self._signed_jwt

    def is_self_issued(self) -> bool:
        return self._issuer == self._subject

    def has_metadata(self) -> bool:
        return bool(self._metadata)

    def get_metadata(self, entity_type: str) -> Optional[dict]:
        _metadata = self._metadata.get(entity_type)
        if _metadata is None:
            return None
        return copy.deepcopy(_metadata)

    def policy_for(self, entity_type: str) -> Optional[MetadataPolicy]:
        if self._metadata_policy is None:
            return None
        return self._metadata_policy.get(entity_type)

    def check_validity(self, now: int, allowed_skew: Optional[int] = 0):
        if now + allowed_skew < self._issued_at:
            raise NotYetValid(
                f"Statement by {self._issuer} about {self._subject} issued in the future: "
                f"{self._issued_at} > {now}")
        if now - allowed_skew >= self._expires_at:
            raise Expired(
                f"Statement by {self._issuer} about {self._subject} expired: "
                f"{self._expires_at} <= {now}")

    def is_expired(self, now: int) -> bool:
        return self._expires_at <= now

    def to_dict(self) -> dict:
        return copy.deepcopy(self._claims)

    def __getitem__(self, item):
        return self._claims[item]

    def __contains__(self, item):
        return item in self._claims

    def __eq__(self, other):
        if not isinstance(other, EntityStatement):
            return False
        return self._claims == other.to_dict() and self._signed_jwt == other.signed_jwt

    def __hash__(self):
        return hash((self._issuer, self._subject, self._issued_at))

    def __repr__(self):
        return f"EntityStatement(iss={self._issuer!r}, sub={self._subject!r})"


class TrustChain(object):
    """
    The result of resolving a trust chain. Statements are ordered from the trust anchor's
    entity configuration down to the leaf's entity configuration.
    """

    def __init__(self,
                 statements: List[EntityStatement],
                 metadata: Optional[dict] = None,
                 combined_policy: Optional[Dict[str, MetadataPolicy]] = None):
        if not statements:
            raise ValueError("A trust chain can not be empty")

        self._statements = tuple(statements)
        self._exp = min(s.expires_at for s in statements)
        self._metadata = copy.deepcopy(metadata or {})
        self._combined_policy = dict(combined_policy or {})

        # The entities in the chain, leaf first
        _path = [s.issuer for s in statements[1:]]
        _path.reverse()
        self._iss_path = tuple(_path or [statements[0].subject])

    @property
    def statements(self) -> List[EntityStatement]:
        return list(self._statements)

    @property
    def verified_chain(self) -> List[dict]:
        return [s.to_dict() for s in self._statements]

    @property
    def exp(self) -> int:
        return self._exp

    @property
    def expires_at(self) -> int:
        return self._exp

    @property
    def anchor(self) -> str:
        return self._statements[0].issuer

    @property
    def leaf(self) -> EntityStatement:
        return self._statements[-1]

    @property
    def iss_path(self) -> List[str]:
        return list(self._iss_path)

    @property
    def metadata(self) -> dict:
        return copy.deepcopy(self._metadata)

    @property
    def combined_policy(self) -> Dict[str, MetadataPolicy]:
        return dict(self._combined_policy)

    def get_metadata(self, entity_type: str) -> Optional[dict]:
        _metadata = self._metadata.get(entity_type)
        if _metadata is None:
            return None
        return copy.deepcopy(_metadata)

    def keys(self):
        return self._metadata.keys()

    def items(self):
        return self.metadata.items()

    def __getitem__(self, item):
        return copy.deepcopy(self._metadata[item])

    def __contains__(self, item):
        return item in self._metadata

    def __len__(self):
        return len(self._statements)

    def is_expired(self, now: int) -> bool:
        if self._exp <= now:
            logger.debug(f'is_expired: {self._exp} <= {now}')
            return True
        else:
            return False

    def export_chain(self) -> List[str]:
        """
        Exports the verified chain in such a way that it can be used as value on the
        trust_chain claim in an authorization or explicit registration request.
        The leaf's entity configuration comes first.
        """
        _chain = [s.signed_jwt for s in self._statements]
        _chain.reverse()
        return _chain
