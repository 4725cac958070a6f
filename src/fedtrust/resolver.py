import logging
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from fedtrust.defaults import DEFAULT_ALLOWED_SKEW
from fedtrust.defaults import DEFAULT_MAX_HOPS
from fedtrust.entity_statement.statement import EntityStatement
from fedtrust.entity_statement.statement import TrustChain
from fedtrust.entity_statement.verify import JWSVerifier
from fedtrust.entity_statement.verify import verify_self_signed_signature
from fedtrust.exception import ConstraintViolation
from fedtrust.exception import CycleDetected
from fedtrust.exception import Expired
from fedtrust.exception import FedTrustError
from fedtrust.exception import NotYetValid
from fedtrust.exception import PolicyViolation
from fedtrust.exception import SignatureInvalid
from fedtrust.function.policy import MetadataPolicyEngine
from fedtrust.function.policy_applier import PolicyApplier
from fedtrust.function.trust_chain_walker import ChainWalker
from fedtrust.utils import FixedClock

logger = logging.getLogger(__name__)


class State(object):
    START = "START"
    RESOLVING = "RESOLVING"
    ANCHOR_REACHED = "ANCHOR_REACHED"
    POLICY_MERGING = "POLICY_MERGING"
    POLICY_APPLYING = "POLICY_APPLYING"
    RESOLVED = "RESOLVED"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    EXPIRED = "EXPIRED"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    NO_PATH = "NO_PATH"
    POLICY_CONFLICT = "POLICY_CONFLICT"


def failure_state(err: Exception) -> str:
    if isinstance(err, ConstraintViolation):
        return State.CONSTRAINT_VIOLATION
    elif isinstance(err, SignatureInvalid):
        return State.SIGNATURE_INVALID
    elif isinstance(err, (Expired, NotYetValid)):
        return State.EXPIRED
    elif isinstance(err, CycleDetected):
        return State.CYCLE_DETECTED
    elif isinstance(err, PolicyViolation):
        return State.POLICY_CONFLICT
    else:
        return State.NO_PATH


def _transition(leaf_id: str, state: str, info: Optional[str] = ""):
    if info:
        logger.debug(f"{leaf_id}: {state} ({info})")
    else:
        logger.debug(f"{leaf_id}: {state}")


class TrustChainResolver(object):
    """
    Resolves and evaluates trust chains.

    :param fetcher: Something with a fetch_statement(issuer, subject) method
    :param verifier: Something with a verify(signed_jwt, jwks) method
    :param clock: Something with a now() method
    :param max_hops: The maximum number of statements in a chain
    :param allowed_skew: Seconds of clock skew accepted
    :param engine: A MetadataPolicyEngine instance
    :param applier: A PolicyApplier instance
    :param known_extensions: Critical extension claims that are understood
    """

    def __init__(self,
                 fetcher,
                 verifier=None,
                 clock=None,
                 max_hops: int = DEFAULT_MAX_HOPS,
                 allowed_skew: int = DEFAULT_ALLOWED_SKEW,
                 engine: Optional[MetadataPolicyEngine] = None,
                 applier: Optional[PolicyApplier] = None,
                 known_extensions: Optional[List[str]] = None):
        self.verifier = verifier or JWSVerifier()
        self.known_extensions = known_extensions
        self.walker = ChainWalker(fetcher, verifier=self.verifier, clock=clock,
                                  max_hops=max_hops, allowed_skew=allowed_skew,
                                  known_extensions=known_extensions)
        self.engine = engine or MetadataPolicyEngine()
        self.applier = applier or PolicyApplier()

    def leaf_statement(self, leaf: Union[EntityStatement, str]) -> EntityStatement:
        if isinstance(leaf, EntityStatement):
            return leaf

        claims = verify_self_signed_signature(leaf, self.verifier)
        return EntityStatement.parse(claims, signed_jwt=leaf,
                                     known_extensions=self.known_extensions)

    def evaluate(self, statements: List[EntityStatement],
                 entity_type: Optional[str] = None) -> TrustChain:
        """
        Combines the policies in a verified chain and applies them to the leaf's metadata.

        :param statements: EntityStatement instances, trust anchor first
        :param entity_type: Only evaluate metadata of this type
        :return: A TrustChain instance
        """
        leaf = statements[-1]
        if entity_type:
            _types = [entity_type]
        else:
            _types = list(leaf.metadata.keys())

        if len(statements) == 1:
            _metadata = {t: leaf.get_metadata(t) for t in _types if t in leaf.metadata}
            return TrustChain(statements, metadata=_metadata)

        _transition(leaf.subject, State.POLICY_MERGING)
        self.engine.check_critical_operations(statements)
        _policies = {}
        _superior_metadata = {}
        for _type in _types:
            _policies[_type] = self.engine.merge(statements, _type)
            _superior_metadata[_type] = self.engine.combine_metadata(statements, _type)

        _transition(leaf.subject, State.POLICY_APPLYING)
        _metadata = {}
        for _type in _types:
            _leaf_metadata = leaf.get_metadata(_type)
            if _leaf_metadata is None:
                logger.debug(f"{leaf.subject} has no {_type} metadata")
                continue
            _leaf_metadata.update(_superior_metadata[_type])
            _metadata[_type] = self.applier.apply(_policies[_type], _leaf_metadata)

        return TrustChain(statements, metadata=_metadata, combined_policy=_policies)

    def resolve(self,
                leaf: Union[EntityStatement, str],
                anchor_id: str,
                anchor_keys: dict,
                entity_type: Optional[str] = None,
                max_hops: Optional[int] = None,
                now: Optional[int] = None) -> TrustChain:
        """
        :param leaf: The leaf's entity configuration, either verified and parsed or as a
            signed JWT
        :param anchor_id: The trust anchor's entity ID
        :param anchor_keys: The trust anchor's JWKS
        :param entity_type: Only evaluate metadata of this type
        :param max_hops: Overrides the configured max_hops
        :param now: Overrides the clock
        :return: A TrustChain instance
        """
        _state = State.START
        leaf = self.leaf_statement(leaf)
        _leaf_id = leaf.subject

        try:
            _state = State.RESOLVING
            _transition(_leaf_id, _state, f"trust anchor {anchor_id}")
            statements = self.walker.resolve(leaf, anchor_id, anchor_keys, max_hops=max_hops,
                                             now=now)

            _state = State.ANCHOR_REACHED
            _transition(_leaf_id, _state, " <- ".join(s.issuer for s in statements))
            trust_chain = self.evaluate(statements, entity_type)
        except FedTrustError as err:
            _failure = failure_state(err)
            logger.error(f"{_leaf_id}: {_state} -> {_failure}: {err}")
            raise

        _transition(_leaf_id, State.RESOLVED, f"expires at {trust_chain.expires_at}")
        return trust_chain

    def resolve_with_trust_anchors(self,
                                   leaf: Union[EntityStatement, str],
                                   trust_anchors: Dict[str, dict],
                                   entity_type: Optional[str] = None) -> List[TrustChain]:
        """
        Tries every trust anchor in turn.

        :param leaf: The leaf's entity configuration
        :param trust_anchors: Dictionary with trust anchor entity ID as key and its JWKS
            as value
        :param entity_type: Only evaluate metadata of this type
        :return: The trust chains that could be resolved, in trust anchor order
        """
        leaf = self.leaf_statement(leaf)
        res = []
        for anchor_id, anchor_keys in trust_anchors.items():
            try:
                res.append(self.resolve(leaf, anchor_id, anchor_keys, entity_type=entity_type))
            except FedTrustError as err:
                logger.warning(f"No trust chain from {leaf.subject} to {anchor_id}: {err}")
        return res


def resolve_trust_chain(leaf_statement: Union[EntityStatement, str],
                        anchor_id: str,
                        anchor_keys: dict,
                        fetcher,
                        **options) -> TrustChain:
    """
    Resolves a trust chain from a leaf entity to a trust anchor and returns the leaf's
    metadata with the combined metadata policy applied.

    :param leaf_statement: The leaf's entity configuration, either as an EntityStatement
        or as a signed JWT
    :param anchor_id: The trust anchor's entity ID
    :param anchor_keys: The trust anchor's JWKS
    :param fetcher: Something with a fetch_statement(issuer, subject) method
    :param options: verifier, clock, now, max_hops, allowed_skew, entity_type,
        known_extensions
    :return: A TrustChain instance
    """
    _entity_type = options.pop("entity_type", None)
    _now = options.pop("now", None)
    if _now is not None:
        options["clock"] = FixedClock(_now)

    resolver = TrustChainResolver(fetcher, **options)
    return resolver.resolve(leaf_statement, anchor_id, anchor_keys, entity_type=_entity_type)
