"""
Finds a path of verified entity statements from a leaf entity up to a trust anchor.

The search is a depth first walk over authority hints using an explicit stack of frames.
Hints are tried in the order they are listed and the first path that reaches the trust
anchor is returned.
"""
import logging
from typing import List
from typing import Optional
from typing import Set

from fedtrust.defaults import DEFAULT_ALLOWED_SKEW
from fedtrust.defaults import DEFAULT_MAX_HOPS
from fedtrust.entity_statement.constraints import excluded
from fedtrust.entity_statement.constraints import permitted
from fedtrust.entity_statement.statement import EntityStatement
from fedtrust.entity_statement.utils import normalize_entity_id
from fedtrust.entity_statement.verify import JWSVerifier
from fedtrust.entity_statement.verify import unverified_entity_statement
from fedtrust.exception import ConstraintViolation
from fedtrust.exception import CycleDetected
from fedtrust.exception import FetchError
from fedtrust.exception import NoTrustPath
from fedtrust.exception import ParseError
from fedtrust.exception import ResolutionError
from fedtrust.exception import SignatureInvalid
from fedtrust.exception import WrongSubject
from fedtrust.utils import SystemClock

logger = logging.getLogger(__name__)


class Frame(object):
    """
    One step of the walk.

    :param entity_id: The entity whose superiors are searched for
    :param configuration: The entity's own entity configuration
    :param path: The statements collected so far, leaf's entity configuration first. The
        last one is signed by entity_id.
    :param entities: The entities in the path, leaf first
    :param max_path_length: How many more intermediates the leaf's own constraints allow
        above entity_id
    :param permitted: The permitted lists of the leaf's own constraints
    :param excluded: The excluded list of the leaf's own constraints
    :param visited: The entities in the path as a set
    """

    def __init__(self,
                 entity_id: str,
                 configuration: EntityStatement,
                 path: List[EntityStatement],
                 entities: List[str],
                 max_path_length: Optional[int] = None,
                 permitted: Optional[List[List[str]]] = None,
                 excluded: Optional[List[str]] = None,
                 visited: Optional[Set[str]] = None):
        self.entity_id = entity_id
        self.configuration = configuration
        self.path = path
        self.entities = entities
        self.max_path_length = max_path_length
        self.permitted = permitted or []
        self.excluded = excluded or []
        self.visited = visited if visited is not None else set(entities)
        self.remaining_hints = list(configuration.authority_hints or [])

    @property
    def depth(self) -> int:
        """The number of authorities above the leaf a hint from this frame would be."""
        return len(self.path)

    def next_hint(self) -> Optional[str]:
        if self.remaining_hints:
            return self.remaining_hints.pop(0)
        return None

    def __repr__(self):
        return f"Frame({self.entity_id!r}, depth={self.depth}, hints={self.remaining_hints})"


class Resolution(object):
    """
    The state of one walk. Never shared between calls.
    """

    def __init__(self, walker, anchor_id: str, anchor_keys: dict, max_hops: int, now: int):
        self.walker = walker
        self.anchor_id = anchor_id
        self.anchor_keys = anchor_keys
        self.max_hops = max_hops
        self.now = now
        self.configurations = {}
        self.failure = None
        self.failure_depth = -1
        self.stack = []

    def record_failure(self, depth: int, hint: str, err: Exception):
        logger.warning(f"Authority hint {hint} at depth {depth} rejected: {err}")
        # The first failure at the deepest level is kept
        if depth > self.failure_depth:
            self.failure = err
            self.failure_depth = depth

    def _parse(self, claims: dict, signed_jwt: str) -> EntityStatement:
        return EntityStatement.parse(claims, signed_jwt=signed_jwt,
                                     known_extensions=self.walker.known_extensions)

    def check_validity(self, statement: EntityStatement):
        statement.check_validity(self.now, self.walker.allowed_skew)

    def get_configuration(self, entity_id: str) -> EntityStatement:
        """
        Fetches and verifies an entity's configuration. The trust anchor's configuration is
        verified with the trust anchor keys, everyone else's with the keys it carries.
        """
        if entity_id in self.configurations:
            return self.configurations[entity_id]

        logger.debug(f"Fetching entity configuration for {entity_id}")
        _jwt = self.walker.fetcher.fetch_statement(entity_id, entity_id)
        if entity_id == self.anchor_id:
            _jwks = self.anchor_keys
        else:
            _jwks = unverified_entity_statement(_jwt).get("jwks")
        claims = self.walker.verifier.verify(_jwt, _jwks)

        configuration = self._parse(claims, _jwt)
        if configuration.issuer != entity_id or configuration.subject != entity_id:
            raise WrongSubject(
                f"Entity configuration for {entity_id} issued by {configuration.issuer} "
                f"about {configuration.subject}")
        self.check_validity(configuration)

        self.configurations[entity_id] = configuration
        return configuration

    def get_subordinate_statement(self, authority: str, configuration: EntityStatement,
                                  subject: str) -> EntityStatement:
        logger.debug(f"Fetching statement by {authority} about {subject}")
        _jwt = self.walker.fetcher.fetch_statement(authority, subject)
        if authority == self.anchor_id:
            _jwks = self.anchor_keys
        else:
            _jwks = configuration.jwks
        claims = self.walker.verifier.verify(_jwt, _jwks)

        statement = self._parse(claims, _jwt)
        if statement.subject != subject:
            raise WrongSubject(
                f"Statement by {authority} is about {statement.subject}, expected {subject}")
        if statement.issuer != authority:
            raise WrongSubject(
                f"Statement about {subject} issued by {statement.issuer}, expected {authority}")
        self.check_validity(statement)
        return statement

    def check_subject_keys(self, frame: Frame, statement: EntityStatement):
        """
        The keys the superior publishes for an entity must verify what that entity signed.
        """
        _jwks = statement.jwks
        if not _jwks:
            raise SignatureInvalid(
                f"Statement by {statement.issuer} about {statement.subject} carries no keys")
        _signed = frame.path[-1].signed_jwt
        if _signed is None:
            raise SignatureInvalid(f"No signed JWT from {frame.entity_id} to verify")
        self.walker.verifier.verify(_signed, _jwks)

    def check_constraints(self, frame: Frame, statement: EntityStatement):
        """
        Constraints in a statement issued by an authority restrict the entities below
        that authority.
        """
        _constraints = statement.constraints
        if _constraints is None:
            return

        _intermediates = len(frame.entities) - 1
        _max = _constraints.max_path_length
        if _max is not None and _intermediates > _max:
            raise ConstraintViolation(
                ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED,
                f"{_intermediates} intermediates below {statement.issuer}, {_max} allowed")

        for entity_id in frame.entities:
            if _constraints.excluded and excluded(entity_id, _constraints.excluded):
                raise ConstraintViolation(
                    ConstraintViolation.NAMING_EXCLUDED,
                    f"{entity_id} excluded by {statement.issuer}")
            if _constraints.permitted and not permitted(entity_id, _constraints.permitted):
                raise ConstraintViolation(
                    ConstraintViolation.NAMING_PERMITTED,
                    f"{entity_id} not permitted by {statement.issuer}")

    def check_leaf_constraints(self, frame: Frame, hint: str):
        """
        Constraints in the leaf's own configuration restrict every authority above the leaf.
        Each intermediate uses up one step of the leaf's max_path_length.
        """
        if hint != self.anchor_id and frame.max_path_length is not None:
            if frame.max_path_length < 1:
                raise ConstraintViolation(
                    ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED,
                    f"No intermediate allowed above {frame.entity_id}: {hint}")

        if frame.excluded and excluded(hint, frame.excluded):
            raise ConstraintViolation(ConstraintViolation.NAMING_EXCLUDED,
                                      f"{hint} excluded by {frame.entities[0]}")
        for _permitted in frame.permitted:
            if not permitted(hint, _permitted):
                raise ConstraintViolation(ConstraintViolation.NAMING_PERMITTED,
                                          f"{hint} not permitted by {frame.entities[0]}")

    def next_frame(self, frame: Frame, hint: str, statement: EntityStatement,
                   configuration: EntityStatement) -> Frame:
        _max = frame.max_path_length
        if _max is not None:
            _max -= 1

        return Frame(hint, configuration,
                     path=frame.path + [statement],
                     entities=frame.entities + [hint],
                     max_path_length=_max,
                     permitted=frame.permitted,
                     excluded=frame.excluded,
                     visited=frame.visited | {hint})

    def step(self, frame: Frame, hint: str):
        """
        Tries one authority hint.

        :return: Either the complete chain, trust anchor first, or a new Frame
        """
        if frame.depth >= self.max_hops:
            raise NoTrustPath(f"More than {self.max_hops} hops needed to reach {hint}")

        if hint in frame.visited:
            raise CycleDetected(f"{hint} already in path {frame.entities}")

        self.check_leaf_constraints(frame, hint)

        configuration = self.get_configuration(hint)
        statement = self.get_subordinate_statement(hint, configuration, frame.entity_id)
        self.check_subject_keys(frame, statement)
        self.check_constraints(frame, statement)

        if hint == self.anchor_id:
            _chain = [configuration] + list(reversed(frame.path + [statement]))
            return _chain

        return self.next_frame(frame, hint, statement, configuration)

    def walk(self, leaf: EntityStatement) -> List[EntityStatement]:
        _constraints = leaf.constraints
        root = Frame(leaf.subject, leaf, path=[leaf], entities=[leaf.subject])
        if _constraints is not None:
            root.max_path_length = _constraints.max_path_length
            if _constraints.permitted:
                root.permitted = [_constraints.permitted]
            if _constraints.excluded:
                root.excluded = _constraints.excluded

        self.stack = [root]
        while self.stack:
            frame = self.stack[-1]
            hint = frame.next_hint()
            if hint is None:
                logger.debug(f"No more authority hints for {frame.entity_id}")
                self.stack.pop()
                continue

            logger.debug(f"Trying authority hint {hint} for {frame.entity_id}")
            try:
                res = self.step(frame, hint)
            except (ResolutionError, ParseError) as err:
                self.record_failure(frame.depth, hint, err)
                continue

            if isinstance(res, Frame):
                self.stack.append(res)
            else:
                logger.debug(f"Reached trust anchor {self.anchor_id}: "
                             f"{[s.issuer for s in res]}")
                return res

        if self.failure is None:
            raise NoTrustPath(f"No path from {leaf.subject} to {self.anchor_id}")
        if isinstance(self.failure, FetchError):
            raise NoTrustPath(
                f"No path from {leaf.subject} to {self.anchor_id}: {self.failure}"
            ) from self.failure
        raise self.failure


class ChainWalker(object):
    """
    Resolves a path from a leaf entity to a trust anchor.

    :param fetcher: Something with a fetch_statement(issuer, subject) method that returns
        a signed JWT
    :param verifier: Something with a verify(signed_jwt, jwks) method that returns the
        verified claims
    :param clock: Something with a now() method
    :param max_hops: The maximum number of statements in a path
    :param allowed_skew: Seconds of clock skew accepted when checking validity windows
    :param known_extensions: Critical extension claims that are understood
    """

    def __init__(self,
                 fetcher,
                 verifier=None,
                 clock=None,
                 max_hops: int = DEFAULT_MAX_HOPS,
                 allowed_skew: int = DEFAULT_ALLOWED_SKEW,
                 known_extensions: Optional[List[str]] = None):
        self.fetcher = fetcher
        self.verifier = verifier or JWSVerifier()
        self.clock = clock or SystemClock()
        self.max_hops = max_hops
        self.allowed_skew = allowed_skew
        self.known_extensions = known_extensions

    def resolve(self,
                leaf: EntityStatement,
                anchor_id: str,
                anchor_keys: dict,
                max_hops: Optional[int] = None,
                now: Optional[int] = None) -> List[EntityStatement]:
        """
        :param leaf: The leaf entity's verified entity configuration
        :param anchor_id: The trust anchor's entity ID
        :param anchor_keys: The trust anchor's JWKS
        :param max_hops: Overrides the walker's max_hops
        :param now: Overrides the walker's clock
        :return: List of EntityStatement instances. The trust anchor's entity configuration
            first and the leaf's entity configuration last.
        """
        anchor_id = normalize_entity_id(anchor_id)
        if now is None:
            now = self.clock.now()
        if max_hops is None:
            max_hops = self.max_hops

        if not leaf.is_self_issued():
            raise WrongSubject(f"Not an entity configuration: {leaf.issuer} about {leaf.subject}")

        try:
            leaf.check_validity(now, self.allowed_skew)
        except ResolutionError as err:
            logger.error(f"Leaf entity configuration not valid: {err}")
            raise

        if leaf.issuer == anchor_id:
            if leaf.signed_jwt is None:
                raise SignatureInvalid("No signed JWT to verify the trust anchor's configuration")
            self.verifier.verify(leaf.signed_jwt, anchor_keys)
            logger.debug(f"Leaf {leaf.subject} is the trust anchor")
            return [leaf]

        logger.debug(f"Resolving trust chain from {leaf.subject} to {anchor_id}")
        return Resolution(self, anchor_id, anchor_keys, max_hops, now).walk(leaf)
