from concurrent.futures import ThreadPoolExecutor

from cryptojwt.key_jar import build_keyjar
import pytest

from fedtrust.entity_statement.create import create_entity_statement
from fedtrust.entity_statement.statement import EntityStatement
from fedtrust.exception import ConstraintViolation
from fedtrust.exception import CycleDetected
from fedtrust.exception import Expired
from fedtrust.exception import NotYetValid
from fedtrust.exception import NoTrustPath
from fedtrust.exception import SignatureInvalid
from fedtrust.exception import WrongSubject
from fedtrust.function.trust_chain_walker import ChainWalker
from fedtrust.function.trust_chain_walker import Frame
from fedtrust.function.trust_chain_walker import Resolution
from fedtrust.utils import FixedClock
from tests.utils import Federation
from tests.utils import KEYSPEC
from tests.utils import LIFETIME
from tests.utils import NOW

TA_ID = "https://ta.example.org"
IM1_ID = "https://example.org/im1"
IM2_ID = "https://example.org/im2"
RP_ID = "https://example.org/rp"
OTHER_ID = "https://other.example.com"


def linear(fed, ids, constraints=None):
    """
    Builds a chain of entities. The leaf first and the trust anchor last.
    constraints maps an issuer to the constraints it puts in its statement.
    """
    constraints = constraints or {}
    for i, entity_id in enumerate(ids):
        _hints = [ids[i + 1]] if i + 1 < len(ids) else None
        fed.configuration(entity_id, authority_hints=_hints)
    for i in range(len(ids) - 1):
        fed.subordinate(ids[i + 1], ids[i], constraints=constraints.get(ids[i + 1]))
    return fed


def walk(fed, leaf_id=RP_ID, anchor_id=TA_ID, anchor_keys=None, **kwargs):
    _fetcher = fed.fetcher()
    walker = ChainWalker(_fetcher, clock=FixedClock(fed.now), **kwargs)
    if anchor_keys is None:
        anchor_keys = fed.jwks(anchor_id)
    return walker.resolve(fed.leaf(leaf_id), anchor_id, anchor_keys), _fetcher


def path(chain):
    return [(s.issuer, s.subject) for s in chain]


class TestChainWalker(object):

    def test_resolve(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        chain, _ = walk(fed)
        assert path(chain) == [(TA_ID, TA_ID), (TA_ID, IM1_ID), (IM1_ID, RP_ID), (RP_ID, RP_ID)]
        assert chain[0].signed_jwt == fed.statements[(TA_ID, TA_ID)]

    def test_directly_under_anchor(self):
        fed = linear(Federation(), [RP_ID, TA_ID])
        chain, _ = walk(fed)
        assert path(chain) == [(TA_ID, TA_ID), (TA_ID, RP_ID), (RP_ID, RP_ID)]

    def test_leaf_is_anchor(self):
        fed = linear(Federation(), [RP_ID, TA_ID])
        chain, _fetcher = walk(fed, leaf_id=TA_ID)
        assert path(chain) == [(TA_ID, TA_ID)]
        assert _fetcher.calls == []

    def test_leaf_is_anchor_wrong_keys(self):
        fed = linear(Federation(), [RP_ID, TA_ID])
        with pytest.raises(SignatureInvalid):
            walk(fed, leaf_id=TA_ID, anchor_keys=fed.jwks(RP_ID))

    def test_anchor_id_normalized(self):
        fed = linear(Federation(), [RP_ID, TA_ID])
        chain, _ = walk(fed, anchor_id=TA_ID + "/", anchor_keys=fed.jwks(TA_ID))
        assert chain[0].issuer == TA_ID

    def test_not_an_entity_configuration(self):
        fed = linear(Federation(), [RP_ID, TA_ID])
        walker = ChainWalker(fed.fetcher(), clock=FixedClock(fed.now))
        _sub = EntityStatement.parse(
            {"iss": TA_ID, "sub": RP_ID, "iat": NOW, "exp": NOW + 10},
            signed_jwt=fed.statements[(TA_ID, RP_ID)])
        with pytest.raises(WrongSubject):
            walker.resolve(_sub, TA_ID, fed.jwks(TA_ID))


class TestPathLength(object):

    def test_at_limit(self):
        fed = linear(Federation(), [RP_ID, IM2_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"max_path_length": 2}})
        chain, _ = walk(fed)
        assert len(chain) == 5

    def test_over_limit(self):
        fed = linear(Federation(), [RP_ID, IM2_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"max_path_length": 1}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED

    def test_zero(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"max_path_length": 0}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED

        fed = linear(Federation(), [RP_ID, TA_ID], constraints={TA_ID: {"max_path_length": 0}})
        chain, _ = walk(fed)
        assert len(chain) == 3

    def test_intermediate_limit(self):
        fed = linear(Federation(), [RP_ID, IM2_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"max_path_length": 2},
                                  IM1_ID: {"max_path_length": 0}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED

    def test_max_hops(self):
        fed = linear(Federation(), [RP_ID, IM2_ID, IM1_ID, TA_ID])
        with pytest.raises(NoTrustPath):
            walk(fed, max_hops=3)

        chain, _ = walk(fed, max_hops=4)
        assert len(chain) == 5


class TestNamingConstraints(object):

    def test_permitted(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"naming_constraints": {
                         "permitted": ["https://example.org"]}}})
        chain, _ = walk(fed)
        assert len(chain) == 4

    def test_not_permitted(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"naming_constraints": {
                         "permitted": ["https://example.org/im1"]}}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.NAMING_PERMITTED

    def test_excluded_wins_over_permitted(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID],
                     constraints={TA_ID: {"naming_constraints": {
                         "permitted": ["https://example.org"],
                         "excluded": ["https://example.org/rp"]}}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.NAMING_EXCLUDED

    def test_every_permitted_list(self):
        fed = linear(Federation(), [RP_ID, IM2_ID, IM1_ID, TA_ID],
                     constraints={
                         IM1_ID: {"naming_constraints": {"permitted": ["https://example.org"]}},
                         TA_ID: {"naming_constraints": {"permitted": [
                             "https://example.org/im1", "https://example.org/im2"]}}
                     })
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.NAMING_PERMITTED


class TestLeafConstraints(object):

    def build(self, ids, leaf_constraints):
        fed = linear(Federation(), ids)
        fed.configuration(ids[0], authority_hints=[ids[1]], constraints=leaf_constraints)
        return fed

    def test_max_path_length(self):
        fed = self.build([RP_ID, IM1_ID, TA_ID], {"max_path_length": 1})
        chain, _ = walk(fed)
        assert len(chain) == 4

        fed = self.build([RP_ID, IM2_ID, IM1_ID, TA_ID], {"max_path_length": 1})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED

    def test_max_path_length_zero(self):
        fed = self.build([RP_ID, TA_ID], {"max_path_length": 0})
        chain, _ = walk(fed)
        assert len(chain) == 3

        fed = self.build([RP_ID, IM1_ID, TA_ID], {"max_path_length": 0})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED

    def test_anchor_not_permitted(self):
        fed = self.build([RP_ID, TA_ID], {
            "max_path_length": 0,
            "naming_constraints": {"permitted": [OTHER_ID]}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.NAMING_PERMITTED

    def test_superior_excluded(self):
        fed = self.build([RP_ID, IM2_ID, IM1_ID, TA_ID],
                         {"naming_constraints": {"excluded": [IM1_ID]}})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.NAMING_EXCLUDED

    def test_checked_before_fetching(self):
        fed = self.build([RP_ID, IM1_ID, TA_ID],
                         {"naming_constraints": {"permitted": [OTHER_ID]}})
        _fetcher = fed.fetcher()
        walker = ChainWalker(_fetcher, clock=FixedClock(fed.now))
        with pytest.raises(ConstraintViolation):
            walker.resolve(fed.leaf(RP_ID), TA_ID, fed.jwks(TA_ID))
        assert _fetcher.calls == []

    def test_next_hint(self):
        fed = Federation()
        fed.configuration(TA_ID)
        fed.configuration(IM1_ID, authority_hints=[TA_ID])
        fed.configuration(IM2_ID, authority_hints=[TA_ID])
        fed.configuration(RP_ID, authority_hints=[IM1_ID, IM2_ID],
                          constraints={"naming_constraints": {"excluded": [IM1_ID]}})
        for _id in [IM1_ID, IM2_ID]:
            fed.subordinate(TA_ID, _id)
            fed.subordinate(_id, RP_ID)
        chain, _ = walk(fed)
        assert path(chain)[1:3] == [(TA_ID, IM2_ID), (IM2_ID, RP_ID)]


class TestBacktracking(object):

    def build(self, ta_constraints_on_im1=None):
        fed = Federation()
        fed.configuration(TA_ID)
        fed.configuration(IM1_ID, authority_hints=[TA_ID])
        fed.configuration(IM2_ID, authority_hints=[TA_ID])
        fed.configuration(RP_ID, authority_hints=[IM1_ID, IM2_ID])
        fed.subordinate(TA_ID, IM1_ID, constraints=ta_constraints_on_im1)
        fed.subordinate(TA_ID, IM2_ID)
        fed.subordinate(IM1_ID, RP_ID)
        fed.subordinate(IM2_ID, RP_ID)
        return fed

    def test_first_hint_wins(self):
        fed = self.build()
        chain, _fetcher = walk(fed)
        assert path(chain)[1:3] == [(TA_ID, IM1_ID), (IM1_ID, RP_ID)]
        assert (IM2_ID, IM2_ID) not in _fetcher.calls

    def test_next_hint_after_constraint_violation(self):
        fed = self.build({"naming_constraints": {"excluded": [RP_ID]}})
        chain, _fetcher = walk(fed)
        assert path(chain)[1:3] == [(TA_ID, IM2_ID), (IM2_ID, RP_ID)]
        assert _fetcher.calls.index((IM1_ID, IM1_ID)) < _fetcher.calls.index((IM2_ID, IM2_ID))

    def test_next_hint_after_fetch_error(self):
        fed = self.build()
        del fed.statements[(IM1_ID, RP_ID)]
        chain, _ = walk(fed)
        assert path(chain)[1:3] == [(TA_ID, IM2_ID), (IM2_ID, RP_ID)]

    def test_deepest_failure_reported(self):
        fed = self.build()
        # IM1 fails at the first level, IM2 at the second
        del fed.statements[(IM1_ID, RP_ID)]
        fed.subordinate(TA_ID, IM2_ID, constraints={"max_path_length": 0})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.MAX_PATH_LENGTH_EXCEEDED

    def test_first_failure_at_same_depth(self):
        fed = self.build({"naming_constraints": {"excluded": [RP_ID]}})
        fed.subordinate(TA_ID, IM2_ID, constraints={"max_path_length": 0})
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        assert err.value.kind == ConstraintViolation.NAMING_EXCLUDED

    def test_fetch_error_becomes_no_trust_path(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        del fed.statements[(TA_ID, IM1_ID)]
        with pytest.raises(NoTrustPath):
            walk(fed)

    def test_no_authority_hints(self):
        fed = Federation()
        fed.configuration(TA_ID)
        fed.configuration(RP_ID)
        with pytest.raises(NoTrustPath):
            walk(fed)

    def test_unknown_anchor(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.add_entity(OTHER_ID)
        with pytest.raises(NoTrustPath):
            walk(fed, anchor_id=OTHER_ID)


class TestCycle(object):

    def test_cycle(self):
        fed = Federation()
        fed.configuration(TA_ID)
        fed.configuration(IM1_ID, authority_hints=[IM2_ID])
        fed.configuration(IM2_ID, authority_hints=[IM1_ID])
        fed.configuration(RP_ID, authority_hints=[IM1_ID])
        fed.subordinate(IM1_ID, RP_ID)
        fed.subordinate(IM2_ID, IM1_ID)
        fed.subordinate(IM1_ID, IM2_ID)
        with pytest.raises(CycleDetected):
            walk(fed)

    def test_self_reference(self):
        fed = Federation()
        fed.configuration(TA_ID)
        fed.configuration(RP_ID, authority_hints=[RP_ID])
        with pytest.raises(CycleDetected):
            walk(fed)


class TestValidity(object):

    def test_expired_leaf(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.configuration(RP_ID, authority_hints=[IM1_ID], iat=NOW - 2 * LIFETIME)
        with pytest.raises(Expired):
            walk(fed)

    def test_expired_statement(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.subordinate(IM1_ID, RP_ID, iat=NOW - 2 * LIFETIME)
        with pytest.raises(Expired):
            walk(fed)

    def test_expired_configuration(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.configuration(IM1_ID, authority_hints=[TA_ID], iat=NOW - 2 * LIFETIME)
        with pytest.raises(Expired):
            walk(fed)

    def test_not_yet_valid(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.subordinate(TA_ID, IM1_ID, iat=NOW + 100)
        with pytest.raises(NotYetValid):
            walk(fed)

        chain, _ = walk(fed, allowed_skew=200)
        assert len(chain) == 4


class TestSignatures(object):

    def test_wrong_anchor_keys(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        with pytest.raises(SignatureInvalid):
            walk(fed, anchor_keys=fed.jwks(IM1_ID))

    def test_statement_signed_by_impostor(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        _impostor = build_keyjar(KEYSPEC, issuer_id=TA_ID)
        fed.statements[(TA_ID, IM1_ID)] = create_entity_statement(
            TA_ID, IM1_ID, _impostor, jwks=fed.jwks(IM1_ID), iat=NOW)
        with pytest.raises(SignatureInvalid):
            walk(fed)

    def test_superior_publishes_other_keys(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.add_entity(OTHER_ID)
        fed.subordinate(TA_ID, IM1_ID, jwks=fed.jwks(OTHER_ID))
        with pytest.raises(SignatureInvalid):
            walk(fed)

    def test_statement_about_someone_else(self):
        fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID])
        fed.add_entity(OTHER_ID)
        fed.subordinate(IM1_ID, OTHER_ID)
        fed.statements[(IM1_ID, RP_ID)] = fed.statements[(IM1_ID, OTHER_ID)]
        with pytest.raises(WrongSubject):
            walk(fed)


def test_deterministic():
    fed = linear(Federation(), [RP_ID, IM2_ID, IM1_ID, TA_ID])
    _first, _ = walk(fed)
    _second, _ = walk(fed)
    assert [s.to_dict() for s in _first] == [s.to_dict() for s in _second]

    fed = linear(Federation(), [RP_ID, IM1_ID, TA_ID],
                 constraints={TA_ID: {"max_path_length": 0}})
    _errors = []
    for _ in range(2):
        with pytest.raises(ConstraintViolation) as err:
            walk(fed)
        _errors.append(str(err.value))
    assert _errors[0] == _errors[1]


def test_concurrent_resolution():
    fed = Federation()
    _rp1 = "https://example.org/rp1"
    _rp2 = "https://example.org/rp2"
    fed.configuration(TA_ID)
    fed.configuration(IM1_ID, authority_hints=[TA_ID])
    fed.configuration(IM2_ID, authority_hints=[TA_ID])
    fed.configuration(_rp1, authority_hints=[IM1_ID])
    fed.configuration(_rp2, authority_hints=[IM2_ID])
    fed.subordinate(TA_ID, IM1_ID)
    fed.subordinate(TA_ID, IM2_ID)
    fed.subordinate(IM1_ID, _rp1)
    fed.subordinate(IM2_ID, _rp2)

    walker = ChainWalker(fed.fetcher(), clock=FixedClock(fed.now))
    _anchor_keys = fed.jwks(TA_ID)
    _leaves = [fed.leaf(_rp1), fed.leaf(_rp2)] * 10

    def resolve(leaf):
        return path(walker.resolve(leaf, TA_ID, _anchor_keys))

    sequential = [resolve(leaf) for leaf in _leaves]
    with ThreadPoolExecutor(max_workers=4) as executor:
        concurrent = list(executor.map(resolve, _leaves))

    assert concurrent == sequential
    assert sequential[0][2] == (IM1_ID, _rp1)
    assert sequential[1][2] == (IM2_ID, _rp2)


def test_frame():
    fed = Federation()
    fed.configuration(RP_ID, authority_hints=[IM1_ID, IM2_ID])
    _leaf = fed.leaf(RP_ID)
    frame = Frame(RP_ID, _leaf, path=[_leaf], entities=[RP_ID])
    assert frame.depth == 1
    assert frame.visited == {RP_ID}
    assert frame.next_hint() == IM1_ID
    assert frame.next_hint() == IM2_ID
    assert frame.next_hint() is None


def test_next_frame():
    fed = Federation()
    fed.configuration(IM1_ID, authority_hints=[TA_ID])
    fed.configuration(RP_ID, authority_hints=[IM1_ID],
                      constraints={"max_path_length": 2,
                                   "naming_constraints": {"excluded": [OTHER_ID]}})
    _leaf = fed.leaf(RP_ID)
    _im1 = fed.leaf(IM1_ID)
    frame = Frame(RP_ID, _leaf, path=[_leaf], entities=[RP_ID], max_path_length=2,
                  excluded=[OTHER_ID])

    resolution = Resolution(ChainWalker(fed.fetcher()), TA_ID, {}, 10, NOW)
    _next = resolution.next_frame(frame, IM1_ID, _leaf, _im1)
    assert _next.visited == {RP_ID, IM1_ID}
    assert frame.visited == {RP_ID}
    assert _next.max_path_length == 1
    assert _next.excluded == [OTHER_ID]
    assert _next.remaining_hints == [TA_ID]
