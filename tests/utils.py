from cryptojwt.key_jar import build_keyjar

from fedtrust.entity_statement.create import create_entity_statement
from fedtrust.entity_statement.statement import EntityStatement
from fedtrust.entity_statement.verify import verify_self_signed_signature
from fedtrust.exception import FetchError
from fedtrust.fetch import Fetcher

KEYSPEC = [
    {"type": "EC", "crv": "P-256", "use": ["sig"]},
]

NOW = 1700000000
LIFETIME = 86400


class DictFetcher(Fetcher):
    """Serves signed statements from a dictionary keyed on (issuer, subject)."""

    def __init__(self, statements=None):
        self.statements = statements if statements is not None else {}
        self.calls = []

    def fetch_statement(self, issuer, subject):
        self.calls.append((issuer, subject))
        try:
            return self.statements[(issuer, subject)]
        except KeyError:
            raise FetchError(f"Nothing from {issuer} about {subject}")


class Federation(object):
    """
    Keys and signed statements for a set of federation entities.
    """

    def __init__(self, now=NOW):
        self.now = now
        self.keyjars = {}
        self.statements = {}

    def add_entity(self, entity_id):
        self.keyjars[entity_id] = build_keyjar(KEYSPEC, issuer_id=entity_id)
        return entity_id

    def jwks(self, entity_id):
        return self.keyjars[entity_id].export_jwks(issuer_id=entity_id)

    def configuration(self, entity_id, authority_hints=None, metadata=None, iat=None,
                      lifetime=LIFETIME, **kwargs):
        if entity_id not in self.keyjars:
            self.add_entity(entity_id)
        if iat is None:
            iat = self.now - 10
        _jwt = create_entity_statement(entity_id, entity_id, self.keyjars[entity_id],
                                       metadata=metadata, authority_hints=authority_hints,
                                       iat=iat, lifetime=lifetime, **kwargs)
        self.statements[(entity_id, entity_id)] = _jwt
        return _jwt

    def subordinate(self, issuer, subject, metadata_policy=None, constraints=None, iat=None,
                    lifetime=LIFETIME, jwks=None, **kwargs):
        if iat is None:
            iat = self.now - 10
        if jwks is None:
            jwks = self.jwks(subject)
        _jwt = create_entity_statement(issuer, subject, self.keyjars[issuer],
                                       metadata_policy=metadata_policy,
                                       constraints=constraints, iat=iat, lifetime=lifetime,
                                       jwks=jwks, **kwargs)
        self.statements[(issuer, subject)] = _jwt
        return _jwt

    def fetcher(self):
        return DictFetcher(dict(self.statements))

    def leaf(self, entity_id):
        _jwt = self.statements[(entity_id, entity_id)]
        return EntityStatement.parse(verify_self_signed_signature(_jwt), signed_jwt=_jwt)
