ENTITY_CONFIGURATION_PATH = ".well-known/openid-federation"

ENTITY_STATEMENT_CONTENT_TYPE = "application/entity-statement+jwt"

DEFAULT_MAX_HOPS = 10

DEFAULT_ALLOWED_SKEW = 0

# Registered entity types. Statements may carry others, they are kept as is.
ENTITY_TYPES = frozenset([
    "federation_entity",
    "openid_relying_party",
    "openid_provider",
    "oauth_authorization_server",
    "oauth_client",
    "oauth_resource",
    "trust_mark_issuer"
])

POLICY_OPERATION_NAMES = ("value", "add", "default", "one_of", "subset_of", "superset_of",
                          "essential")

# Claims defined for entity statements. Anything else listed in 'crit' is an extension.
ENTITY_STATEMENT_CLAIMS = frozenset([
    "iss", "sub", "iat", "exp", "jwks", "aud", "jti", "authority_hints", "metadata",
    "metadata_policy", "constraints", "crit", "policy_language_crit", "trust_marks",
    "trust_mark_issuers", "trust_mark_owners", "source_endpoint", "trust_anchor_id"
])
