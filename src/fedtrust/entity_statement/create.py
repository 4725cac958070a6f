import json
import logging
from typing import Optional

from cryptojwt import JWS
from cryptojwt.jws.utils import alg2keytype
from cryptojwt.jwt import utc_time_sans_frac

logger = logging.getLogger(__name__)


def create_entity_statement(iss, sub, key_jar, metadata=None, metadata_policy=None,
                            authority_hints=None, lifetime=86400, aud='', include_jwks=True,
                            constraints=None, iat: Optional[int] = None, jwks=None,
                            signing_algorithm="ES256", **kwargs):
    """

    :param iss: The issuer of the signed JSON Web Token
    :param sub: The subject which the metadata describes
    :param key_jar: A KeyJar instance holding the issuer's private keys
    :param metadata: The entity's metadata organised as a dictionary with the
        entity type as key
    :param metadata_policy: Metadata policy organised as a dictionary with the entity type
        as key
    :param authority_hints: A list of immediate superiors
    :param lifetime: The life time of the signed JWT.
    :param aud: Possible audience for the JWT
    :param include_jwks: Add JWKS
    :param constraints: A dictionary with constraints.
    :param iat: Issued at, defaults to now
    :param jwks: The subject's public keys. If not given they are taken from the key jar.
    :param signing_algorithm: Which algorithm to sign with
    :return: A signed JSON Web Token
    """

    if iat is None:
        iat = utc_time_sans_frac()

    msg = {'iss': iss, 'sub': sub, 'iat': iat, 'exp': iat + lifetime}
    if metadata:
        msg['metadata'] = metadata

    if metadata_policy:
        msg['metadata_policy'] = metadata_policy

    if authority_hints:
        msg['authority_hints'] = authority_hints

    if aud:
        msg['aud'] = aud

    if constraints:
        msg['constraints'] = constraints

    if kwargs:
        msg.update(kwargs)

    if include_jwks:
        if jwks is None:
            # The public signing keys of the subject
            jwks = key_jar.export_jwks(issuer_id=sub)
        msg['jwks'] = jwks

    _keys = key_jar.get_signing_key(key_type=alg2keytype(signing_algorithm), issuer_id=iss)
    if not _keys:
        raise ValueError(f"No {signing_algorithm} signing key for {iss}")

    _jws = JWS(json.dumps(msg), alg=signing_algorithm)
    return _jws.sign_compact(_keys)
