import logging
from typing import Optional

from cryptojwt import KeyBundle
from cryptojwt.exception import JWKESTException
from cryptojwt.jws.jws import factory

from fedtrust.exception import SignatureInvalid

logger = logging.getLogger(__name__)


def unverified_entity_statement(signed_jwt: str) -> dict:
    """
    Returns the payload of a signed JWT without verifying the signature.

    :param signed_jwt: Signed JWT
    :return: The payload as a dictionary
    """
    try:
        _jws = factory(signed_jwt)
    except (JWKESTException, ValueError, TypeError) as err:
        raise SignatureInvalid(f"Not a signed JWT: {err}") from err

    if _jws is None:
        raise SignatureInvalid("Not a signed JWT")

    try:
        return _jws.jwt.payload()
    except (JWKESTException, ValueError) as err:
        raise SignatureInvalid(f"Payload not a JSON object: {err}") from err


class JWSVerifier(object):
    """
    Verifies the signature of an entity statement against a JWKS.
    """

    def verify(self, signed_jwt: str, jwks: Optional[dict]) -> dict:
        """
        :param signed_jwt: Signed JWT
        :param jwks: The signer's JSON Web Key Set
        :return: The payload of the signed JWT
        """
        if not jwks or not jwks.get("keys"):
            raise SignatureInvalid("No keys to verify the signature with")

        try:
            _jws = factory(signed_jwt)
        except (JWKESTException, ValueError, TypeError) as err:
            raise SignatureInvalid(f"Not a signed JWT: {err}") from err

        if _jws is None:
            raise SignatureInvalid("Not a signed JWT")

        try:
            _kb = KeyBundle(keys=jwks["keys"])
            _keys = _kb.keys()
            logger.debug(f"Possible verification keys: {[k.kid for k in _keys]}")
            res = _jws.verify_compact(keys=_keys)
        except (JWKESTException, ValueError, KeyError, TypeError) as err:
            logger.debug(f"Signature verification failed: {err}")
            raise SignatureInvalid(f"Signature verification failed: {err}") from err

        if not isinstance(res, dict):
            raise SignatureInvalid("Payload not a JSON object")

        return res


def verify_self_signed_signature(signed_jwt: str, verifier: Optional[JWSVerifier] = None) -> dict:
    """
    Verify signature using only keys in the entity statement.
    Will raise SignatureInvalid if signature verification fails.

    :param signed_jwt: Signed JWT
    :param verifier: Something with a verify(signed_jwt, jwks) method
    :return: Payload of the signed JWT
    """
    payload = unverified_entity_statement(signed_jwt)
    if verifier is None:
        verifier = JWSVerifier()
    return verifier.verify(signed_jwt, payload.get("jwks"))
