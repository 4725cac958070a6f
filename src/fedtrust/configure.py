import json
import logging
import os
from typing import Dict
from typing import List
from typing import Optional

from idpyoidc.configure import Base
from idpyoidc.logging import configure_logging

from fedtrust.defaults import DEFAULT_ALLOWED_SKEW
from fedtrust.defaults import DEFAULT_MAX_HOPS
from fedtrust.entity_statement.utils import normalize_entity_id
from fedtrust.fetch import HttpFetcher
from fedtrust.resolver import TrustChainResolver

logger = logging.getLogger(__name__)

DEFAULT_FILE_ATTRIBUTE_NAMES = ['filename']

DEFAULT_RESOLVER_CONFIG = {
    "max_hops": DEFAULT_MAX_HOPS,
    "allowed_skew": DEFAULT_ALLOWED_SKEW,
    "httpc_params": {"timeout": 10}
}


class ResolverConfiguration(Base):
    """
    Configuration of a trust chain resolver.

    trust_anchors is either a dictionary with entity ID as key and JWKS as value or the name
    of a JSON file containing such a dictionary.
    """

    def __init__(self,
                 conf: Dict,
                 base_path: str = '',
                 file_attributes: Optional[List[str]] = None,
                 domain: Optional[str] = "",
                 port: Optional[int] = 0,
                 dir_attributes: Optional[List[str]] = None,
                 ):
        file_attributes = file_attributes or DEFAULT_FILE_ATTRIBUTE_NAMES

        Base.__init__(self, conf=conf, base_path=base_path, file_attributes=file_attributes,
                      dir_attributes=dir_attributes, domain=domain, port=port)

        self.max_hops = conf.get("max_hops", DEFAULT_RESOLVER_CONFIG["max_hops"])
        self.allowed_skew = conf.get("allowed_skew", DEFAULT_RESOLVER_CONFIG["allowed_skew"])
        self.httpc_params = conf.get("httpc_params", DEFAULT_RESOLVER_CONFIG["httpc_params"])
        self.known_extensions = conf.get("known_extensions")
        self.logging = conf.get("logging")

        self._trust_anchors = conf.get("trust_anchors", {})
        if isinstance(self._trust_anchors, str):
            _filename = self._trust_anchors
            if base_path and not os.path.isabs(_filename):
                _filename = os.path.join(base_path, _filename)
            with open(_filename) as fp:
                _trust_anchors = json.loads(fp.read())
        else:
            _trust_anchors = self._trust_anchors

        self.trust_anchors = {normalize_entity_id(k): v for k, v in _trust_anchors.items()}


def build_resolver(conf: ResolverConfiguration, fetcher=None, httpc=None):
    """
    Sets up a resolver from a configuration.

    :param conf: A ResolverConfiguration instance
    :param fetcher: Use this fetcher instead of an HttpFetcher
    :param httpc: HTTP client for the HttpFetcher
    :return: tuple of TrustChainResolver instance and trust anchors
    """
    if conf.logging:
        configure_logging(config=conf.logging)

    if fetcher is None:
        fetcher = HttpFetcher(httpc=httpc, httpc_params=conf.httpc_params)

    logger.debug(f"Trust anchors: {list(conf.trust_anchors.keys())}")
    resolver = TrustChainResolver(fetcher, max_hops=conf.max_hops,
                                  allowed_skew=conf.allowed_skew,
                                  known_extensions=conf.known_extensions)
    return resolver, conf.trust_anchors
