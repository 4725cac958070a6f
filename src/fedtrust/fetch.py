import logging
from typing import Callable
from typing import Optional

import requests
from requests.exceptions import ConnectionError
from requests.exceptions import RequestException
from requests.exceptions import Timeout

from fedtrust.defaults import ENTITY_CONFIGURATION_PATH
from fedtrust.defaults import ENTITY_STATEMENT_CONTENT_TYPE
from fedtrust.entity_statement.verify import unverified_entity_statement
from fedtrust.exception import FetchError
from fedtrust.exception import SignatureInvalid

logger = logging.getLogger(__name__)


class Fetcher(object):
    """
    Retrieves signed entity statements. Retries, timeouts and caching are the business of
    the subclass.
    """

    def fetch_statement(self, issuer: str, subject: str) -> str:
        """
        :param issuer: Who should issue the entity statement
        :param subject: About whom the entity statement should be
        :return: A signed JWT
        """
        raise NotImplementedError()

    def fetch_entity_configuration(self, entity_id: str) -> str:
        return self.fetch_statement(entity_id, entity_id)


def get_endpoint(endpoint_type: str, config: dict) -> Optional[str]:
    _fe = config.get('metadata', {}).get('federation_entity', {})
    return _fe.get(f"federation_{endpoint_type}_endpoint")


def entity_configuration_url(entity_id: str) -> str:
    return f"{entity_id.rstrip('/')}/{ENTITY_CONFIGURATION_PATH}"


class HttpFetcher(Fetcher):
    """
    Fetches entity configurations from the well-known location and subordinate statements
    from the issuer's federation fetch endpoint.

    :param httpc: A callable with the same signature as requests.request
    :param httpc_params: Extra arguments passed to httpc, e.g. timeout or verify
    """

    def __init__(self, httpc: Optional[Callable] = None, httpc_params: Optional[dict] = None):
        self.httpc = httpc or requests.request
        self.httpc_params = httpc_params or {}

    def get_document(self, url: str, params: Optional[dict] = None) -> str:
        """

        :param url: Target URL
        :param params: Query parameters
        :return: Signed EntityStatement
        """
        logger.debug(f"Using HTTPC Params: {self.httpc_params}")
        try:
            response = self.httpc("GET", url, params=params, **self.httpc_params)
        except Timeout as err:
            logger.error(f'Timeout fetching {url}: {err}')
            raise FetchError(f"Timeout fetching {url}") from err
        except ConnectionError as err:
            logger.error(f'Could not connect to {url}:{err}')
            raise FetchError(f"Could not connect to {url}") from err
        except RequestException as err:
            logger.error(f'Request to {url} failed: {err}')
            raise FetchError(f"Request to {url} failed") from err

        if response.status_code == 200:
            _content_type = response.headers.get('Content-Type', '')
            if ENTITY_STATEMENT_CONTENT_TYPE not in _content_type:
                logger.warning(f"Wrong Content-Type: {_content_type}")
            return response.text
        elif response.status_code == 404:
            raise FetchError(f"No such page: '{url}'")
        else:
            raise FetchError(f"Fetching '{url}' failed with status {response.status_code}")

    def get_federation_fetch_endpoint(self, entity_id: str) -> str:
        logger.debug(f'--get_federation_fetch_endpoint({entity_id})')
        _jwt = self.fetch_entity_configuration(entity_id)
        try:
            _config = unverified_entity_statement(_jwt)
        except SignatureInvalid as err:
            raise FetchError(f"Could not decode entity configuration for {entity_id}") from err

        _endpoint = get_endpoint("fetch", _config)
        if not _endpoint:
            raise FetchError(f"{entity_id} has no federation fetch endpoint")
        return _endpoint

    def fetch_statement(self, issuer: str, subject: str) -> str:
        if issuer == subject:
            _url = entity_configuration_url(issuer)
            logger.debug(f"Get configuration from: {_url}")
            return self.get_document(_url)

        _endpoint = self.get_federation_fetch_endpoint(issuer)
        logger.debug(f"Federation fetch endpoint: '{_endpoint}' for '{issuer}'")
        return self.get_document(_endpoint, params={"iss": issuer, "sub": subject})
