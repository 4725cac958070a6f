__version__ = '1.0.0'

from fedtrust.resolver import resolve_trust_chain
from fedtrust.resolver import TrustChainResolver

__all__ = ["resolve_trust_chain", "TrustChainResolver"]
