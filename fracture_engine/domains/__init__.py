"""
Domain plug-ins - extractors, action bundles and configuration presets

Public Interface:
- get_domain(name): fresh DomainProfile ('generic', 'market', 'learning', 'physiological')
- register_domain(name, builder): add a custom domain
- available_domains(): registered names
"""

from .base import DomainProfile, get_domain, register_domain, available_domains, preset_from
from . import market, learning, physiological

__all__ = ['DomainProfile', 'get_domain', 'register_domain', 'available_domains', 'preset_from']
