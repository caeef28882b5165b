"""
User profile package.
"""

from enrichproxy.profile.manager import InMemoryProfileStore, ProfileManager, ProfileStore, summarize
from enrichproxy.profile.types import CommunicationProfile, IdentityProfile, Profile

__all__ = [
    "CommunicationProfile",
    "IdentityProfile",
    "InMemoryProfileStore",
    "Profile",
    "ProfileManager",
    "ProfileStore",
    "summarize",
]
