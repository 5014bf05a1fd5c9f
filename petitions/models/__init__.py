"""
Database models package.
"""

from petitions.models.petition import Petition, PetitionState
from petitions.models.signature import Signature, SignatureState
from petitions.models.rate_limit import RateLimit

__all__ = ["Petition", "PetitionState", "Signature", "SignatureState", "RateLimit"]
