from .base import BaseRepository
from .organizations import MembershipRepository, OrganizationRepository
from .users import UserRepository

__all__ = ["BaseRepository", "MembershipRepository", "OrganizationRepository", "UserRepository"]
