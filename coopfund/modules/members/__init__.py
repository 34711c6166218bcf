# Members module
from coopfund.modules.members.models import Cooperative, Member, MemberStatus
from coopfund.modules.members.services import MembershipService

__all__ = ["Cooperative", "Member", "MemberStatus", "MembershipService"]
