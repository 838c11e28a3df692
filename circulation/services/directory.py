# circulation/services/directory.py
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from loguru import logger

from circulation.core.errors import MemberIneligible, NotAuthorized
from circulation.models.enum import MemberStatus, PaymentStatus, StaffStatus
from circulation.models.member import Member, Staff
from circulation.services.base import ServiceContext, build, require_aware

WAIVE_FINE = "waive_fine"


class Directory(ABC):
    """Member/staff lookups the circulation core delegates to."""

    @abstractmethod
    async def check_member_eligible(self, member_id: str, now: datetime) -> Member:
        """Returns the member or raises MemberIneligible (NotFound for unknown ids)."""

    @abstractmethod
    async def authorize_staff(self, staff_id: str, action: str) -> Staff:
        """Returns the staff record or raises NotAuthorized."""


class RepositoryDirectory(Directory):
    """Directory backed by the member/staff collections of the repository."""

    def __init__(self, ctx: ServiceContext) -> None:
        self.ctx = ctx

    async def outstanding_fines(self, member_id: str) -> Decimal:
        pending = await self.ctx.repo.fines.find({"member_id": member_id, "payment_status": PaymentStatus.PENDING})
        return sum((f.amount for f in pending), Decimal("0.00"))

    async def check_member_eligible(self, member_id: str, now: datetime) -> Member:
        member = await self.ctx.repo.members.require(member_id)
        if member.status != MemberStatus.ACTIVE:
            logger.warning(f"Member '{member_id}' ineligible: status '{member.status.value}'.")
            raise MemberIneligible(f"Member '{member_id}' is {member.status.value}.", entity_id=member_id)
        if member.membership_lapsed(now.date()):
            logger.warning(f"Member '{member_id}' ineligible: membership expired {member.membership_expiry}.")
            raise MemberIneligible(
                f"Membership of '{member_id}' expired on {member.membership_expiry}.", entity_id=member_id
            )
        owed = await self.outstanding_fines(member_id)
        if owed > self.ctx.policy.unpaid_fine_limit:
            logger.warning(f"Member '{member_id}' ineligible: unpaid fines {owed} > {self.ctx.policy.unpaid_fine_limit}.")
            raise MemberIneligible(
                f"Member '{member_id}' owes {owed} in unpaid fines (limit {self.ctx.policy.unpaid_fine_limit}).",
                entity_id=member_id,
            )
        return member

    async def authorize_staff(self, staff_id: str, action: str) -> Staff:
        staff = await self.ctx.repo.staff.get(staff_id)
        if staff is None or staff.status != StaffStatus.ACTIVE:
            logger.warning(f"Staff '{staff_id}' not authorized for '{action}'.")
            raise NotAuthorized(f"Staff '{staff_id}' is not authorized to {action.replace('_', ' ')}.", entity_id=staff_id)
        return staff

    # --- registration (record storage only) ---
    async def register_member(self, data: Member.Create, now: datetime) -> Member:
        require_aware(now)
        member = build(Member, **data.model_dump(), membership_date=now.date())
        await self.ctx.repo.members.add(member)
        logger.info(f"Registered member '{member.id}' <{member.email}>.")
        return member

    async def register_staff(self, data: Staff.Create) -> Staff:
        staff = build(Staff, **data.model_dump())
        await self.ctx.repo.staff.add(staff)
        logger.info(f"Registered staff '{staff.id}' ({staff.position}).")
        return staff

    async def set_member_status(self, member_id: str, status: MemberStatus) -> Member:
        async with self.ctx.atomic(f"member:{member_id}"):
            member = await self.ctx.repo.members.require(member_id)
            member.status = status
            await self.ctx.repo.members.update(member)
        logger.info(f"Member '{member_id}' status set to '{status.value}'.")
        return member
