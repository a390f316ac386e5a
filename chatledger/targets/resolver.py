"""
Target Resolution

Maps an inbound chat identity to the target transactions are recorded
against. Private chats record against the sender. Group chats record
against the group, which the sender must belong to.

A group chat nobody has registered yet is provisioned on the spot when
the sender's tier allows shared ledgers; the sender becomes its owner.
Everyone else joins through join_group, from an invite the group hands out.
"""

from typing import Optional
from uuid import UUID

import structlog

from chatledger.config import LedgerSettings, get_settings
from chatledger.models.ledger import ChatIdentity, Group, Target, UserAccount, UserTier
from chatledger.services.storage import DuplicateError, LedgerStorageInterface


logger = structlog.get_logger(__name__)


class TargetResolutionError(Exception):
    """Base exception for target resolution."""
    pass


class NotRegistered(TargetResolutionError):
    """
    The sender (or the group chat) is not registered.

    subject is "user" or "group" so the reply can say which.
    """

    def __init__(self, message: str, subject: str = "user"):
        super().__init__(message)
        self.subject = subject


class NotAMember(TargetResolutionError):
    """The group exists but the sender is not one of its members."""
    pass


class GroupNotFound(TargetResolutionError):
    """A join request named a group that doesn't exist."""
    pass


class TargetResolver:
    """
    Resolves ChatIdentity -> Target.

    Usage:
        resolver = TargetResolver(storage)
        target = await resolver.resolve(identity)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger

    async def resolve(self, identity: ChatIdentity) -> Target:
        """
        Raises:
            NotRegistered: Unknown sender, or unknown group and the sender
                can't provision one
            NotAMember: Known group, sender not a member
        """
        user = await self._storage.get_user_by_external_id(identity.user_external_id)
        if user is None or not user.is_active:
            raise NotRegistered(f"User {identity.user_external_id} is not registered", subject="user")

        if not identity.is_group_chat:
            return Target(
                is_group=False,
                target_id=user.id,
                user_id=user.id,
                income_day=user.income_day,
            )

        group = await self._storage.get_group_by_chat_id(identity.chat_id)
        if group is None:
            if user.tier.value not in self._settings.group_tier_set:
                raise NotRegistered(f"Group chat {identity.chat_id} is not registered", subject="group")
            try:
                group = await self._storage.create_group(
                    chat_id=identity.chat_id,
                    name=identity.chat_title or "Family",
                    owner_id=user.id,
                )
                logger.info(
                    "group_provisioned",
                    chat_id=identity.chat_id,
                    group_id=str(group.id),
                    owner_id=str(user.id),
                )
            except DuplicateError:
                group = await self._storage.get_group_by_chat_id(identity.chat_id)
                if group is None:
                    raise

        role = await self._storage.get_member_role(group.id, user.id)
        if role is None:
            raise NotAMember(f"User {user.id} is not a member of group {group.id}")

        return Target(
            is_group=True,
            target_id=group.id,
            user_id=user.id,
            group_id=group.id,
            income_day=group.income_day,
        )

    async def register(self, identity: ChatIdentity) -> tuple[UserAccount, bool]:
        """
        Register the sender if unknown.

        Returns:
            (user, created)
        """
        user = await self._storage.get_user_by_external_id(identity.user_external_id)
        if user is not None:
            return user, False
        try:
            user = await self._storage.create_user(
                external_id=identity.user_external_id,
                display_name=identity.display_name,
                tier=UserTier(self._settings.default_tier),
            )
        except DuplicateError:
            user = await self._storage.get_user_by_external_id(identity.user_external_id)
            if user is None:
                raise
            return user, False
        logger.info("user_registered", user_id=str(user.id), external_id=identity.user_external_id)
        return user, True

    async def join_group(self, identity: ChatIdentity, group_id: UUID) -> tuple[Group, bool]:
        """
        Add the sender to a group as a member.

        Returns:
            (group, joined); joined is False if they were already a member

        Raises:
            NotRegistered: Unknown sender
            GroupNotFound: No group with group_id
        """
        user = await self._storage.get_user_by_external_id(identity.user_external_id)
        if user is None or not user.is_active:
            raise NotRegistered(f"User {identity.user_external_id} is not registered", subject="user")

        group = await self._storage.get_group(group_id)
        if group is None:
            raise GroupNotFound(f"Group {group_id} does not exist")

        if await self._storage.get_member_role(group.id, user.id) is not None:
            return group, False
        try:
            await self._storage.add_group_member(group.id, user.id)
        except DuplicateError:
            return group, False

        logger.info("group_member_joined", group_id=str(group.id), user_id=str(user.id))
        return group, True
