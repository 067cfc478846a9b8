from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Optional

from .blacklist import BlacklistRegistry
from .utils import normalize_phone, phone_key
from .whatsapp_client import InboundMessage

logger = logging.getLogger("estate_advisor.policy")

ADMIN_PREFIX = "/"


class RejectReason(str, Enum):
    BLACKLISTED = "blacklisted"
    EMPTY = "empty"
    ADMIN_COMMAND = "admin_command"
    SAVED_CONTACT = "saved_contact"


def is_admin_command(text: str) -> bool:
    return (text or "").lstrip().startswith(ADMIN_PREFIX)


class InputPolicy:
    """Decides, before any model call, whether a message enters the conversation."""

    def __init__(
        self,
        blacklist: BlacklistRegistry,
        admin_numbers: Iterable[str] = (),
        ignore_saved_contacts: bool = False,
    ) -> None:
        self._blacklist = blacklist
        self._admin_keys = {phone_key(n) for n in admin_numbers if phone_key(n)}
        self._ignore_saved_contacts = ignore_saved_contacts

    def is_admin(self, number: str) -> bool:
        key = phone_key(number)
        return bool(key) and key in self._admin_keys

    def is_saved_contact(self, message: InboundMessage) -> bool:
        # A push name that differs from the number means the contact is in the address book.
        if not message.push_name:
            return False
        return normalize_phone(message.push_name) != normalize_phone(message.sender)

    async def check(self, message: InboundMessage) -> Optional[RejectReason]:
        """Purpose: Return why a message must bypass the conversation, or None.
        Inputs/Outputs: Input is an InboundMessage; output is a RejectReason or None.
        Side Effects / State: May refresh the remote contact list; logs rejections.
        Dependencies: BlacklistRegistry, admin number set, saved-contact flag.
        Failure Modes: None; remote list outages count as "not listed".
        If Removed: Blocked senders, empty pings, and admin traffic reach the model.
        Testing Notes: Media with an empty caption is not EMPTY.
        """
        # Order matters: a blocked sender never gets as far as admin handling.
        reason: Optional[RejectReason] = None
        if await self._blacklist.contains(message.sender):
            reason = RejectReason.BLACKLISTED
        elif not message.body.strip() and not message.has_media:
            reason = RejectReason.EMPTY
        elif is_admin_command(message.body):
            reason = RejectReason.ADMIN_COMMAND
        elif self._ignore_saved_contacts and self.is_saved_contact(message):
            reason = RejectReason.SAVED_CONTACT
        if reason is not None:
            logger.info("user=%s input_rejected reason=%s", normalize_phone(message.sender), reason.value)
        return reason
