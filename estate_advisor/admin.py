from __future__ import annotations

import logging
from typing import List

from . import messages
from .blacklist import LocalBlacklist
from .utils import normalize_phone

logger = logging.getLogger("estate_advisor.admin")


class AdminCommands:
    """Executes slash commands sent by configured admin numbers."""

    def __init__(self, blacklist: LocalBlacklist) -> None:
        self._blacklist = blacklist

    def execute(self, sender: str, text: str) -> str:
        """Purpose: Run one admin command and return the reply text.
        Inputs/Outputs: Inputs are the admin's number and the raw command; output is
            the text to send back.
        Side Effects / State: May add or remove numbers from the local blacklist.
        Dependencies: LocalBlacklist, messages.admin_help.
        Failure Modes: Unknown or malformed commands return the help text.
        If Removed: Admins must use the HTTP API to manage the blacklist.
        Testing Notes: "/blacklist add 5218112345678" then "/blacklist check ..." -> listed.
        """
        parts: List[str] = text.strip().split()
        command = parts[0].lower() if parts else ""
        logger.info("admin=%s command=%s", normalize_phone(sender), command)
        if command != "/blacklist" or len(parts) < 2:
            return messages.admin_help()
        action = parts[1].lower()
        if action == "list":
            numbers = self._blacklist.all()
            if not numbers:
                return "La lista negra está vacía."
            return "Lista negra:\n" + "\n".join(numbers)
        # Numbers are often typed with spaces ("+52 81 1234 5678").
        number = normalize_phone("".join(parts[2:]))
        if not number:
            return messages.admin_help()
        if action == "add":
            added = self._blacklist.add(number)
            return f"{number} agregado a la lista negra." if added else f"{number} ya estaba en la lista negra."
        if action == "remove":
            removed = self._blacklist.remove(number)
            return f"{number} eliminado de la lista negra." if removed else f"{number} no estaba en la lista negra."
        if action == "check":
            listed = self._blacklist.contains(number)
            return f"{number} está en la lista negra." if listed else f"{number} no está en la lista negra."
        return messages.admin_help()
