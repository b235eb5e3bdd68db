"""Who may launch jobs as whom."""
from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from ..errors import NotAuthorized

logger = logging.getLogger(__name__)

_IDENTITY = re.compile(r"^[A-Za-z_][A-Za-z0-9_.@-]{0,63}$")


class ProxyUserPolicy:
    """Impersonation rules.

    A user always acts as itself.  Acting as someone else requires an entry
    in ``proxy_users`` naming that identity (or ``"*"``).  Banned identities
    can never run jobs, directly or by proxy.
    """

    def __init__(
        self,
        proxy_users: Optional[Dict[str, List[str]]] = None,
        banned_users: Iterable[str] = (),
    ) -> None:
        self.proxy_users = {k: set(v) for k, v in (proxy_users or {}).items()}
        self.banned_users = set(banned_users)

    def check(self, user: str, doas: Optional[str] = None) -> str:
        """Return the effective identity or raise ``NotAuthorized``."""
        if not user or not _IDENTITY.match(user):
            raise NotAuthorized(f"Invalid user name {user!r}")
        target = doas or user
        if not _IDENTITY.match(target):
            raise NotAuthorized(f"Invalid doas name {target!r}")
        if target in self.banned_users:
            raise NotAuthorized(f"User {target} is not allowed to run jobs")
        if target == user:
            return target
        allowed = self.proxy_users.get(user, set())
        if "*" in allowed or target in allowed:
            logger.info("%s acting as %s", user, target)
            return target
        raise NotAuthorized(f"User {user} is not allowed to impersonate {target}")
