"""Effective role resolution across divergent store views."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from carcare.identity.config import StoreKind
from carcare.identity.records import IdentityRecord, Role

logger = logging.getLogger(__name__)

Candidate = tuple[StoreKind, IdentityRecord]


class RoleResolver:
    """Pick the effective role for one identity held by several stores.

    The most privileged candidate wins; among equal ranks the candidate from
    the higher-priority store wins. An escalation written to any single
    store therefore takes effect platform-wide before the stores converge.

    Example:
        >>> resolver = RoleResolver()
        >>> resolver.resolve([
        ...     (StoreKind.DURABLE, durable_record),    # role=SUPER_ADMIN
        ...     (StoreKind.VOLATILE, volatile_record),  # role=None (USER)
        ... ])
        <Role.SUPER_ADMIN: 'SUPER_ADMIN'>
    """

    def pick(self, candidates: Sequence[Candidate]) -> Candidate:
        """Return the candidate whose role is effective.

        Raises:
            ValueError: If there are no candidates.
        """
        if not candidates:
            raise ValueError("Cannot resolve a role without candidates")
        return min(
            candidates,
            key=lambda candidate: (-candidate[1].effective_role.rank, candidate[0].priority),
        )

    def resolve(self, candidates: Sequence[Candidate]) -> Role:
        """Return the effective role over ``candidates``."""
        store_kind, record = self.pick(candidates)
        roles = {candidate[1].effective_role for candidate in candidates}
        if len(roles) > 1:
            logger.debug(
                f"Role conflict for {record.email}: using {record.effective_role.value} "
                f"from {store_kind.value} store"
            )
        return record.effective_role
