# phase_engine/utils/referral_tree.py
"""
Referral tree walking.
Stops on missing parents and on cycles in corrupted data.
"""
from typing import Callable, List
import logging

from phase_engine.gateway.persistence import PersistenceGateway

logger = logging.getLogger(__name__)

# A member's tier depends on two levels below it, so a change at a member
# can affect the member itself and its two uplines
QUALIFICATION_DEPTH = 2


class ReferralTreeWalker:
    """Upline walking over stored parent links."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def walk_upline(
            self,
            startMemberId: int,
            callback: Callable[[int, int], bool],
            max_depth: int = QUALIFICATION_DEPTH
    ) -> int:
        """
        Walk up the parent chain, calling callback for each upline.

        Args:
            startMemberId: Member to start from (not passed to callback)
            callback: Function(memberId, level) -> continue_walking (bool)
            max_depth: Maximum number of levels

        Returns:
            Number of uplines processed
        """
        currentId = startMemberId
        visited = {startMemberId}
        processed = 0

        for level in range(1, max_depth + 1):
            parentId = self.gateway.getParentId(currentId)
            if parentId is None:
                break

            if parentId in visited:
                logger.error(f"Cycle detected at member {parentId} walking up from {startMemberId}")
                break
            visited.add(parentId)

            processed += 1
            if not callback(parentId, level):
                break

            currentId = parentId

        return processed

    def get_affected_members(self, memberId: int) -> List[int]:
        """
        Members whose tier may change when memberId changes:
        the member itself followed by its uplines, nearest first.
        """
        affected = [memberId]

        def collect(uplineId: int, level: int) -> bool:
            affected.append(uplineId)
            return True

        self.walk_upline(memberId, collect)
        return affected
