"""Partitioning of an event's conversion actions by destination account."""

import logging
from typing import Dict, Iterator, List, Optional

from conversion_worker.models import AccountGroup, ConversionAction, ConversionEvent, normalize_account_id

logger = logging.getLogger(__name__)


class AccountGroups:
    """Ordered mapping of normalized account id -> AccountGroup.

    Groups are kept in a list in first-seen order, with a separate index for
    lookup, so iteration order never depends on dict behaviour.
    """

    def __init__(self, groups: Optional[List[AccountGroup]] = None):
        self._groups: List[AccountGroup] = []
        self._index: Dict[str, int] = {}
        for group in groups or []:
            if group.account_id in self._index:
                raise ValueError(f"Duplicate account group: {group.account_id}")
            self._index[group.account_id] = len(self._groups)
            self._groups.append(group)

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[AccountGroup]:
        return iter(self._groups)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._index

    def __getitem__(self, account_id: str) -> AccountGroup:
        return self._groups[self._index[account_id]]

    def __eq__(self, other) -> bool:
        if not isinstance(other, AccountGroups):
            return NotImplemented
        return self._groups == other._groups

    def __repr__(self) -> str:
        return f"AccountGroups({self._groups!r})"

    def get(self, account_id: str) -> Optional[AccountGroup]:
        position = self._index.get(account_id)
        return self._groups[position] if position is not None else None

    def account_ids(self) -> List[str]:
        return [group.account_id for group in self._groups]


def group_conversions(event: ConversionEvent) -> AccountGroups:
    """Build one AccountGroup per destination account.

    Within an account, a repeated conversion_action_id is dropped and the
    first-seen action (and its timestamp) is kept.
    """
    order: List[str] = []
    display_ids: Dict[str, str] = {}
    pending: Dict[str, List[ConversionAction]] = {}
    seen_actions: Dict[str, set] = {}

    for action in event.actions:
        account_id = normalize_account_id(action.account_id)

        if account_id not in pending:
            order.append(account_id)
            display_ids[account_id] = action.account_id
            pending[account_id] = []
            seen_actions[account_id] = set()

        if action.conversion_action_id in seen_actions[account_id]:
            logger.debug(
                f"Skipping duplicate conversion action {action.conversion_action_id} "
                f"for account {action.account_id} (click {event.click_id})"
            )
            continue

        seen_actions[account_id].add(action.conversion_action_id)
        pending[account_id].append(action)

    return AccountGroups([
        AccountGroup(
            account_id=account_id,
            display_account_id=display_ids[account_id],
            click_id=event.click_id,
            actions=tuple(pending[account_id]),
        )
        for account_id in order
    ])
