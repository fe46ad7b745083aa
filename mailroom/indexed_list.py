from __future__ import annotations

"""
Intrusive doubly-linked list stored in a flat key/value map.

The storage substrate has no ordered containers, only key lookups. A list is
therefore kept as a table of nodes, one key per node, where every node records
the *values* of its neighbours:

    {namespace}:node:{value} -> {"value": value, "prev": <value>, "next": <value>}
    {namespace}:size         -> number of live nodes

Two sentinel nodes, `PRE_HEAD` and `POST_TAIL`, bound the list. They are
created once by `init()` and survive the list becoming empty.

Because nodes are keyed by the stored value itself, a value can appear at most
once per list. Inserting it twice raises `DuplicateItem` instead of silently
aliasing the existing node.
"""

from collections.abc import AsyncIterator
from typing import Any

from .exceptions import DuplicateItem, EmptyList, IndexCorrupted, ItemNotFound
from .storage.transaction import Transaction

PRE_HEAD = "__pre_head__"
POST_TAIL = "__post_tail__"

_SENTINELS = frozenset((PRE_HEAD, POST_TAIL))


class IndexedList:
    """
    A FIFO of unique string items with O(1) append, peek, pop and removal by value.

    Parameters
    ----------
    txn:
        The transaction every read and write goes through.
    namespace:
        Key prefix owning this list's node table and size counter.
    """

    __slots__ = ("_txn", "_namespace")

    def __init__(self, txn: Transaction, namespace: str) -> None:
        self._txn = txn
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    async def init(self) -> None:
        """
        Materialize the sentinel pair, unless `PRE_HEAD.next` is already set.

        Idempotent: calling it on an initialized list (empty or not) is a no-op.
        """
        head = await self._node(PRE_HEAD)
        if head is not None and head.get("next"):
            return
        self._put(PRE_HEAD, prev="", next=POST_TAIL)
        self._put(POST_TAIL, prev=PRE_HEAD, next="")
        self._txn.set(self._size_key, 0)

    async def size(self) -> int:
        raw = await self._txn.get(self._size_key)
        return int(raw or 0)

    async def contains(self, item: str) -> bool:
        if item in _SENTINELS:
            return False
        return await self._node(item) is not None

    async def insert_tail(self, item: str) -> None:
        """
        Append `item` just before the tail sentinel.

        Raises
        ------
        DuplicateItem
            If `item` already has a node in this list.
        """
        self._check_item(item)
        if await self._node(item) is not None:
            raise DuplicateItem(f"{item!r} is already in list {self._namespace!r}.")

        tail = await self._node(POST_TAIL)
        if tail is None:
            raise IndexCorrupted(f"List {self._namespace!r} is not initialized.")

        last = tail["prev"]
        last_node = await self._require(last)

        self._put(item, prev=last, next=POST_TAIL)
        self._put(last, prev=last_node["prev"], next=item)
        self._put(POST_TAIL, prev=item, next=tail["next"])
        self._txn.set(self._size_key, await self.size() + 1)

    async def peek_head(self) -> str:
        """
        Return the oldest item without removing it.

        Raises
        ------
        EmptyList
            If the list holds no items.
        """
        if await self.size() == 0:
            raise EmptyList(f"List {self._namespace!r} is empty.")
        head = await self._require(PRE_HEAD)
        return head["next"]

    async def remove_head(self) -> str:
        """
        Remove and return the oldest item.

        Raises
        ------
        EmptyList
            If the list holds no items.
        """
        item = await self.peek_head()
        await self.remove(item)
        return item

    async def remove(self, item: str) -> None:
        """
        Unlink `item` wherever it is, using the neighbour links stored in its node.

        Raises
        ------
        EmptyList
            If the list holds no items.
        ItemNotFound
            If `item` has no node in this list.
        """
        size = await self.size()
        if size == 0:
            raise EmptyList(f"List {self._namespace!r} is empty.")
        self._check_item(item)

        node = await self._node(item)
        if node is None:
            raise ItemNotFound(f"{item!r} is not in list {self._namespace!r}.")

        prev_value, next_value = node["prev"], node["next"]
        prev_node = await self._require(prev_value)
        next_node = await self._require(next_value)

        self._put(prev_value, prev=prev_node["prev"], next=next_value)
        self._put(next_value, prev=prev_value, next=next_node["next"])
        self._txn.delete(self._node_key(item))
        self._txn.set(self._size_key, size - 1)

    async def items(self) -> AsyncIterator[str]:
        """
        Iterate over the items from head to tail.

        This is a traversal, one lookup per node. It is meant for inspection,
        not for the hot paths.
        """
        head = await self._node(PRE_HEAD)
        if head is None:
            return
        current = head["next"]
        remaining = await self.size()
        while current != POST_TAIL:
            if remaining <= 0:
                raise IndexCorrupted(f"List {self._namespace!r} is longer than its size.")
            yield current
            remaining -= 1
            current = (await self._require(current))["next"]

    @property
    def _size_key(self) -> str:
        return f"{self._namespace}:size"

    def _node_key(self, value: str) -> str:
        return f"{self._namespace}:node:{value}"

    async def _node(self, value: str) -> dict[str, Any] | None:
        return await self._txn.get(self._node_key(value))

    async def _require(self, value: str) -> dict[str, Any]:
        node = await self._node(value)
        if node is None:
            raise IndexCorrupted(f"Dangling link to {value!r} in list {self._namespace!r}.")
        return node

    def _put(self, value: str, *, prev: str, next: str) -> None:
        self._txn.set(self._node_key(value), {"value": value, "prev": prev, "next": next})

    @staticmethod
    def _check_item(item: str) -> None:
        if not isinstance(item, str) or not item:
            raise ValueError("List items must be non-empty strings.")
        if item in _SENTINELS:
            raise ValueError(f"{item!r} is a reserved sentinel value.")
