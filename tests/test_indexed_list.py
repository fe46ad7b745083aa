import pytest

from mailroom import DuplicateItem, EmptyList, IndexedList, ItemNotFound
from mailroom.indexed_list import POST_TAIL, PRE_HEAD
from mailroom.storage.transaction import Transaction

pytestmark = pytest.mark.anyio


async def _items(lst: IndexedList) -> list[str]:
    return [item async for item in lst.items()]


async def test_init_is_idempotent(storage):
    txn = Transaction(storage)
    lst = IndexedList(txn, "t")
    await lst.init()
    await lst.insert_tail("a")

    await lst.init()
    await lst.init()

    assert await lst.size() == 1
    assert await lst.peek_head() == "a"


async def test_uninitialized_list_is_empty(storage):
    lst = IndexedList(Transaction(storage), "t")

    assert await lst.size() == 0
    assert await _items(lst) == []
    with pytest.raises(EmptyList):
        await lst.peek_head()
    with pytest.raises(EmptyList):
        await lst.remove_head()


async def test_insert_tail_keeps_fifo_order(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()
    for item in ("a", "b", "c"):
        await lst.insert_tail(item)

    assert await lst.size() == 3
    assert await _items(lst) == ["a", "b", "c"]
    assert await lst.remove_head() == "a"
    assert await lst.remove_head() == "b"
    assert await _items(lst) == ["c"]


async def test_insert_duplicate_fails(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()
    await lst.insert_tail("a")

    with pytest.raises(DuplicateItem):
        await lst.insert_tail("a")
    assert await lst.size() == 1


async def test_remove_from_middle_head_and_tail(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()
    for item in ("a", "b", "c", "d"):
        await lst.insert_tail(item)

    await lst.remove("b")
    assert await _items(lst) == ["a", "c", "d"]

    await lst.remove("d")
    assert await _items(lst) == ["a", "c"]

    await lst.remove("a")
    assert await _items(lst) == ["c"]
    assert await lst.peek_head() == "c"

    await lst.remove("c")
    assert await lst.size() == 0
    assert await _items(lst) == []


async def test_remove_missing_item_fails(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()

    with pytest.raises(EmptyList):
        await lst.remove("a")

    await lst.insert_tail("a")
    with pytest.raises(ItemNotFound):
        await lst.remove("b")


async def test_emptied_list_keeps_sentinels_and_is_reusable(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()
    await lst.insert_tail("a")
    await lst.remove_head()

    await lst.init()
    await lst.insert_tail("a")
    await lst.insert_tail("b")

    assert await _items(lst) == ["a", "b"]


async def test_removed_item_can_be_inserted_again(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()
    await lst.insert_tail("a")
    await lst.insert_tail("b")
    await lst.remove("a")

    await lst.insert_tail("a")

    assert await _items(lst) == ["b", "a"]
    assert await lst.contains("a")


async def test_sentinels_are_not_valid_items(storage):
    lst = IndexedList(Transaction(storage), "t")
    await lst.init()

    for sentinel in (PRE_HEAD, POST_TAIL):
        with pytest.raises(ValueError):
            await lst.insert_tail(sentinel)
        assert not await lst.contains(sentinel)

    with pytest.raises(ValueError):
        await lst.insert_tail("")


async def test_lists_in_different_namespaces_are_independent(storage):
    txn = Transaction(storage)
    first = IndexedList(txn, "one")
    second = IndexedList(txn, "two")
    await first.init()
    await second.init()
    await first.insert_tail("a")
    await second.insert_tail("a")

    await first.remove("a")

    assert await first.size() == 0
    assert await second.peek_head() == "a"


async def test_committed_list_is_visible_to_a_new_transaction(storage):
    txn = Transaction(storage)
    lst = IndexedList(txn, "t")
    await lst.init()
    await lst.insert_tail("a")
    await lst.insert_tail("b")
    await txn.commit()

    reloaded = IndexedList(Transaction(storage), "t")

    assert await reloaded.size() == 2
    assert await _items(reloaded) == ["a", "b"]
    assert storage.keys("t:node:") == [
        "t:node:__post_tail__",
        "t:node:__pre_head__",
        "t:node:a",
        "t:node:b",
    ]


async def test_rolled_back_list_changes_are_not_stored(storage):
    txn = Transaction(storage)
    lst = IndexedList(txn, "t")
    await lst.init()
    await lst.insert_tail("a")
    txn.rollback()

    assert storage.keys() == []
    assert await IndexedList(Transaction(storage), "t").size() == 0
