import pytest

from rawprobe.items import ItemList


def test_duplicate_keys_keep_insertion_order():
    items = ItemList()
    items.add("Set-Cookie", "a=1")
    items.add("Content-Type", "text/html")
    items.add("Set-Cookie", "b=2")

    assert items.keys() == ["Set-Cookie", "Content-Type", "Set-Cookie"]
    assert items.get_all("Set-Cookie") == ["a=1", "b=2"]
    assert items["Set-Cookie"] == "a=1"


def test_lookup_by_key_and_index():
    items = ItemList([("Host", "example.com"), ("Accept", "*/*")])

    assert items[1] == ("Accept", "*/*")
    assert items.first("Host") == "example.com"
    assert items.contains_key("Accept")
    assert not items.contains_key("accept")


def test_missing_key_raises_or_defaults():
    items = ItemList([("Host", "example.com")])

    with pytest.raises(KeyError):
        items.first("Cookie")
    assert items.get("Cookie") is None
    assert items.get("Cookie", "none") == "none"


def test_find_key_ignores_case_and_padding():
    items = ItemList([(" transfer-encoding", " chunked")])

    assert items.find_key("Transfer-Encoding") == " transfer-encoding"
    assert items.find_key("Content-Length") is None


def test_as_dict_keeps_first_value():
    items = ItemList([("A", "1"), ("B", "2"), ("A", "3")])

    assert items.as_dict() == {"A": "1", "B": "2"}


def test_compares_equal_to_plain_pair_list():
    assert ItemList([("A", "1")]) == [("A", "1")]
    assert repr(ItemList([("A", "1")])) == "ItemList([('A', '1')])"
