from integrasync.core.diff import diff


def test_diff_partitions_keys():
    prev = {"a": 1, "b": 2, "c": 3}
    nxt = {"b": 20, "c": 3, "d": 4}

    ch = diff(prev, nxt)

    assert set(ch.created) == {"d"} and ch.created["d"] == 4
    assert set(ch.deleted) == {"a"} and ch.deleted["a"] == 1
    assert ch.same == {"b": (2, 20), "c": (3, 3)}
    assert ch.summary() == "c1 d1 s2"
    assert not ch.is_empty()


def test_diff_key_sets_follow_set_algebra():
    cases = [
        ({}, {}),
        ({}, {"x": 1}),
        ({"x": 1}, {}),
        ({"x": 1, "y": 2}, {"y": 3, "z": 4}),
        ({i: i for i in range(10)}, {i: -i for i in range(5, 15)}),
    ]
    for a, b in cases:
        ch = diff(a, b)
        assert set(ch.created) == set(b) - set(a)
        assert set(ch.deleted) == set(a) - set(b)
        assert set(ch.same) == set(a) & set(b)

        # applying the changes to A reproduces B's key set
        keys = set(a) | set(ch.created)
        keys -= set(ch.deleted)
        assert keys == set(b)


def test_diff_is_pure_and_empty_when_equal_keys():
    prev = {"a": [1]}
    nxt = {"a": [2]}
    ch = diff(prev, nxt)
    assert ch.is_empty()
    assert prev == {"a": [1]} and nxt == {"a": [2]}
    # value pair is handed back untouched
    assert ch.same["a"][0] is prev["a"] and ch.same["a"][1] is nxt["a"]
