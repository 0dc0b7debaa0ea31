import json

import pytest

from integrasync.core.nodes import CHILD_KIND, PARENT_KIND, Node
from integrasync.core.tree import InMemoryTree, TreeFileError, load_tree, save_tree


def test_core_mutations_do_not_notify_but_user_edits_do():
    tree = InMemoryTree()
    events = []
    unsubscribe = tree.on_external_change(lambda: events.append(1))

    pid = tree.add_node(PARENT_KIND, "db")
    assert len(events) == 1

    cid = tree.create_child_node(pid, "i1", {"label": "db-1", "placement": {"size": [300, 42]}})
    tree.update_nodes([{"id": cid, "label": "db-1b"}, {"id": "gone", "label": "x"}])
    tree.delete_nodes(["missing"])
    assert len(events) == 1

    child = tree.get(cid)
    assert child.kind == CHILD_KIND and child.parent_id == pid and child.instance_id == "i1"
    assert child.label == "db-1b" and child.placement == {"size": [300, 42]}

    tree.edit_node(pid, label="web")
    tree.remove_nodes([cid])
    assert len(events) == 3

    unsubscribe()
    tree.add_node(PARENT_KIND, "api")
    assert len(events) == 3


def test_listed_nodes_are_snapshots():
    tree = InMemoryTree([Node(id="a", kind=PARENT_KIND, label="db")])
    snap = tree.list_nodes()
    snap[0].label = "changed"
    assert tree.get("a").label == "db"


def test_selection_marks_tree_busy():
    tree = InMemoryTree([Node(id="a", kind=PARENT_KIND, label="db")])
    assert not tree.is_busy()
    tree.select(["a", "unknown"])
    assert tree.is_busy()
    tree.delete_nodes(["a"])
    assert not tree.is_busy()


def test_create_under_unknown_parent_fails():
    with pytest.raises(KeyError):
        InMemoryTree().create_child_node("nope", "i1", {})


def test_failing_listener_does_not_break_edits():
    tree = InMemoryTree()
    tree.on_external_change(lambda: 1 / 0)
    seen = []
    tree.on_external_change(lambda: seen.append(1))
    tree.add_node(PARENT_KIND, "db")
    assert seen == [1]


def test_save_and_load_roundtrip(tmp_path):
    path = tmp_path / "sub" / "board.json"
    tree = InMemoryTree([
        Node(id="a", kind=PARENT_KIND, label="\U0001F534 db", placement={"point": [1, 2]}),
        Node(id="b", kind=CHILD_KIND, parent_id="a", instance_id="i1", label="db-1"),
    ])
    save_tree(tree, str(path))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert [n["id"] for n in data["nodes"]] == ["a", "b"]
    assert load_tree(str(path)).list_nodes() == tree.list_nodes()
    assert list(path.parent.iterdir()) == [path]


def test_load_missing_and_invalid(tmp_path):
    assert load_tree(str(tmp_path / "none.json")).list_nodes() == []

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(TreeFileError):
        load_tree(str(bad))

    wrong = tmp_path / "wrong.json"
    wrong.write_text(json.dumps({"nodes": {"a": 1}}), encoding="utf-8")
    with pytest.raises(TreeFileError):
        load_tree(str(wrong))
