from integrasync.core.children import ChildLayout, ChildReconciler
from integrasync.core.nodes import (
    CHILD_KIND,
    PARENT_KIND,
    STATUS_ERROR,
    STATUS_OK,
    STATUS_PENDING,
    InstanceRecord,
    Node,
    TrackedParent,
)
from integrasync.core.registry import ParentRegistry
from integrasync.core.tree import InMemoryTree


def _world(status=STATUS_OK, instances=None):
    tree = InMemoryTree([
        Node(id="p", kind=PARENT_KIND, label="db"),
        Node(id="c1", kind=CHILD_KIND, parent_id="p", instance_id="i1", label="db-1"),
        Node(id="c2", kind=CHILD_KIND, parent_id="p", instance_id="i2", label="db-2"),
    ])
    reg = ParentRegistry()
    reg.add(TrackedParent(identity="db", node=tree.get("p"), status=status, instances=instances))
    return tree, reg


def _by_instance(tree):
    return {n.instance_id: n for n in tree.list_nodes() if n.is_child}


def test_create_update_delete():
    tree, reg = _world(instances=[
        InstanceRecord("i2", "db-2 (rebuilding)"),
        InstanceRecord("i3", "db-3"),
    ])
    counts = ChildReconciler(tree, ChildLayout(width=200, height=30)).reconcile(reg, tree.list_nodes())

    assert counts == {"CHILD_DELETED": 1, "CHILD_CREATED": 1, "CHILD_UPDATED": 1}
    kids = _by_instance(tree)
    assert set(kids) == {"i2", "i3"}
    assert kids["i2"].id == "c2" and kids["i2"].label == "db-2 (rebuilding)"
    new = kids["i3"]
    assert new.parent_id == "p" and new.label == "db-3" and new.kind == CHILD_KIND
    # second in the fetched list -> second slot beneath the parent
    assert new.placement == {"size": [200, 30], "offset": [0, 60]}
    assert set(reg.get("db").children) == {"i2", "i3"}


def test_manual_child_edit_is_overwritten():
    tree, reg = _world(instances=[InstanceRecord("i1", "db-1"), InstanceRecord("i2", "db-2")])
    tree.edit_node("c1", label="my note")
    counts = ChildReconciler(tree).reconcile(reg, tree.list_nodes())
    assert counts == {"CHILD_UPDATED": 1}
    assert tree.get("c1").label == "db-1"


def test_parents_without_successful_fetch_are_skipped():
    for status, instances in ((STATUS_ERROR, [InstanceRecord("i9", "x")]), (STATUS_PENDING, None), (STATUS_OK, None)):
        tree, reg = _world(status=status, instances=instances)
        before = tree.list_nodes()
        counts = ChildReconciler(tree).reconcile(reg, before)
        assert counts == {}
        assert tree.list_nodes() == before


def test_empty_instance_list_deletes_all_children():
    tree, reg = _world(instances=[])
    deletes = []
    original = tree.delete_nodes
    tree.delete_nodes = lambda ids: (deletes.append(sorted(ids)), original(ids))

    counts = ChildReconciler(tree).reconcile(reg, tree.list_nodes())

    assert counts == {"CHILD_DELETED": 2}
    assert deletes == [["c1", "c2"]]
    assert _by_instance(tree) == {}


def test_collaborator_failure_is_isolated_per_parent():
    tree = InMemoryTree([
        Node(id="pa", kind=PARENT_KIND, label="a"),
        Node(id="pb", kind=PARENT_KIND, label="b"),
    ])
    reg = ParentRegistry()
    reg.add(TrackedParent(identity="a", node=tree.get("pa"), status=STATUS_OK, instances=[InstanceRecord("x", "x")]))
    reg.add(TrackedParent(identity="b", node=tree.get("pb"), status=STATUS_OK, instances=[InstanceRecord("y", "y")]))

    original = tree.create_child_node

    def create(parent_id, instance_id, fields):
        if parent_id == "pa":
            raise RuntimeError("canvas refused")
        return original(parent_id, instance_id, fields)

    tree.create_child_node = create
    counts = ChildReconciler(tree).reconcile(reg, tree.list_nodes())

    assert counts == {"EXCEPTION": 1, "CHILD_CREATED": 1}
    assert set(_by_instance(tree)) == {"y"}
