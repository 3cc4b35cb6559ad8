from kmm.reconcile.models import ClusterTags, TagOperation
from kmm.reconcile.tags import TagSelection, TagState, plan_tag_changes

from conftest import make_cluster


def _ct(cluster_id, *tags):
    return ClusterTags(id=cluster_id, current_tag_ids=frozenset(tags))


def test_clusters_needing_same_change_share_one_operation():
    clusters = [_ct(i) for i in range(1, 6)]

    plan = plan_tag_changes({1}, clusters)

    assert plan.assign == [TagOperation(cluster_ids={1, 2, 3, 4, 5}, tag_ids={1})]
    assert plan.remove == []


def test_no_drift_yields_empty_plan():
    clusters = [_ct(1, 1, 2), _ct(2, 1, 2)]

    plan = plan_tag_changes({1, 2}, clusters)

    assert plan.assign == []
    assert plan.remove == []
    assert plan.is_empty


def test_grouping_uses_exact_tag_sets():
    clusters = [_ct(1), _ct(2, 1), _ct(3), _ct(4, 3)]

    plan = plan_tag_changes({1, 2}, clusters)

    assert plan.assign == [
        TagOperation(cluster_ids={1, 3, 4}, tag_ids={1, 2}),
        TagOperation(cluster_ids={2}, tag_ids={2}),
    ]
    assert plan.remove == [TagOperation(cluster_ids={4}, tag_ids={3})]


def test_unmanaged_tags_are_left_alone():
    clusters = [_ct(1, 1, 9), _ct(2, 9)]

    plan = plan_tag_changes({1}, clusters, managed_tag_ids={1, 2})

    assert plan.assign == [TagOperation(cluster_ids={2}, tag_ids={1})]
    assert plan.remove == []


def test_target_tags_outside_managed_universe_are_not_assigned():
    plan = plan_tag_changes({1, 5}, [_ct(1)], managed_tag_ids={1})

    assert plan.assign == [TagOperation(cluster_ids={1}, tag_ids={1})]


def test_plan_never_assigns_and_removes_same_pair():
    clusters = [_ct(1, 1), _ct(2, 2), _ct(3, 1, 2, 3)]

    plan = plan_tag_changes({2, 3}, clusters)

    assigned = set().union(*(op.pairs() for op in plan.assign))
    removed = set().union(*(op.pairs() for op in plan.remove))
    assert not assigned & removed


def test_planner_accepts_directory_clusters():
    clusters = [make_cluster(1, tag_ids={1}), make_cluster(2)]

    plan = plan_tag_changes(set(), clusters)

    assert plan.remove == [TagOperation(cluster_ids={1}, tag_ids={1})]


def test_selection_states_from_clusters():
    clusters = [_ct(1, 1, 2), _ct(2, 1)]

    selection = TagSelection.from_clusters(clusters, tag_ids=[1, 2, 3])

    assert selection.state_of(1) is TagState.CHECKED
    assert selection.state_of(2) is TagState.MIXED
    assert selection.state_of(3) is TagState.UNCHECKED


def test_selection_is_a_value():
    selection = TagSelection.from_clusters([_ct(1)], tag_ids=[1])

    updated = selection.with_choice(1, True)

    assert selection.state_of(1) is TagState.UNCHECKED
    assert updated.state_of(1) is TagState.CHECKED


def test_selection_plan_leaves_mixed_tags_untouched():
    clusters = [_ct(1, 1, 2), _ct(2, 1)]
    selection = TagSelection.from_clusters(clusters, tag_ids=[1, 2, 3])

    # untouched dialog: nothing to do
    assert selection.plan(clusters).is_empty

    selection = selection.with_choice(1, False).with_choice(3, True)
    plan = selection.plan(clusters)

    assert plan.assign == [TagOperation(cluster_ids={1, 2}, tag_ids={3})]
    assert plan.remove == [TagOperation(cluster_ids={1, 2}, tag_ids={1})]
    assert selection.target_tag_ids == {3}
    assert selection.managed_tag_ids == {1, 3}
