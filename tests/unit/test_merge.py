from pipewright.utils.merge import deep_merge


def test_deep_merge_nested_dicts_and_replaces_lists():
    base = {"flow_config": {"a": {"x": 1, "queue": [1, 2]}}, "keep": True}
    updates = {"flow_config": {"a": {"queue": [3]}, "b": {"y": 2}}}

    merged = deep_merge(base, updates)

    assert merged == {
        "flow_config": {"a": {"x": 1, "queue": [3]}, "b": {"y": 2}},
        "keep": True,
    }
    assert base["flow_config"]["a"]["queue"] == [1, 2]
