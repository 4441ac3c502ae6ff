import logging

from pipewright.contracts import AgentType
from pipewright.logs import AgentTypeFilter, agent_scope, current_agent_type


def _record():
    return logging.LogRecord("pipewright.test", logging.INFO, __file__, 1, "msg", None, None)


def test_agent_scope_tags_records_and_restores():
    log_filter = AgentTypeFilter()
    assert current_agent_type() is None

    with agent_scope(AgentType.CHAT):
        with agent_scope("system"):
            record = _record()
            log_filter.filter(record)
            assert record.agent_type == "system"
        assert current_agent_type() == "chat"

    record = _record()
    assert log_filter.filter(record)
    assert record.agent_type == "-"
    assert current_agent_type() is None
