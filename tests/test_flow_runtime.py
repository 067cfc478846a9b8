import pytest

from estate_advisor.flow_runtime import FlowBranch, FlowRouter


def _branch(name, matches, result, log):
    async def run(ctx):
        log.append(name)
        return result

    return FlowBranch(name, lambda ctx: matches, run)


@pytest.mark.asyncio
async def test_first_matching_branch_wins():
    log = []
    router = FlowRouter([_branch("a", False, True, log), _branch("b", True, True, log), _branch("c", True, True, log)])
    assert await router.dispatch(object()) == "b"
    assert log == ["b"]


@pytest.mark.asyncio
async def test_declining_branch_falls_through():
    log = []
    router = FlowRouter([_branch("media", True, False, log), _branch("text", True, None, log)])
    assert await router.dispatch(object()) == "text"
    assert log == ["media", "text"]
    assert router.names == ["media", "text"]


@pytest.mark.asyncio
async def test_no_match_returns_none():
    assert await FlowRouter([]).dispatch(object()) is None
