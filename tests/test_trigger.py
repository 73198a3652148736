import asyncio

from trigger import RenderTrigger


def test_rapid_changes_coalesce_into_one_pass():
    state = {"name_x": 0}
    rendered = []

    async def run():
        trigger = RenderTrigger(lambda: rendered.append(state["name_x"]), debounce_s=0.01)
        for v in range(1, 6):
            state["name_x"] = v
            trigger.observe(("name_x", v))
        await trigger.flush()
        return trigger

    trigger = asyncio.run(run())
    assert trigger.passes == 1
    # the pass reads current state, so the last edit wins
    assert rendered == [5]


def test_unchanged_snapshot_does_not_schedule():
    async def run():
        trigger = RenderTrigger(lambda: None, debounce_s=0)
        assert trigger.observe((1, 2)) is True
        await trigger.flush()
        assert trigger.observe((1, 2)) is False
        assert not trigger.pending
        return trigger.passes

    assert asyncio.run(run()) == 1


def test_change_during_pass_schedules_another():
    seen = []

    async def run():
        trigger = RenderTrigger(lambda: None, debounce_s=0)

        def render():
            seen.append(len(seen))
            if len(seen) == 1:
                trigger.observe("second")

        trigger._render = render
        trigger.observe("first")
        await trigger.flush()
        return trigger.passes

    assert asyncio.run(run()) == 2
    assert seen == [0, 1]
