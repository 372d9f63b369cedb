import asyncio

from claude_meter.network import ReachabilityMonitor, is_online


def test_unreachable_host_is_offline():
    assert is_online("http://127.0.0.1:9", timeout=0.5) is False


def test_reports_only_transitions():
    results = iter([True, False, False, True])
    changes = []
    monitor = ReachabilityMonitor("https://api.anthropic.com", changes.append, is_reachable=lambda url: next(results))

    async def scenario():
        for _ in range(4):
            await monitor.check()

    asyncio.run(scenario())
    assert changes == [False, True]
    assert monitor.available is True
