"""
Smoke test for the runnable examples.
"""

import pytest

from examples.basic_usage import main


@pytest.mark.asyncio
async def test_basic_usage_runs(capsys: pytest.CaptureFixture[str]) -> None:
    await main()

    out = capsys.readouterr().out
    assert "Uppercase output: ['HELLO', 'WORLD']" in out
    assert "Audit record: processed: world" in out
    assert "Log lines seen: 3" in out
