"""
Basic Usage Example

This example verifies the output of a tiny "uppercase" service:
- Attaching output channels to a verification harness
- Waiting for output that arrived before the assertion was made
- Checking the service's log lines

The service and its broker are simulated with in-memory channels, so the
example runs without any infrastructure.

Run with: python examples/basic_usage.py
"""

import asyncio
import logging

from outputmatcher import (
    InMemoryChannel,
    VerificationHarness,
    async_wait_until,
    contains,
    equals,
)

# =============================================================================
# Step 1: The application under test
# =============================================================================
# It reads words, logs what it does and writes the uppercased word to its
# output topic. Audit records go to a fire-and-forget exchange.


async def uppercase_service(
    words: list[str],
    output: InMemoryChannel,
    audit: InMemoryChannel,
    log: list[str],
) -> None:
    log.append("INFO Started UppercaseService")
    for word in words:
        output.publish(word.upper())
        audit.publish(f"processed: {word}")
        log.append(f"DEBUG uppercased {word!r}")
        await asyncio.sleep(0)


async def main() -> None:
    logging.basicConfig(level=logging.WARNING)

    output = InMemoryChannel("uppercase.out", replayable=True)
    audit = InMemoryChannel("audit.out", replayable=False)
    service_log: list[str] = []

    # =========================================================================
    # Step 2: Attach the channels
    # =========================================================================
    # Replayable channels default to the REWIND strategy, fire-and-forget
    # ones to the CACHE strategy.

    harness = VerificationHarness()
    await harness.add_channel(output)
    await harness.add_channel(audit)

    async with harness:
        # =====================================================================
        # Step 3: Run the service, then assert
        # =====================================================================
        # The output is produced before any matcher exists. The listeners
        # recover it by rewinding or from the cache.

        await uppercase_service(["hello", "world"], output, audit, service_log)

        messages = await harness.output("uppercase.out").wait_for(
            equals("HELLO"), equals("WORLD"), timeout=5.0
        )
        print(f"Uppercase output: {[m.payload for m in messages]}")

        [record] = await harness.output("audit.out").wait_for(contains("world"), timeout=5.0)
        print(f"Audit record: {record.payload}")

        # =====================================================================
        # Step 4: Check the logs
        # =====================================================================

        harness.logs.check_for("uppercased", times=2)()
        harness.logs.consume(service_log)
        await async_wait_until(harness.logs.check_for("uppercased", times=2), timeout=1.0)
        print(f"Log lines seen: {harness.logs.line_count}")

        print(f"Stats: {harness.get_stats_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
