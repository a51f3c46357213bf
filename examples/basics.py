import asyncio
import tempfile
from pathlib import Path

from fluxatom import Atom, JSONFileStorage, filter_values

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Defining an atom")
print("-" * 100)
print()

# An atom holds one value. Subscribers get the current value right away.
counter = Atom(0, reducer=lambda state, n: state + n)
revoke = counter.subscribe(lambda value: print(f"Counter is now: {value}"))


async def count():
    await counter.update(1)
    await counter.update(2)


asyncio.run(count())
revoke()

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Deriving streams")
print("-" * 100)
print()

# pipe() derives a new stream; filter_values only lets some values through.
evens = counter.stream.pipe(filter_values(lambda n: n % 2 == 0))
evens.subscribe(lambda value: print(f"Even counter: {value}"))


async def count_more():
    for _ in range(3):
        await counter.update(1)


asyncio.run(count_more())

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Concurrency policies")
print("-" * 100)
print()


async def slow_append(state, item):
    await asyncio.sleep(item["delay"])
    return [*state, item["name"]]


async def policies():
    for policy in ("queue", "throttle", "debounce"):
        items = Atom([], reducer=slow_append, concurrency=policy)
        await asyncio.gather(
            items.update({"name": "slow", "delay": 0.2}),
            items.update({"name": "medium", "delay": 0.1}),
            items.update({"name": "fast", "delay": 0.0}),
        )
        print(f"{policy:>8}: {items.value}")


asyncio.run(policies())

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Persistence")
print("-" * 100)
print()

state_file = Path(tempfile.mkdtemp()) / "state.json"


async def persisted():
    todos = Atom(
        [],
        reducer=lambda state, todo: [*state, todo],
        persist_key="todos",
        app_version="1",
        storage=JSONFileStorage(state_file),
    )
    await todos.update("write docs")
    await todos.update("ship it")


asyncio.run(persisted())

# A second atom with the same key and version starts from the stored todos.
restored = Atom([], persist_key="todos", app_version="1", storage=JSONFileStorage(state_file))
print(f"Restored todos: {restored.value}")

# Bumping the version discards what was stored.
fresh = Atom([], persist_key="todos", app_version="2", storage=JSONFileStorage(state_file))
print(f"After version bump: {fresh.value}")
