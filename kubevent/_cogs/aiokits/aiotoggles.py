"""
The "synced" states of the watches, and the startup barrier made of them.

Every watch owns a :class:`Toggle`, which is turned on when its first listing
is over. The toggles of all the watches belong to one :class:`ToggleSet`,
and the controller's workers are not started until the whole set is on.
The watches added later (e.g. for the kinds of the reloaded triggers) join
the same set, and the set turns off again until they are synced too.
"""
import asyncio
from collections.abc import Callable, Collection, Iterable, Iterator


class Toggle:
    """
    A boolean state that can be awaited in both directions.

    Unlike :class:`asyncio.Event`, it can be awaited until turned off,
    and it can share its condition with other toggles, so that a waiter
    of the whole set is woken up by any of them.
    """

    def __init__(
            self,
            initial: bool = False,
            *,
            name: str | None = None,
            condition: asyncio.Condition | None = None,
    ) -> None:
        super().__init__()
        self.name = name
        self._state = bool(initial)
        self._condition = condition if condition is not None else asyncio.Condition()

    def __repr__(self) -> str:
        state = 'on' if self._state else 'off'
        prefix = f'{self.name}: ' if self.name is not None else ''
        return f'<{self.__class__.__name__}: {prefix}{state}>'

    def __bool__(self) -> bool:
        # Too easy to mistake for the state; is_on()/is_off() must be used.
        raise NotImplementedError

    def is_on(self) -> bool:
        return self._state

    def is_off(self) -> bool:
        return not self._state

    async def turn_to(self, state: bool) -> None:
        async with self._condition:
            self._state = bool(state)
            self._condition.notify_all()

    async def wait_for(self, state: bool) -> None:
        async with self._condition:
            await self._condition.wait_for(lambda: self._state == bool(state))


class ToggleSet(Collection[Toggle]):
    """
    The toggles reduced to one state by a function: :func:`all` or :func:`any`.

    An empty set reduced by :func:`all` is on: nothing to wait for.
    Only the toggles made by the set belong to it, since they must share
    its condition to wake up its waiters.
    """

    def __init__(self, fn: Callable[[Iterable[bool]], bool]) -> None:
        super().__init__()
        self._fn = fn
        self._toggles: set[Toggle] = set()
        self._condition = asyncio.Condition()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {sorted(map(repr, self._toggles))}>'

    def __len__(self) -> int:
        return len(self._toggles)

    def __iter__(self) -> Iterator[Toggle]:
        return iter(self._toggles)

    def __contains__(self, toggle: object) -> bool:
        return toggle in self._toggles

    def __bool__(self) -> bool:
        raise NotImplementedError

    def is_on(self) -> bool:
        return self._fn(toggle.is_on() for toggle in self._toggles)

    def is_off(self) -> bool:
        return not self.is_on()

    async def wait_for(self, state: bool) -> None:
        async with self._condition:
            await self._condition.wait_for(lambda: self.is_on() == bool(state))

    async def make_toggle(self, initial: bool = False, *, name: str | None = None) -> Toggle:
        toggle = Toggle(initial, name=name, condition=self._condition)
        async with self._condition:
            self._toggles.add(toggle)
            self._condition.notify_all()
        return toggle

    def names(self, state: bool) -> Collection[str]:
        """ The names of the toggles in that state, e.g. of the unsynced watches. """
        return {toggle.name for toggle in self._toggles
                if toggle.name and toggle.is_on() == bool(state)}
