"""Table-driven finite state machine.

The machine definition is injected, never loaded here. A StateMachine holds
no per-entity data, so one instance can serve any number of versions.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from forge.errors import ForgeError


class InvalidTransitionError(ForgeError):
    """No transition rule matches the (state, event) pair."""

    code = "INVALID_TRANSITION"

    def __init__(self, current_state: str, event: str) -> None:
        super().__init__(
            f"Invalid transition: cannot transition from '{current_state}' "
            f"with event '{event}'"
        )
        self.current_state = current_state
        self.event = event


class InvalidStateError(ForgeError):
    """The state is not a member of the configured state set."""

    code = "INVALID_STATE"

    def __init__(self, state: str) -> None:
        super().__init__(f"Invalid state: '{state}' is not a valid state")
        self.state = state


class InvalidConfigError(ForgeError):
    """The machine definition is structurally broken.

    ``errors`` lists every problem found, not just the first.
    """

    code = "INVALID_CONFIG"

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            "Invalid state machine configuration:\n" + "\n".join(errors)
        )
        self.errors = errors


@dataclass(frozen=True)
class StateTransition:
    """A rule: ``event`` moves any state in ``from_states`` to ``to``."""

    event: str
    from_states: tuple[str, ...]
    to: str


@dataclass(frozen=True)
class StateMachineConfig:
    """Immutable state machine definition."""

    name: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[StateTransition, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateMachineConfig":
        """Build a config from its YAML/dict form.

        ``from`` may be a single state name or a list of names.
        """
        transitions = []
        for raw in data.get("transitions") or []:
            from_value = raw["from"]
            from_states = (
                (from_value,) if isinstance(from_value, str) else tuple(from_value)
            )
            transitions.append(
                StateTransition(event=raw["event"], from_states=from_states, to=raw["to"])
            )
        return cls(
            name=data["name"],
            initial_state=data["initial_state"],
            states=tuple(data["states"]),
            transitions=tuple(transitions),
        )


class StateMachine:
    """Validates and performs transitions for a configured machine.

    Construction fails with InvalidConfigError if the configuration is
    malformed, so a bad definition is caught before first use.
    """

    def __init__(self, config: StateMachineConfig) -> None:
        self._validate(config)
        self._config = config
        self._state_set = frozenset(config.states)
        self._table = self._build_table(config.transitions)

    @staticmethod
    def _validate(config: StateMachineConfig) -> None:
        errors: list[str] = []
        states = set(config.states)

        if config.initial_state not in states:
            errors.append(f"initial_state '{config.initial_state}' is not in states")

        seen: dict[tuple[str, str], str] = {}
        for transition in config.transitions:
            for from_state in transition.from_states:
                if from_state not in states:
                    errors.append(
                        f"transition '{transition.event}' has invalid 'from' "
                        f"state '{from_state}'"
                    )
                key = (from_state, transition.event)
                previous = seen.get(key)
                if previous is not None and previous != transition.to:
                    errors.append(
                        f"transition '{transition.event}' from '{from_state}' is "
                        f"ambiguous: '{previous}' or '{transition.to}'"
                    )
                seen.setdefault(key, transition.to)
            if transition.to not in states:
                errors.append(
                    f"transition '{transition.event}' has invalid 'to' "
                    f"state '{transition.to}'"
                )

        if errors:
            raise InvalidConfigError(errors)

    @staticmethod
    def _build_table(
        transitions: Iterable[StateTransition],
    ) -> dict[tuple[str, str], str]:
        table: dict[tuple[str, str], str] = {}
        for transition in transitions:
            for from_state in transition.from_states:
                table.setdefault((from_state, transition.event), transition.to)
        return table

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def initial_state(self) -> str:
        return self._config.initial_state

    @property
    def states(self) -> list[str]:
        return list(self._config.states)

    def is_valid_state(self, state: str) -> bool:
        return state in self._state_set

    def can_transition(self, current_state: str, event: str) -> bool:
        """Check whether ``event`` is legal from ``current_state``. Never raises."""
        try:
            return (current_state, event) in self._table
        except TypeError:
            # unhashable input
            return False

    def transition(self, current_state: str, event: str) -> str:
        """Return the state reached by applying ``event`` to ``current_state``.

        Raises:
            InvalidStateError: If current_state is not a configured state
            InvalidTransitionError: If no rule matches
        """
        if not self.is_valid_state(current_state):
            raise InvalidStateError(current_state)

        next_state = self._table.get((current_state, event))
        if next_state is None:
            raise InvalidTransitionError(current_state, event)
        return next_state

    def available_events(self, current_state: str) -> list[str]:
        """Events legal from ``current_state``, in configuration order."""
        if not self.is_valid_state(current_state):
            return []
        return [
            t.event for t in self._config.transitions if current_state in t.from_states
        ]

    def next_states(self, current_state: str) -> list[str]:
        """Distinct states reachable in one step, in configuration order."""
        if not self.is_valid_state(current_state):
            return []
        reachable: list[str] = []
        for t in self._config.transitions:
            if current_state in t.from_states and t.to not in reachable:
                reachable.append(t.to)
        return reachable
