"""Interactive read-eval loop around a step-decoding chat engine."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, TextIO

from .engines.base import ChatEngine, EngineBackend
from .errors import EngineInitFailure, InvalidEncoding, ResolutionError
from .locator import ModelLocator, ResolvedModel
from .metrics.instrumentation import TurnMeasurement, TurnMeter
from .render import TextDiffRenderer
from .state import SessionState

logger = logging.getLogger(__name__)

COMMANDS = ("/help", "/exit", "/stats", "/reset", "/reload")

HELP_TEXT = (
    "You can use the following special commands:\n"
    "  /help               print the special commands\n"
    "  /exit               quit the cli\n"
    "  /stats              print out the latest stats (token/sec)\n"
    "  /reset              restart a fresh chat\n"
    '  /reload [model_id]  reload model "model_id" from disk, or reload the current '
    "model if model_id is not specified\n"
)


class Phase(Enum):
    IDLE = "idle"
    DISPATCHING_COMMAND = "dispatching_command"
    GENERATING = "generating"
    RELOADING = "reloading"


@dataclass(frozen=True)
class Command:
    name: str
    args: tuple[str, ...] = ()


def parse_command(line: str) -> Command | None:
    """Classify a line by its first whitespace-delimited token.

    Only an exact match on a known command counts, so "/exitnow" or
    "/resetting the router" are chat text.
    """
    tokens = line.split()
    if not tokens or tokens[0] not in COMMANDS:
        return None
    return Command(name=tokens[0], args=tuple(tokens[1:]))


class SessionController:
    def __init__(
        self,
        backend: EngineBackend,
        locator: ModelLocator,
        model: ResolvedModel,
        stream_interval: int = 2,
        read_line: Callable[[str], str] = input,
        out: TextIO | None = None,
        err: TextIO | None = None,
        renderer: TextDiffRenderer | None = None,
        meter: TurnMeter | None = None,
    ) -> None:
        if stream_interval < 1:
            raise ValueError(f"stream_interval must be >= 1, got {stream_interval}")
        self.backend = backend
        self.locator = locator
        self.stream_interval = stream_interval
        self._initial_model = model
        self._read_line = read_line
        self._out = out if out is not None else sys.stdout
        self._err = err if err is not None else sys.stderr
        self.renderer = renderer if renderer is not None else TextDiffRenderer(self._out)
        self.meter = meter
        self.state: SessionState | None = None
        self.phase = Phase.IDLE
        self.last_turn: TurnMeasurement | None = None

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    def _require_state(self) -> SessionState:
        if self.state is None:
            raise RuntimeError("Session not started")
        return self.state

    def _build_state(self, model: ResolvedModel, library: Any = None) -> SessionState:
        """Construct and initialize a fresh engine without touching the active one."""
        engine: ChatEngine | None = None
        try:
            if library is None:
                library = self.backend.load_library(model.library_path)
            engine = self.backend.create_engine()
            engine.reload(library, str(model.model_resource_dir))
            return SessionState(
                role0=engine.get_role0(),
                role1=engine.get_role1(),
                engine=engine,
                library=library,
                model=model,
            )
        except Exception as exc:  # noqa: BLE001
            if engine is not None:
                engine.unload()
            raise EngineInitFailure(f"Failed to initialize {model.local_id}: {exc}") from exc

    def _install(self, new_state: SessionState) -> None:
        previous = self.state
        self.state = new_state
        if previous is not None and previous.engine is not new_state.engine:
            try:
                previous.engine.unload()
            except Exception:  # noqa: BLE001
                logger.debug("Unloading %s failed", previous.model.local_id, exc_info=True)
        logger.info("Active model is now %s", new_state.model.local_id)

    def start(self) -> SessionState:
        self._install(self._build_state(self._initial_model))
        return self._require_state()

    def run(self) -> int:
        if self.state is None:
            self.start()
        self._write(HELP_TEXT + "\n")
        try:
            while True:
                self.phase = Phase.IDLE
                state = self._require_state()
                try:
                    line = self._read_line(f"{state.role0}: ")
                except EOFError:
                    break
                command = parse_command(line)
                if command is None:
                    self.generate(line)
                    continue
                if command.name == "/exit":
                    break
                self.dispatch(command)
        finally:
            self.phase = Phase.IDLE
            if self.meter is not None:
                self.meter.close()
        return 0

    def dispatch(self, command: Command) -> None:
        self.phase = Phase.DISPATCHING_COMMAND
        state = self._require_state()
        if command.name == "/reset":
            state.engine.reset_chat()
            self._write("RESET CHAT SUCCESS\n")
        elif command.name == "/reload":
            self.reload(command.args[0] if command.args else None)
        elif command.name == "/stats":
            self._write(state.engine.runtime_stats_text() + "\n")
            if self.last_turn is not None:
                self._write(self.last_turn.summary() + "\n")
        elif command.name == "/help":
            self._write(HELP_TEXT + "\n")
        self.phase = Phase.IDLE

    def reload(self, local_id: str | None = None) -> bool:
        """Swap in a freshly initialized engine; keep the current one on failure."""
        self.phase = Phase.RELOADING
        current = self._require_state()
        try:
            if local_id is None:
                new_state = self._build_state(current.model, current.library)
            else:
                new_state = self._build_state(self.locator.resolve([local_id]))
        except (ResolutionError, EngineInitFailure) as exc:
            logger.debug("Reload failed", exc_info=True)
            self._err.write(f"RELOAD FAILED, KEEPING {current.model.local_id}: {exc}\n")
            self._err.flush()
            return False
        finally:
            self.phase = Phase.DISPATCHING_COMMAND

        self._install(new_state)
        if local_id is None:
            self._write("RELOAD THE SAME MODEL SUCCESS\n")
        else:
            self._write(f"LOAD MODEL {local_id} SUCCESS\n")
        return True

    def generate(self, text: str) -> None:
        self.phase = Phase.GENERATING
        state = self._require_state()
        engine = state.engine
        self._write(f"{state.role1}: ")
        self.renderer.reset()
        if self.meter is not None:
            self.meter.start()

        engine.encode_turn(text)
        step = 0
        try:
            while not engine.is_stopped():
                engine.decode_step()
                step += 1
                if step % self.stream_interval == 0 or engine.is_stopped():
                    self.renderer.render(engine.current_message())
                    if self.meter is not None:
                        self.meter.sample()
        except InvalidEncoding:
            self._write("\n")
            raise

        self._write("\n")
        if self.meter is not None:
            self.last_turn = self.meter.stop(step)
        self.phase = Phase.IDLE
