"""Coverage for the interactive session controller."""

from __future__ import annotations

import io
from pathlib import Path
from typing import List

import pytest

from conftest import FakeBackend, FakeEngine, feed, make_model
from localchat.errors import EngineInitFailure, InvalidEncoding
from localchat.locator import ModelLocator
from localchat.render import TextDiffRenderer
from localchat.session import (
    HELP_TEXT,
    Command,
    Phase,
    SessionController,
    parse_command,
)


class SpyRenderer(TextDiffRenderer):
    def __init__(self, stream: io.StringIO) -> None:
        super().__init__(stream)
        self.rendered: List[str] = []

    def render(self, message):  # type: ignore[override]
        self.rendered.append(message)
        return super().render(message)


class SpyLocator(ModelLocator):
    def __init__(self, root: Path) -> None:
        super().__init__(root, "cpu", arch="", suffixes=[".so"])
        self.calls: List[List[str]] = []

    def resolve(self, candidates):  # type: ignore[override]
        self.calls.append(list(candidates))
        return super().resolve(candidates)


def _controller(
    artifact_root: Path,
    engines: List[FakeEngine],
    lines: List[str] = (),
    stream_interval: int = 2,
):
    make_model(artifact_root, "demo-q4f16_0")
    locator = SpyLocator(artifact_root)
    resolved = locator.resolve(["demo-q4f16_0"])
    locator.calls.clear()
    backend = FakeBackend(engines)
    out = io.StringIO()
    err = io.StringIO()
    controller = SessionController(
        backend,
        locator,
        resolved,
        stream_interval=stream_interval,
        read_line=feed(lines),
        out=out,
        err=err,
        renderer=SpyRenderer(out),
    )
    return controller, backend, locator, out, err


@pytest.mark.parametrize(
    "line, expected",
    [
        ("/exit", Command("/exit")),
        ("  /reset  ", Command("/reset")),
        ("/reload demo-q0f32", Command("/reload", ("demo-q0f32",))),
        ("/stats", Command("/stats")),
        ("/help me", Command("/help", ("me",))),
        ("/exitnow", None),
        ("/resetting the router", None),
        ("/Reset", None),
        ("hello /exit", None),
        ("", None),
        ("   ", None),
    ],
)
def test_parse_command_matches_whole_leading_token(line: str, expected) -> None:
    assert parse_command(line) == expected


def test_stream_interval_must_be_positive(artifact_root: Path) -> None:
    with pytest.raises(ValueError):
        _controller(artifact_root, [FakeEngine()], stream_interval=0)


def test_start_loads_engine_and_roles(artifact_root: Path) -> None:
    engine = FakeEngine(roles=("Human", "Bot"))
    controller, backend, _, _, _ = _controller(artifact_root, [engine])

    state = controller.start()

    assert state.role0 == "Human"
    assert state.role1 == "Bot"
    assert state.engine is engine
    assert engine.loaded == ("lib:demo-q4f16_0-cpu.so", state.current_model_path)
    assert state.current_model_path.endswith("params")


def test_start_failure_is_engine_init_failure(artifact_root: Path) -> None:
    engine = FakeEngine(fail_reload=True)
    controller, _, _, _, _ = _controller(artifact_root, [engine])

    with pytest.raises(EngineInitFailure):
        controller.start()
    assert controller.state is None
    assert engine.unloaded


def test_turn_renders_on_cadence_and_completion(artifact_root: Path) -> None:
    engine = FakeEngine(outputs=["H", "He", "Hel", "Hello"])
    controller, _, _, out, _ = _controller(artifact_root, [engine], stream_interval=2)
    controller.start()

    controller.generate("hi there")

    assert controller.renderer.rendered == ["He", "Hello"]
    assert engine.turns == ["hi there"]
    assert out.getvalue() == "ASSISTANT: Hello\n"
    assert controller.phase is Phase.IDLE


def test_turn_forces_render_when_completion_is_off_cadence(artifact_root: Path) -> None:
    engine = FakeEngine(outputs=["a", "ab", "abc"])
    controller, _, _, _, _ = _controller(artifact_root, [engine], stream_interval=2)
    controller.start()

    controller.generate("go")

    assert controller.renderer.rendered == ["ab", "abc"]


def test_turn_with_interval_one_renders_every_step(artifact_root: Path) -> None:
    engine = FakeEngine(outputs=["a", "ab", "abd"])
    controller, _, _, out, _ = _controller(artifact_root, [engine], stream_interval=1)
    controller.start()

    controller.generate("go")

    assert controller.renderer.rendered == ["a", "ab", "abd"]
    assert out.getvalue() == "ASSISTANT: abd\n"


def test_renderer_buffer_is_reset_between_turns(artifact_root: Path) -> None:
    engine = FakeEngine(outputs=["Hi"])
    controller, _, _, out, _ = _controller(artifact_root, [engine], stream_interval=1)
    controller.start()

    controller.generate("one")
    controller.generate("two")

    assert out.getvalue() == "ASSISTANT: Hi\nASSISTANT: Hi\n"


def test_run_prints_help_and_exits_on_end_of_input(artifact_root: Path) -> None:
    controller, _, _, out, _ = _controller(artifact_root, [FakeEngine()], lines=[])

    assert controller.run() == 0
    assert out.getvalue().startswith(HELP_TEXT)


def test_run_stops_at_exit_command(artifact_root: Path) -> None:
    engine = FakeEngine()
    controller, _, _, _, _ = _controller(artifact_root, [engine], lines=["/exit", "never read"])

    assert controller.run() == 0
    assert engine.turns == []


def test_run_treats_command_lookalikes_as_chat(artifact_root: Path) -> None:
    engine = FakeEngine(outputs=["ok"])
    controller, _, _, _, _ = _controller(artifact_root, [engine], lines=["/exitnow please", ""])

    controller.run()

    assert engine.turns == ["/exitnow please", ""]


def test_run_prompts_with_role0(artifact_root: Path) -> None:
    prompts: List[str] = []
    controller, _, _, _, _ = _controller(artifact_root, [FakeEngine(roles=("Me", "It"))])
    controller._read_line = feed(["/help"], prompts)

    controller.run()

    assert prompts == ["Me: ", "Me: "]


def test_reset_keeps_roles_and_skips_locator(artifact_root: Path) -> None:
    engine = FakeEngine(roles=("Human", "Bot"))
    controller, backend, locator, out, _ = _controller(artifact_root, [engine], lines=["/reset"])

    controller.run()

    assert engine.resets == 1
    assert "RESET CHAT SUCCESS\n" in out.getvalue()
    assert controller.state.role0 == "Human"
    assert controller.state.role1 == "Bot"
    assert controller.state.engine is engine
    assert locator.calls == []
    assert len(backend.created) == 1


def test_reload_without_id_reuses_library_and_model(artifact_root: Path) -> None:
    first = FakeEngine(roles=("USER", "ASSISTANT"))
    second = FakeEngine(roles=("USER", "ASSISTANT"))
    controller, backend, locator, out, _ = _controller(artifact_root, [first, second], lines=["/reload"])
    before = controller.start()

    controller.run()

    after = controller.state
    assert after.engine is second
    assert first.unloaded
    assert second.loaded == first.loaded
    assert len(backend.libraries) == 1
    assert locator.calls == []
    assert (after.role0, after.role1) == (before.role0, before.role1)
    assert after.model == before.model
    assert "RELOAD THE SAME MODEL SUCCESS\n" in out.getvalue()


def test_reload_with_id_resolves_and_refreshes_roles(artifact_root: Path) -> None:
    make_model(artifact_root, "other-q0f32")
    first = FakeEngine(roles=("USER", "ASSISTANT"))
    second = FakeEngine(roles=("<human>", "<bot>"))
    controller, backend, locator, out, _ = _controller(
        artifact_root, [first, second], lines=["/reload other-q0f32"]
    )

    controller.run()

    state = controller.state
    assert locator.calls == [["other-q0f32"]]
    assert state.engine is second
    assert (state.role0, state.role1) == ("<human>", "<bot>")
    assert state.model.local_id == "other-q0f32"
    assert second.loaded == ("lib:other-q0f32-cpu.so", state.current_model_path)
    assert backend.libraries[-1].name == "other-q0f32-cpu.so"
    assert first.unloaded
    assert "LOAD MODEL other-q0f32 SUCCESS\n" in out.getvalue()


def test_failed_reload_keeps_previous_engine(artifact_root: Path) -> None:
    first = FakeEngine(roles=("USER", "ASSISTANT"))
    broken = FakeEngine(roles=("X", "Y"), fail_reload=True)
    controller, _, _, out, err = _controller(artifact_root, [first, broken], lines=["/reload", "still here"])

    controller.run()

    assert controller.state.engine is first
    assert controller.state.role0 == "USER"
    assert not first.unloaded
    assert broken.unloaded
    assert "RELOAD FAILED" in err.getvalue()
    assert "weights are corrupt" in err.getvalue()
    assert "SUCCESS" not in out.getvalue()
    assert first.turns == ["still here"]


def test_reload_of_unknown_model_keeps_previous_engine(artifact_root: Path) -> None:
    first = FakeEngine()
    controller, backend, locator, _, err = _controller(artifact_root, [first], lines=["/reload ghost-q4f16_0"])

    controller.run()

    assert controller.state.engine is first
    assert locator.calls == [["ghost-q4f16_0"]]
    assert len(backend.created) == 1
    assert "mlc-chat-config.json" in err.getvalue()


def test_stats_prints_engine_text(artifact_root: Path) -> None:
    controller, _, _, out, _ = _controller(artifact_root, [FakeEngine()], lines=["/stats"])

    controller.run()

    assert "prefill: 12.5 tok/s, decode: 3.0 tok/s\n" in out.getvalue()


def test_invalid_encoding_from_engine_is_fatal(artifact_root: Path) -> None:
    engine = FakeEngine(outputs=["ok", "ok \ud800"])
    controller, _, _, out, _ = _controller(artifact_root, [engine], lines=["hi"], stream_interval=1)

    with pytest.raises(InvalidEncoding):
        controller.run()
    assert out.getvalue().endswith("ok\n")


class StickyEngine(FakeEngine):
    def unload(self) -> None:
        raise RuntimeError("device busy")


def test_reload_succeeds_when_old_engine_fails_to_unload(artifact_root: Path) -> None:
    first = StickyEngine()
    second = FakeEngine(outputs=["fresh"])
    controller, _, _, out, err = _controller(artifact_root, [first, second], lines=["/reload", "hi"])

    assert controller.run() == 0

    assert controller.state.engine is second
    assert "RELOAD THE SAME MODEL SUCCESS\n" in out.getvalue()
    assert second.turns == ["hi"]
    assert err.getvalue() == ""
