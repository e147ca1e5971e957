from __future__ import annotations

import pytest

from dpc.compiler import compile_text
from dpc.config import CompilerConfig
from dpc.mcfunction_gen import LOAD_UNIT

# Runs generated units against a tiny model of the scoreboard, `execute`,
# `function`, `say` and `return` commands.

class _Return(Exception):
    pass


class Machine:
    def __init__(self, res, config: CompilerConfig):
        self.config = config
        self.units = {config.resource_location(u.path): [l.text for l in u.lines] for u in res.units}
        self.scores = {}
        self.said = []
        self.calls = 0

    def run_unit(self, path: str) -> None:
        self.function(self.config.resource_location(path))

    def function(self, resource: str) -> None:
        self.calls += 1
        assert self.calls < 1000, "runaway recursion"
        try:
            for line in self.units[resource]:
                self.command(line.split())
        except _Return:
            pass

    def score(self, holder: str) -> int:
        return self.scores.get(holder, 0)

    def command(self, words) -> None:
        head = words[0]
        if head == "say":
            self.said.append(" ".join(words[1:]))
        elif head == "return":
            raise _Return()
        elif head == "function":
            self.function(words[1])
        elif head == "scoreboard":
            self.scoreboard(words[1:])
        elif head == "execute":
            self.execute(words[1:])
        else:
            raise AssertionError(f"unsupported command {' '.join(words)}")

    def scoreboard(self, words) -> None:
        if words[0] == "objectives":
            return
        verb, holder = words[1], words[2]
        if verb == "set":
            self.scores[holder] = int(words[4])
        elif verb == "add":
            self.scores[holder] = self.score(holder) + int(words[4])
        elif verb == "remove":
            self.scores[holder] = self.score(holder) - int(words[4])
        elif verb == "operation":
            op, other = words[4], self.score(words[5])
            cur = self.score(holder)
            self.scores[holder] = {
                "=": other, "+=": cur + other, "-=": cur - other, "*=": cur * other,
                "/=": cur // other if other else cur, "%=": cur % other if other else cur,
            }[op]
        else:
            raise AssertionError(f"unsupported scoreboard verb {verb}")

    def execute(self, words) -> None:
        while words[0] != "run":
            word, kind = words[0], words[1]
            assert kind == "score", words
            value = self.score(words[2])
            if words[4] == "matches":
                ok = _matches(value, words[5])
                words = words[6:]
            else:
                other = self.score(words[5])
                ok = {"=": value == other, "<": value < other, "<=": value <= other,
                      ">": value > other, ">=": value >= other}[words[4]]
                words = words[7:]
            if ok == (word == "unless"):
                return
        self.command(words[1:])


def _matches(value: int, rng: str) -> bool:
    if ".." not in rng:
        return value == int(rng)
    lo, hi = rng.split("..")
    return (not lo or value >= int(lo)) and (not hi or value <= int(hi))


def _run(src: str, **cfg) -> Machine:
    config = CompilerConfig(**cfg)
    res = compile_text(src, "main", config)
    assert res.ok, [(d.code, d.message) for d in res.diagnostics]
    m = Machine(res, config)
    m.run_unit(LOAD_UNIT)
    m.run_unit("main")
    return m


RECURSIVE_COUNTDOWN = (
    "function f(n) {\n"
    "  if (n > 0) {\n"
    "    set n -= 1\n"
    "    call f(n)\n"
    "  } else {\n"
    "    say done\n"
    "  }\n"
    "}\n"
    "call f(2)\n"
)


@pytest.mark.parametrize("inline", [False, True])
def test_recursion_inside_then_branch_never_runs_else_twice(inline):
    m = _run(RECURSIVE_COUNTDOWN, inline_blocks=inline)
    assert m.said == ["done"]


def test_else_branch_runs_when_condition_false():
    m = _run("var x = 0\nif (x == 1) { say a } else { say b }\nsay end\n")
    assert m.said == ["b", "end"]


def test_then_branch_changing_condition_does_not_fall_into_else():
    m = _run("var x = 1\nif (x == 1) {\n  set x = 2\n  say a\n} else {\n  say b\n}\n")
    assert m.said == ["a"]


@pytest.mark.parametrize("inline", [False, True])
def test_return_in_branch_leaves_only_the_branch(inline):
    src = "var x = 1\nfunction g {\n  if (x == 1) { return 0 }\n  say after\n}\ncall g()\n"
    assert _run(src, inline_blocks=inline).said == ["after"]


def test_loop_runs_until_condition_fails():
    m = _run("var i = 0\nwhile (i < 3) {\n  set i += 1\n  say tick\n}\n")
    assert m.said == ["tick", "tick", "tick"]
    assert m.score("$main.i") == 3


def test_arithmetic_with_constants():
    m = _run("var a = 7\nvar b = a * 3 - a / 2\n")
    assert m.score("$main.b") == 18
