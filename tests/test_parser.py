import pytest

from protoshell.core.parser import (
    extract_redirects,
    has_pipeline_features,
    parse_line,
    split_pipeline,
    strip_background,
    tokenize,
)
from protoshell.core.types import Redirect, RedirectKind


@pytest.mark.parametrize(
    ("line", "command", "args"),
    [
        ("ls", "ls", []),
        ("ls -la /tmp", "ls", ["-la", "/tmp"]),
        ("   echo   spaced    out  ", "echo", ["spaced", "out"]),
        ("ping 10.0.0.1 -c 3", "ping", ["10.0.0.1", "-c", "3"]),
    ],
)
def test_plain_line_yields_single_stage(line: str, command: str, args: list[str]) -> None:
    parsed = parse_line(line)

    assert not parsed.background
    assert len(parsed.commands) == 1
    assert parsed.commands[0].command == command
    assert parsed.commands[0].args == args
    assert parsed.commands[0].redirects == []


def test_pipeline_stages_keep_order() -> None:
    parsed = parse_line("a | b | c")

    assert [stage.command for stage in parsed.commands] == ["a", "b", "c"]


def test_quoted_pipe_is_not_a_separator() -> None:
    parsed = parse_line('echo "a | b"')

    assert len(parsed.commands) == 1
    assert parsed.commands[0].args == ["a | b"]


def test_single_quotes_group_words() -> None:
    assert tokenize("say 'hello world' now") == ["say", "hello world", "now"]


def test_escaped_quote_inside_quotes_does_not_close_them() -> None:
    assert split_pipeline('echo "a \\" | b"') == ['echo "a \\" | b"']
    assert tokenize('echo "a \\" b"') == ["echo", 'a " b']


def test_escaped_quote_outside_quotes_is_literal() -> None:
    assert tokenize('echo \\"hi\\"') == ["echo", '"hi"']


def test_unbalanced_quote_is_kept_literally() -> None:
    parsed = parse_line('echo "abc | def')

    assert [stage.command for stage in parsed.commands] == ["echo", "def"]
    assert parsed.commands[0].args == ['"abc']


def test_empty_quotes_make_an_empty_argument() -> None:
    assert tokenize('printf ""') == ["printf", ""]


@pytest.mark.parametrize("line", ["", "   ", "&", "  &  ", " | "])
def test_blank_lines_parse_to_no_stages(line: str) -> None:
    assert parse_line(line).is_empty


@pytest.mark.parametrize("line", ["sleep 10", "ls -la | grep py", "echo hi > out.txt", 'echo "x & y"'])
def test_background_marker_does_not_change_stages(line: str) -> None:
    background = parse_line(line + " &")
    foreground = parse_line(line)

    assert background.background
    assert not foreground.background
    assert background.commands == foreground.commands


def test_escaped_ampersand_is_not_background() -> None:
    assert strip_background("echo a \\&") == ("echo a \\&", False)


def test_redirects_are_extracted_in_order() -> None:
    parsed = parse_line("sort < in.txt > out.txt 2> err.log")
    stage = parsed.commands[0]

    assert stage.command == "sort"
    assert stage.args == []
    assert stage.redirects == [
        Redirect(RedirectKind.STDIN, "in.txt"),
        Redirect(RedirectKind.STDOUT_TRUNCATE, "out.txt"),
        Redirect(RedirectKind.STDERR_TRUNCATE, "err.log"),
    ]


def test_append_redirects() -> None:
    stage = parse_line("echo hi >> log.txt 2>> err.txt").commands[0]

    assert [redirect.kind for redirect in stage.redirects] == [
        RedirectKind.STDOUT_APPEND,
        RedirectKind.STDERR_APPEND,
    ]
    assert stage.redirects[0].kind.appends
    assert stage.args == ["hi"]


def test_redirect_without_space_and_quoted_target() -> None:
    remainder, redirects = extract_redirects('echo hi >"my file.txt"')

    assert remainder.split() == ["echo", "hi"]
    assert redirects == [Redirect(RedirectKind.STDOUT_TRUNCATE, "my file.txt")]


def test_digit_glued_to_a_word_is_not_a_stderr_redirect() -> None:
    stage = parse_line("echo a2>out.txt").commands[0]

    assert stage.args == ["a2"]
    assert stage.redirects == [Redirect(RedirectKind.STDOUT_TRUNCATE, "out.txt")]


def test_quoted_redirect_characters_stay_in_arguments() -> None:
    stage = parse_line("echo '>' \"<x>\"").commands[0]

    assert stage.args == [">", "<x>"]
    assert stage.redirects == []


def test_redirect_without_target_is_an_ordinary_word() -> None:
    stage = parse_line("echo >").commands[0]

    assert stage.args == [">"]
    assert stage.redirects == []


def test_redirects_per_stage() -> None:
    parsed = parse_line("cat < a.txt | upper > b.txt")

    assert parsed.commands[0].redirects == [Redirect(RedirectKind.STDIN, "a.txt")]
    assert parsed.commands[1].redirects == [Redirect(RedirectKind.STDOUT_TRUNCATE, "b.txt")]


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("ls", False),
        ("ls | wc", True),
        ("echo hi > f", True),
        ("sort < f", True),
        ('echo "a | b"', False),
        ("echo 'x > y'", False),
    ],
)
def test_has_pipeline_features(line: str, expected: bool) -> None:
    assert has_pipeline_features(line) is expected
