"""Tests for imagepub.output.console module."""

from __future__ import annotations

import threading

from imagepub.output.console import (
    ConsoleProtocol,
    MockConsole,
    OutputRecord,
    PrefixedConsole,
    RichConsole,
    Style,
)


class TestStyle:
    """Test Style enum."""

    def test_str_conversion(self) -> None:
        assert str(Style.SUCCESS) == "success"
        assert str(Style.ERROR) == "error"
        assert str(Style.DIM) == "dim"

    def test_all_styles_exist(self) -> None:
        expected = {"DEFAULT", "SUCCESS", "ERROR", "WARNING", "INFO", "DIM", "BOLD", "HEADER"}
        assert {s.name for s in Style} == expected


class TestMockConsole:
    """Test MockConsole for testing purposes."""

    def test_print_captures_message(self) -> None:
        console = MockConsole()
        console.print("hello")
        assert console.outputs == [OutputRecord("hello", Style.DEFAULT)]

    def test_print_with_style(self) -> None:
        console = MockConsole()
        console.print("depot build ...", Style.DIM)
        assert console.outputs[0].style == Style.DIM

    def test_success(self) -> None:
        console = MockConsole()
        console.success("published base")
        assert console.outputs[0].message == "OK published base"
        assert console.outputs[0].style == Style.SUCCESS

    def test_error(self) -> None:
        console = MockConsole()
        console.error("build failed")
        assert console.outputs[0].message == "error: build failed"
        assert console.has_error() is True

    def test_warning(self) -> None:
        console = MockConsole()
        assert console.has_warning() is False
        console.warning("digest unchanged")
        assert "warning:" in console.outputs[0].message
        assert console.has_warning() is True

    def test_header(self) -> None:
        console = MockConsole()
        console.header("Summary")
        assert console.outputs == [OutputRecord("Summary", Style.HEADER)]

    def test_clear(self) -> None:
        console = MockConsole()
        console.print("one")
        console.clear()
        assert console.outputs == []

    def test_messages_and_text(self) -> None:
        console = MockConsole()
        console.print("line1")
        console.print("line2")
        assert console.messages == ["line1", "line2"]
        assert console.text == "line1\nline2"

    def test_find(self) -> None:
        console = MockConsole()
        console.print("annotate ghcr.io/astral-sh/uv@sha256:aa")
        console.print("annotate docker.io/astral/uv@sha256:aa")
        console.print("attest ghcr.io/astral-sh/uv@sha256:aa")
        assert len(console.find("annotate")) == 2

    def test_concurrent_writes_are_all_kept(self) -> None:
        console = MockConsole()

        def write(n: int) -> None:
            for i in range(100):
                console.print(f"{n}-{i}")

        threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(console.outputs) == 800


class TestPrefixedConsole:
    def test_prefixes_every_kind_of_line(self) -> None:
        inner = MockConsole()
        console = PrefixedConsole(inner, "extra:alpine:3.21")

        console.print("building", Style.DIM)
        console.success("done")
        console.error("failed")
        console.warning("careful")

        assert inner.messages == [
            "[extra:alpine:3.21] building",
            "OK [extra:alpine:3.21] done",
            "error: [extra:alpine:3.21] failed",
            "warning: [extra:alpine:3.21] careful",
        ]
        assert inner.outputs[0].style == Style.DIM


class TestRichConsole:
    """Test RichConsole integration."""

    def test_can_instantiate(self) -> None:
        assert RichConsole() is not None
        assert RichConsole(stderr=True) is not None

    def test_prints_without_markup_interpretation(self, capsys) -> None:
        console = RichConsole()
        console.print("[base] sha256:abc")
        console.error("[extra:alpine] failed")

        out = capsys.readouterr().out
        assert "[base] sha256:abc" in out
        assert "[extra:alpine] failed" in out


class TestConsoleProtocol:
    """Test that protocol is properly defined."""

    def test_implementations_satisfy_protocol(self) -> None:
        def use_console(c: ConsoleProtocol) -> None:
            c.print("test")
            c.success("ok")
            c.error("err")
            c.warning("warn")
            c.header("hdr")

        mock = MockConsole()
        use_console(mock)
        use_console(PrefixedConsole(mock, "p"))
        assert len(mock.outputs) == 10
