"""Tests for tools/basic_tools.py and tools/web_fetch.py."""

import json
import sys
import threading

import httpx
import pytest

from tools.basic_tools import (
    BashTool,
    CalculatorTool,
    ReadFileTool,
    WriteFileTool,
    evaluate_expression,
    resolve_within,
)
from tools.web_fetch import WebFetchTool, check_public_url, html_to_text


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

class TestCalculator:
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("2 + 3 * 4", 14),
            ("(2 + 3) * 4", 20),
            ("2 ^ 10", 1024),
            ("17 // 5", 3),
            ("-4 + 1", -3),
            ("sqrt(16)", 4.0),
            ("max(3, 9, 4)", 9),
        ],
    )
    def test_expressions(self, expression, expected):
        assert evaluate_expression(expression) == expected

    def test_constants(self):
        assert evaluate_expression("PI") == pytest.approx(3.14159, rel=1e-5)

    @pytest.mark.parametrize("expression", ["__import__('os')", "open('x')", "a + 1", "2 ** 100000", "2 +"])
    def test_rejects_unsafe_or_invalid(self, expression):
        with pytest.raises(ValueError):
            evaluate_expression(expression)

    def test_division_by_zero_raises(self):
        with pytest.raises(ZeroDivisionError):
            evaluate_expression("1 / 0")

    @pytest.mark.asyncio
    async def test_tool_result_shape(self):
        tool = CalculatorTool()
        result = await tool.execute(CalculatorTool.Arguments(expression="6 * 7"))
        assert result == {"expression": "6 * 7", "result": 42}


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class TestFileTools:
    def test_resolve_within_blocks_escape(self, tmp_path):
        with pytest.raises(PermissionError):
            resolve_within(tmp_path, "../outside.txt")
        assert resolve_within(tmp_path, "sub/a.txt") == (tmp_path / "sub" / "a.txt").resolve()

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path):
        writer = WriteFileTool(str(tmp_path))
        reader = ReadFileTool(str(tmp_path))
        message = await writer.execute(WriteFileTool.Arguments(path="notes/a.txt", content="hello"))
        assert "5 bytes" in message
        assert await reader.execute(ReadFileTool.Arguments(path="notes/a.txt")) == "hello"

    @pytest.mark.asyncio
    async def test_read_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await ReadFileTool(str(tmp_path)).execute(ReadFileTool.Arguments(path="nope.txt"))

    @pytest.mark.asyncio
    async def test_read_too_large(self, tmp_path):
        (tmp_path / "big.txt").write_text("x" * 50, encoding="utf-8")
        tool = ReadFileTool(str(tmp_path), max_file_size=10)
        with pytest.raises(ValueError):
            await tool.execute(ReadFileTool.Arguments(path="big.txt"))

    @pytest.mark.asyncio
    async def test_file_io_runs_off_the_event_loop_thread(self, tmp_path):
        threads = []
        tool = ReadFileTool(str(tmp_path))
        tool._read = lambda path: threads.append(threading.current_thread()) or "ok"
        assert await tool.execute(ReadFileTool.Arguments(path="a.txt")) == "ok"

        writer = WriteFileTool(str(tmp_path))
        writer._write = lambda path, content: threads.append(threading.current_thread())
        await writer.execute(WriteFileTool.Arguments(path="a.txt", content="x"))

        assert len(threads) == 2
        assert all(t is not threading.main_thread() for t in threads)

    def test_write_requires_confirmation(self):
        assert WriteFileTool.requires_confirmation is True
        assert ReadFileTool.requires_confirmation is False


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------

@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")
class TestBashTool:
    @pytest.mark.asyncio
    async def test_runs_in_working_dir(self, tmp_path):
        (tmp_path / "marker.txt").write_text("", encoding="utf-8")
        result = await BashTool(str(tmp_path)).execute(BashTool.Arguments(command="ls"))
        assert result["exit_code"] == 0
        assert "marker.txt" in result["output"]

    @pytest.mark.asyncio
    async def test_stderr_and_exit_code(self, tmp_path):
        result = await BashTool(str(tmp_path)).execute(BashTool.Arguments(command="echo oops 1>&2; exit 3"))
        assert result["exit_code"] == 3
        assert "oops" in result["output"]

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        tool = BashTool(str(tmp_path), timeout=0.2)
        with pytest.raises(TimeoutError):
            await tool.execute(BashTool.Arguments(command="sleep 5"))


# ---------------------------------------------------------------------------
# Web fetch
# ---------------------------------------------------------------------------

def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebFetch:
    def test_html_to_text(self):
        html = "<html><style>p{}</style><script>x()</script><p>Hello <b>world</b></p></html>"
        assert html_to_text(html) == "Hello world"

    @pytest.mark.asyncio
    async def test_rejects_non_http_scheme(self):
        with pytest.raises(ValueError):
            await check_public_url("file:///etc/passwd")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["http://127.0.0.1/", "http://localhost:8080/", "http://10.0.0.5/admin"])
    async def test_rejects_private_hosts(self, url):
        with pytest.raises(PermissionError):
            await check_public_url(url)

    @pytest.mark.asyncio
    async def test_text_format_strips_html(self):
        def handler(request):
            return httpx.Response(200, text="<h1>Title</h1><p>Body</p>")

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client, allow_private=True)
            result = await tool.execute(WebFetchTool.Arguments(url="http://example.test/"))
        assert result == "Title Body"

    @pytest.mark.asyncio
    async def test_json_format(self):
        def handler(request):
            assert request.headers["Accept"] == "application/json"
            return httpx.Response(200, json={"ok": True})

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client, allow_private=True)
            result = await tool.execute(WebFetchTool.Arguments(url="http://example.test/api", format="json"))
        assert json.loads(result) == {"ok": True}

    @pytest.mark.asyncio
    async def test_truncation(self):
        def handler(request):
            return httpx.Response(200, text="a" * 500)

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client, allow_private=True)
            result = await tool.execute(WebFetchTool.Arguments(url="http://example.test/", max_length=100))
        assert result.startswith("a" * 100)
        assert "[Truncated - 500 total characters]" in result

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(404, text="missing")

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client, allow_private=True)
            with pytest.raises(httpx.HTTPStatusError):
                await tool.execute(WebFetchTool.Arguments(url="http://example.test/missing"))

    @pytest.mark.asyncio
    async def test_redirect_to_loopback_is_refused(self):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            if request.url.host == "93.184.216.34":
                return httpx.Response(302, headers={"Location": "http://127.0.0.1:8080/admin"})
            return httpx.Response(200, text="INTERNAL SECRET")

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client)
            with pytest.raises(PermissionError):
                await tool.execute(WebFetchTool.Arguments(url="http://93.184.216.34/"))
        assert requested == ["http://93.184.216.34/"]

    @pytest.mark.asyncio
    async def test_relative_redirect_followed(self):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "/new"})
            return httpx.Response(200, text=f"at {request.url.path}")

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client, allow_private=True)
            result = await tool.execute(WebFetchTool.Arguments(url="http://example.test/old"))
        assert result == "at /new"

    @pytest.mark.asyncio
    async def test_redirect_loop_stops(self):
        def handler(request):
            return httpx.Response(302, headers={"Location": "/again"})

        async with _mock_client(handler) as client:
            tool = WebFetchTool(client=client, allow_private=True)
            with pytest.raises(ValueError, match="Too many redirects"):
                await tool.execute(WebFetchTool.Arguments(url="http://example.test/"))
