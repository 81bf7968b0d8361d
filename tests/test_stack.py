"""Tests for stack parsing and exception context."""

from logbeacon.stack import StackFrame, error_to_context, parse_stack, source_from_stack

PYTHON_TRACEBACK = """Traceback (most recent call last):
  File "/app/service/views.py", line 42, in handle_request
    result = process(payload)
  File "/app/service/logic.py", line 7, in process
    raise ValueError("bad payload")
ValueError: bad payload
"""


def _raise(message):
    raise RuntimeError(message)


class TestParseStack:
    def test_python_traceback_innermost_first(self):
        frames = parse_stack(PYTHON_TRACEBACK)

        assert frames == [
            StackFrame("process", "/app/service/logic.py", 7, 0),
            StackFrame("handle_request", "/app/service/views.py", 42, 0),
        ]

    def test_chrome_style(self):
        stack = """Error: test
    at Object.test (http://localhost:3000/src/test.ts:10:20)
    at Context.<anonymous> (http://localhost:3000/test/utils.test.ts:5:10)"""

        frames = parse_stack(stack)

        assert len(frames) == 2
        assert frames[0] == StackFrame("Object.test", "http://localhost:3000/src/test.ts", 10, 20)

    def test_firefox_style(self):
        stack = """test@http://localhost:3000/src/test.ts:10:20
anonymous@http://localhost:3000/test/utils.test.ts:5:10"""

        frames = parse_stack(stack)

        assert len(frames) == 2
        assert frames[0] == StackFrame("test", "http://localhost:3000/src/test.ts", 10, 20)

    def test_chrome_without_function_name(self):
        frames = parse_stack("    at http://localhost:3000/src/test.ts:10:20")
        assert frames[0].function_name == "unknown"

    def test_empty(self):
        assert parse_stack("") == []
        assert parse_stack(None) == []


class TestErrorToContext:
    def test_raised_exception(self):
        try:
            _raise("Test error")
        except RuntimeError as e:
            context = error_to_context(e)

        assert context["message"] == "Test error"
        assert context["name"] == "RuntimeError"
        assert context["function"] == "_raise"
        assert context["file"].endswith("test_stack.py")
        assert isinstance(context["line"], int)
        assert "Traceback (most recent call last)" in context["stack"]
        assert context["frames"][0]["function_name"] == "_raise"
        assert len(context["frames"]) == 2

    def test_exception_without_traceback(self):
        context = error_to_context(ValueError("No stack"))

        assert context["message"] == "No stack"
        assert context["stack"] == ""
        assert context["frames"] == []
        assert context["file"] is None


class TestSourceFromStack:
    def test_url_file_becomes_path(self):
        stack = """Error: test
    at Object.doSomething (http://localhost:3000/src/controllers/UserController.ts:10:20)"""

        assert source_from_stack(stack) == {
            "controller": "src/controllers/UserController.ts",
            "method": "Object.doSomething",
        }

    def test_plain_paths_kept(self):
        assert source_from_stack(PYTHON_TRACEBACK) == {
            "controller": "/app/service/logic.py",
            "method": "process",
        }

    def test_empty_stack(self):
        assert source_from_stack("") == {}
