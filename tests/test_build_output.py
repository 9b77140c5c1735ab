from app.services.build_output import parse_build_output


def test_python_traceback():
    output = (
        "Starting Container\n"
        "Traceback (most recent call last):\n"
        '  File "/app/main.py", line 12, in <module>\n'
        "    from routes import users\n"
        '  File "/app/routes/users.py", line 3, in <module>\n'
        "    import flask_cors\n"
        "ModuleNotFoundError: No module named 'flask_cors'\n"
    )

    parsed = parse_build_output(output)

    assert parsed.file == "/app/main.py"
    assert parsed.line == 12
    assert parsed.summary == "ModuleNotFoundError: No module named 'flask_cors'"
    assert "Traceback (most recent call last):" in parsed.stack_trace


def test_node_stack_skips_library_frames():
    output = (
        "TypeError: Cannot read properties of undefined (reading 'id')\n"
        "    at Layer.handle (/app/node_modules/express/lib/router/layer.js:95:5)\n"
        "    at getUser (/app/controllers/TestController.js:43:11)\n"
    )

    parsed = parse_build_output(output)

    assert parsed.file == "/app/controllers/TestController.js"
    assert parsed.line == 43
    assert parsed.summary.startswith("TypeError: Cannot read properties")


def test_dotnet_compiler_error():
    output = (
        "#12 [build 5/7] RUN dotnet publish -c Release\n"
        "/src/Controllers/UsersController.cs(42,17): error CS1002: ; expected\n"
        "Build FAILED.\n"
    )

    parsed = parse_build_output(output)

    assert parsed.file == "/src/Controllers/UsersController.cs"
    assert parsed.line == 42
    assert "CS1002" in parsed.summary


def test_dotnet_runtime_trace():
    output = (
        "Unhandled exception. System.InvalidOperationException: No database provider configured\n"
        "   at Api.Program.Main(String[] args) in /src/Program.cs:line 27\n"
    )

    parsed = parse_build_output(output)

    assert (parsed.file, parsed.line) == ("/src/Program.cs", 27)


def test_empty_output():
    assert parse_build_output("") is None
    assert parse_build_output(None) is None


def test_text_without_location():
    parsed = parse_build_output("Healthcheck failed: service unavailable")

    assert parsed.file is None
    assert parsed.line is None
    assert parsed.summary == "Healthcheck failed: service unavailable"
