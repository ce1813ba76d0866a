"""Tests for the compressor Invoker."""

from __future__ import annotations

import asyncio
import dataclasses
import pathlib
import stat
import sys
import textwrap
from unittest import mock

import pytest

from minidispatch.compress.compressors import COMPRESSORS
from minidispatch.compress.config import CompressorSettings
from minidispatch.compress.invoker import (
    BatchResult,
    CompressionResult,
    Invoker,
    batch_output_path,
)
from minidispatch.compress.utils import get_filesize
from minidispatch.utils.exceptions import CompressorError, CompressorErrorKind

INCOMPATIBLE_MESSAGE = r"(UnsupportedClassVersionError)|(requires a newer Java)"


def make_process(returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> mock.MagicMock:
    process = mock.MagicMock()
    process.returncode = returncode
    process.communicate = mock.AsyncMock(return_value=(stdout, stderr))
    return process


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> CompressorSettings:
    return CompressorSettings(node_bin_dir=tmp_path / "no-node-modules")


@pytest.fixture
def invoker(settings: CompressorSettings) -> Invoker:
    return Invoker(settings, mock.MagicMock())


@pytest.fixture
def fake_terser(tmp_path: pathlib.Path) -> pathlib.Path:
    """An executable standing in for terser: strips blank lines and indentation."""
    script = tmp_path / "fake-terser"
    script.write_text(
        f"#!{sys.executable}\n"
        + textwrap.dedent(
            """
            import sys
            args = sys.argv[1:]
            source = args[0]
            target = args[args.index("--output") + 1]
            if "--fail" in args:
                sys.stderr.write("ERROR: unexpected token\\n")
                sys.exit(2)
            with open(source) as f:
                lines = [line.strip() for line in f if line.strip()]
            with open(target, "w") as f:
                f.write("".join(lines))
            """
        )
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return script


class TestInvokerRun:
    """Tests for single compressor runs."""

    def test_initialization(self):
        invoker = Invoker()
        assert isinstance(invoker.settings, CompressorSettings)
        assert invoker.logger is not None

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="needs a shebang executable")
    async def test_real_process(self, sample_js: pathlib.Path, tmp_path: pathlib.Path, fake_terser):
        settings = CompressorSettings(binaries={"terser": str(fake_terser)})
        output = tmp_path / "dist" / "sample.min.js"

        result = await Invoker(settings).run("terser", sample_js, output)

        assert isinstance(result, CompressionResult)
        assert result.command[0] == str(fake_terser)
        assert output.exists()
        assert output.stat().st_size < sample_js.stat().st_size
        assert result.before.raw == get_filesize(sample_js)
        assert result.after.raw == get_filesize(output)

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="needs a shebang executable")
    async def test_real_process_failure(self, sample_js: pathlib.Path, tmp_path: pathlib.Path, fake_terser):
        settings = CompressorSettings(binaries={"terser": str(fake_terser)})

        with pytest.raises(CompressorError) as excinfo:
            await Invoker(settings).run("terser", sample_js, tmp_path / "out.js", {"fail": True})

        error = excinfo.value
        assert error.kind == CompressorErrorKind.NON_ZERO_EXIT
        assert error.returncode == 2
        assert "ERROR: unexpected token" in str(error)
        assert error.diagnostic == "ERROR: unexpected token"

    @pytest.mark.asyncio
    async def test_missing_program(self, sample_js: pathlib.Path, tmp_path: pathlib.Path):
        settings = CompressorSettings(binaries={"terser": str(tmp_path / "missing" / "terser")})

        with pytest.raises(CompressorError) as excinfo:
            await Invoker(settings).run("terser", sample_js, tmp_path / "out.js")

        assert excinfo.value.kind == CompressorErrorKind.SPAWN_FAILED
        assert "Could not start terser" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_spawn_incompatible_runtime(self, invoker: Invoker, sample_js, tmp_path):
        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            side_effect=OSError("UnsupportedClassVersionError"),
        ):
            with pytest.raises(CompressorError, match=INCOMPATIBLE_MESSAGE) as excinfo:
                await invoker.run("gcc-java", sample_js, tmp_path / "out.js")

        assert excinfo.value.kind == CompressorErrorKind.INCOMPATIBLE_RUNTIME
        assert excinfo.value.incompatible_runtime

    @pytest.mark.asyncio
    async def test_exit_incompatible_runtime(self, invoker: Invoker, sample_js, tmp_path):
        stderr = (
            b'Exception in thread "main" java.lang.UnsupportedClassVersionError: '
            b"com/google/javascript/jscomp/CommandLineRunner : Unsupported major.minor version 52.0\n"
        )
        process = make_process(returncode=1, stderr=stderr)

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=process),
        ) as spawn:
            with pytest.raises(CompressorError, match=INCOMPATIBLE_MESSAGE) as excinfo:
                await invoker.run("gcc-java", sample_js, tmp_path / "out.js")

        command = spawn.call_args.args
        assert command[:2] == ("java", "-jar")
        assert excinfo.value.kind == CompressorErrorKind.INCOMPATIBLE_RUNTIME
        assert excinfo.value.returncode == 1
        assert "Unsupported major.minor version 52.0" in excinfo.value.diagnostic

    @pytest.mark.asyncio
    async def test_stdout_mode_writes_output(self, invoker: Invoker, sample_css, tmp_path):
        process = make_process(stdout=b"body{margin:0}")
        output = tmp_path / "out" / "sample.min.css"

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=process),
        ):
            result = await invoker.run("yui", sample_css, output)

        assert output.read_text(encoding="utf-8") == "body{margin:0}"
        assert "--type" in result.command
        assert result.command[result.command.index("--type") + 1] == "css"
        assert result.after.raw == "14 B"

    @pytest.mark.asyncio
    async def test_stdout_mode_empty_output(self, invoker: Invoker, sample_css, tmp_path):
        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=make_process(stdout=b"")),
        ):
            with pytest.raises(CompressorError) as excinfo:
                await invoker.run("crass", sample_css, tmp_path / "out.css")

        assert excinfo.value.kind == CompressorErrorKind.EMPTY_OUTPUT

    @pytest.mark.asyncio
    async def test_file_mode_empty_output(self, invoker: Invoker, sample_js, tmp_path):
        output = tmp_path / "out.js"

        async def spawn(*command, **kwargs):
            output.write_text("")
            return make_process()

        with mock.patch("minidispatch.compress.invoker.asyncio.create_subprocess_exec", side_effect=spawn):
            with pytest.raises(CompressorError) as excinfo:
                await invoker.run("uglifyjs", sample_js, output)

        assert excinfo.value.kind == CompressorErrorKind.EMPTY_OUTPUT
        assert excinfo.value.returncode == 0

    @pytest.mark.asyncio
    async def test_options_reach_command(self, invoker: Invoker, sample_js, tmp_path):
        output = tmp_path / "out.js"

        async def spawn(*command, **kwargs):
            output.write_text("x")
            return make_process()

        with mock.patch("minidispatch.compress.invoker.asyncio.create_subprocess_exec", side_effect=spawn):
            result = await invoker.run(
                "gcc", sample_js, output, {"createSourceMap": True, "debug": False, "language_out": "ES5"}
            )

        assert result.command[1:] == [
            "--js", str(sample_js), "--js_output_file", str(output),
            "--createSourceMap", "--language_out", "ES5",
        ]

    @pytest.mark.asyncio
    async def test_library_compressor(self, invoker: Invoker, sample_js, tmp_path):
        output = tmp_path / "sample.min.js"

        result = await invoker.run("rjsmin", sample_js, output)

        assert result.command == []
        assert output.stat().st_size < sample_js.stat().st_size
        assert "Sample script" not in output.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_library_failure(self, invoker: Invoker, sample_js, tmp_path):
        def broken(content):
            raise ValueError("cannot parse")

        failing = dataclasses.replace(COMPRESSORS["rjsmin"], minify=broken)
        with mock.patch.dict(COMPRESSORS, {"rjsmin": failing}):
            with pytest.raises(CompressorError, match="cannot parse") as excinfo:
                await invoker.run("rjsmin", sample_js, tmp_path / "out.js")

        assert excinfo.value.kind == CompressorErrorKind.MINIFY_FAILED

    @pytest.mark.asyncio
    async def test_unsupported_input(self, invoker: Invoker, sample_js, tmp_path):
        with pytest.raises(CompressorError) as excinfo:
            await invoker.run("csso", sample_js, tmp_path / "out.css")

        assert excinfo.value.kind == CompressorErrorKind.UNSUPPORTED_INPUT

    @pytest.mark.asyncio
    async def test_missing_input(self, invoker: Invoker, tmp_path):
        with pytest.raises(FileNotFoundError):
            await invoker.run("rjsmin", tmp_path / "missing.js", tmp_path / "out.js")

    @pytest.mark.asyncio
    async def test_unknown_compressor(self, invoker: Invoker, sample_js, tmp_path):
        with pytest.raises(CompressorError) as excinfo:
            await invoker.run("closure", sample_js, tmp_path / "out.js")

        assert excinfo.value.kind == CompressorErrorKind.UNKNOWN_COMPRESSOR


class TestInvokerRunAll:
    """Tests for batch runs."""

    def test_batch_output_path(self):
        assert batch_output_path("dist/app.min.js", "terser") == pathlib.Path("dist/app.min.terser.js")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [False, True])
    async def test_failures_are_recorded(self, invoker: Invoker, sample_js, tmp_path, concurrent):
        output = tmp_path / "dist" / "sample.min.js"

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError("No such file or directory"),
        ):
            result = await invoker.run_all(sample_js, output, concurrent=concurrent)

        assert isinstance(result, BatchResult)
        assert list(result.outcomes) == [
            "gcc", "gcc-java", "yui", "uglifyjs", "terser", "babel-minify",
            "esbuild", "rjsmin", "no-compress",
        ]
        assert set(result.succeeded) == {"rjsmin", "no-compress"}
        assert all(
            error.kind == CompressorErrorKind.SPAWN_FAILED for error in result.failed.values()
        )
        assert (tmp_path / "dist" / "sample.min.rjsmin.js").exists()
        assert (
            (tmp_path / "dist" / "sample.min.no-compress.js").read_bytes() == sample_js.read_bytes()
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [False, True])
    async def test_undecodable_stdout_is_kept(self, invoker: Invoker, sample_css, tmp_path, concurrent):
        minified = b"body{content:'\xff'}"

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=make_process(stdout=minified)),
        ):
            result = await invoker.run_all(sample_css, tmp_path / "out.css", concurrent=concurrent)

        assert set(result.succeeded) == {"yui", "crass", "rcssmin", "no-compress"}
        assert {name: error.kind for name, error in result.failed.items()} == {
            "esbuild": CompressorErrorKind.EMPTY_OUTPUT,
            "csso": CompressorErrorKind.EMPTY_OUTPUT,
            "clean-css": CompressorErrorKind.EMPTY_OUTPUT,
        }
        assert (tmp_path / "out.yui.css").read_bytes() == minified

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [False, True])
    async def test_undecodable_input(self, invoker: Invoker, tmp_path, concurrent):
        source = tmp_path / "latin1.js"
        source.write_bytes(b"var a = '\xe9';\n")

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=make_process(stdout=b"var a='\xe9';")),
        ):
            result = await invoker.run_all(source, tmp_path / "out.js", concurrent=concurrent)

        assert "yui" in result.succeeded
        assert result.failed["rjsmin"].kind == CompressorErrorKind.MINIFY_FAILED
        assert result.failed["no-compress"].kind == CompressorErrorKind.MINIFY_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [False, True])
    async def test_missing_jar(self, sample_js, tmp_path, concurrent):
        settings = CompressorSettings(node_bin_dir=tmp_path / "no-node-modules", jars={})
        invoker = Invoker(settings, mock.MagicMock())

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError("No such file or directory"),
        ):
            result = await invoker.run_all(sample_js, tmp_path / "out.js", concurrent=concurrent)

        assert set(result.succeeded) == {"rjsmin", "no-compress"}
        for name in ("gcc-java", "yui"):
            error = result.failed[name]
            assert error.kind == CompressorErrorKind.SPAWN_FAILED
            assert "No jar configured" in str(error)
            assert error.details["config_key"] == f"compressors.jars.{name}"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [False, True])
    async def test_non_zero_exit(self, invoker: Invoker, sample_js, tmp_path, concurrent):
        process = make_process(returncode=2, stderr=b"ERROR: Unexpected token\n")

        with mock.patch(
            "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=process),
        ):
            result = await invoker.run_all(sample_js, tmp_path / "out.js", concurrent=concurrent)

        assert set(result.succeeded) == {"rjsmin", "no-compress"}
        assert len(result.failed) == 7
        for error in result.failed.values():
            assert error.kind == CompressorErrorKind.NON_ZERO_EXIT
            assert error.returncode == 2
            assert "Unexpected token" in str(error)

    @pytest.mark.asyncio
    async def test_uses_concurrent_setting(self, sample_css, tmp_path):
        invoker = Invoker(CompressorSettings(concurrent=True), mock.MagicMock())

        with mock.patch("minidispatch.compress.invoker.asyncio.gather", wraps=asyncio.gather) as gather:
            with mock.patch(
                "minidispatch.compress.invoker.asyncio.create_subprocess_exec",
                side_effect=FileNotFoundError("missing"),
            ):
                result = await invoker.run_all(sample_css, tmp_path / "out.css")

        gather.assert_called_once()
        assert set(result.succeeded) == {"rcssmin", "no-compress"}

    @pytest.mark.asyncio
    async def test_no_compressor_for_language(self, invoker: Invoker, tmp_path):
        source = tmp_path / "notes.txt"
        source.write_text("plain text")

        result = await invoker.run_all(source, tmp_path / "out.txt")

        assert result.outcomes == {}

    @pytest.mark.asyncio
    async def test_missing_input(self, invoker: Invoker, tmp_path):
        with pytest.raises(FileNotFoundError):
            await invoker.run_all(tmp_path / "missing.js", tmp_path / "out.js")
