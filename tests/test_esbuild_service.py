from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from services import esbuild_service
from services.esbuild_service import (
    BundlerError,
    Diagnostic,
    PACKAGES_SOURCEFILE,
    EsbuildTransformer,
    ImportBinding,
    format_diagnostics,
    metafile_exports,
    parse_esbuild_diagnostics,
    parse_esm_bindings,
)

ESBUILD_STDERR = """\
✘ [ERROR] Unterminated string literal

    /src/Video.tsx:3:22:
      3 │   return <div style={{color: "red}}>Hi</div>;
        ╵                       ^

✘ [ERROR] Expected ")" but found end of file

    /src/Scene.tsx:9:0:
      9 │
        ╵ ^

2 errors
"""


def test_parse_esbuild_diagnostics_extracts_locations():
    diagnostics = parse_esbuild_diagnostics(ESBUILD_STDERR)

    assert [d.text for d in diagnostics] == ["Unterminated string literal", 'Expected ")" but found end of file']
    first = diagnostics[0]
    assert (first.file, first.line, first.column) == ("/src/Video.tsx", 3, 22)
    assert first.line_text.strip() == 'return <div style={{color: "red}}>Hi</div>;'


def test_diagnostic_format_uses_one_based_column():
    diagnostic = Diagnostic(text="Boom", file="/src/a.tsx", line=2, column=4, line_text="  const x = ;")
    assert diagnostic.format() == "/src/a.tsx:2:5 Boom\n> const x = ;"
    assert Diagnostic(text="No location").format() == "No location"


def test_format_diagnostics_limits_output():
    diagnostics = [Diagnostic(text=f"error {i}") for i in range(8)]
    formatted = format_diagnostics(diagnostics)
    assert formatted.splitlines() == [f"error {i}" for i in range(5)]


class _FakeProcess:
    def __init__(self, returncode: int, stderr: bytes = b""):
        self.returncode = returncode
        self._stderr = stderr
        self.stdin_text: bytes | None = None

    async def communicate(self, data: bytes):
        self.stdin_text = data
        return b"", self._stderr


def _option(args, name: str) -> str | None:
    prefix = f"--{name}="
    return next((arg[len(prefix):] for arg in args if arg.startswith(prefix)), None)


def _patch_exec(monkeypatch, calls: list, *, outputs=None, returncode: int = 0, stderr: bytes = b""):
    """Fake esbuild: ``outputs(args)`` returns the code and metafile it would write."""

    async def fake_exec(*args, **kwargs):
        process = _FakeProcess(returncode, stderr)
        calls.append((args, kwargs, process))
        if returncode == 0:
            code, metafile = outputs(args) if outputs else ("", {})
            Path(_option(args, "outfile")).write_text(code, encoding="utf-8")
            if _option(args, "metafile"):
                Path(_option(args, "metafile")).write_text(json.dumps(metafile), encoding="utf-8")
        return process

    monkeypatch.setattr(esbuild_service.asyncio, "create_subprocess_exec", fake_exec)


def _metafile(imports, exports, module_format="esm"):
    return {
        "inputs": {"<stdin>": {"format": module_format, "imports": []}},
        "outputs": {
            "out.js": {
                "imports": [{"path": path, "kind": "import-statement", "external": True} for path in imports],
                "exports": list(exports),
            }
        },
    }


VIDEO_CJS = (
    'var import_jsx_runtime = require("react/jsx-runtime");\n'
    'var import_Title = require("./Title");\n'
    "const snippet = 'const h = require(\"./helpers\")';\n"
)
VIDEO_ESM = (
    'import { jsx } from "react/jsx-runtime";\n'
    'import { Title } from "./Title";\n'
    "const snippet = 'const h = require(\"./helpers\")';\n"
    "export { Video as default };\n"
)


def test_transform_reads_imports_and_exports_from_metafile(monkeypatch):
    calls: list = []

    def outputs(args):
        if "--format=esm" in args:
            return VIDEO_ESM, _metafile(["react/jsx-runtime", "./Title"], ["default"])
        return VIDEO_CJS, {}

    _patch_exec(monkeypatch, calls, outputs=outputs)

    transformer = EsbuildTransformer(esbuild_bin="esbuild-test", resolve_dir="/work")
    build = asyncio.run(transformer.transform("export default 1", loader="tsx", sourcefile="/src/Video.tsx"))

    assert build.code == VIDEO_CJS
    assert build.imports == ("react/jsx-runtime", "./Title")
    assert build.exports == frozenset({"default"})
    assert build.bindings == (ImportBinding("react/jsx-runtime", "jsx"), ImportBinding("./Title", "Title"))

    assert len(calls) == 2
    for args, kwargs, process in calls:
        assert args[0] == "esbuild-test"
        for flag in ("--loader=tsx", "--jsx=automatic", "--bundle", "--external:*", "--sourcefile=/src/Video.tsx"):
            assert flag in args
        assert kwargs["cwd"] == "/work"
        assert process.stdin_text == b"export default 1"
    formats = {_option(args, "format"): _option(args, "metafile") for args, _, _ in calls}
    assert formats["cjs"] is None and formats["esm"] is not None


def test_commonjs_sources_have_no_static_exports():
    assert metafile_exports(_metafile([], ["default"], module_format="cjs")) is None
    assert metafile_exports(_metafile([], ["Title", "default"])) == frozenset({"Title", "default"})


def test_parse_esm_bindings_reads_esbuild_import_statements():
    esm_code = (
        "// /src/Video.tsx\n"
        'import Intro, { Scene as Scene2, Outro } from "./Scenes";\n'
        'import * as remotion from "remotion";\n'
        "import {\n"
        "  spring,\n"
        "  useCurrentFrame as useCurrentFrame2\n"
        '} from "remotion";\n'
        'export { Title, default as Logo } from "./Brand";\n'
        'export * from "./more";\n'
        'export * as extras from "./extras";\n'
        "const text = `import { Nope } from \"./ghost\"`;\n"
    )

    bindings, star_exports = parse_esm_bindings(esm_code)

    assert bindings == (
        ImportBinding("./Scenes", "default"),
        ImportBinding("./Scenes", "Scene"),
        ImportBinding("./Scenes", "Outro"),
        ImportBinding("remotion", "spring"),
        ImportBinding("remotion", "useCurrentFrame"),
        ImportBinding("./Brand", "Title"),
        ImportBinding("./Brand", "default"),
    )
    assert star_exports == ("./more",)


def test_bundle_packages_runs_one_bundle_for_all_specifiers(monkeypatch):
    calls: list = []

    def outputs(args):
        if _option(args, "sourcefile") == PACKAGES_SOURCEFILE:
            return "module.exports = {};", _metafile(["react", "remotion"], [], module_format="cjs")
        if _option(args, "sourcefile") == "@remotion/transitions":
            return "export { TransitionSeries };", _metafile(["react"], ["TransitionSeries", "linearTiming"])
        return "export default require_fade();", _metafile([], [], module_format="cjs")

    _patch_exec(monkeypatch, calls, outputs=outputs)

    bundle = asyncio.run(
        EsbuildTransformer().bundle_packages(
            ["@remotion/transitions", "@remotion/transitions/fade", "@remotion/transitions"],
            externals=["react", "remotion"],
        )
    )

    bundle_runs = [call for call in calls if _option(call[0], "sourcefile") == PACKAGES_SOURCEFILE]
    assert len(bundle_runs) == 1
    args, _, process = bundle_runs[0]
    assert "--bundle" in args and "--format=cjs" in args
    assert "--external:react" in args and "--external:remotion" in args
    assert process.stdin_text.decode("utf-8") == (
        "module.exports = {\n"
        '  "@remotion/transitions": require("@remotion/transitions"),\n'
        '  "@remotion/transitions/fade": require("@remotion/transitions/fade")\n'
        "};\n"
    )
    assert len(calls) == 3

    assert bundle.code == "module.exports = {};"
    assert bundle.imports == ("react", "remotion")
    assert bundle.exports == {
        "@remotion/transitions": frozenset({"TransitionSeries", "linearTiming"}),
        "@remotion/transitions/fade": None,
    }


def test_failed_run_raises_bundler_error_with_diagnostics(monkeypatch):
    _patch_exec(monkeypatch, [], returncode=1, stderr=ESBUILD_STDERR.encode("utf-8"))

    with pytest.raises(BundlerError) as excinfo:
        asyncio.run(EsbuildTransformer().transform("x", loader="tsx", sourcefile="/src/Video.tsx"))

    message = str(excinfo.value)
    assert message.startswith("/src/Video.tsx:3:23 Unterminated string literal")
    assert len(excinfo.value.diagnostics) == 2


def test_missing_binary_raises_bundler_error(monkeypatch):
    async def fake_exec(*args, **kwargs):
        raise FileNotFoundError("esbuild")

    monkeypatch.setattr(esbuild_service.asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(BundlerError, match="Could not start esbuild"):
        asyncio.run(EsbuildTransformer(esbuild_bin="missing-esbuild").transform("x", loader="ts", sourcefile="/a.ts"))
