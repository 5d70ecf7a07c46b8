from __future__ import annotations

import pytest

from import_resolver import ImportKind, ResolvedImport, candidate_paths, resolve_import
from project_errors import ResolutionError


def test_runtime_names_take_precedence_over_files():
    files = {"/react": "", "/remotion.tsx": ""}
    assert resolve_import("react", "/src/Video.tsx", files) == ResolvedImport(ImportKind.RUNTIME, "react")
    assert resolve_import("react/jsx-runtime", "/src/Video.tsx", files).kind is ImportKind.RUNTIME
    assert resolve_import("remotion", "/src/Video.tsx", files).kind is ImportKind.RUNTIME


def test_bare_specifiers_are_packages():
    resolved = resolve_import("@remotion/transitions", "/src/Video.tsx", {})
    assert resolved == ResolvedImport(ImportKind.PACKAGE, "@remotion/transitions")


def test_relative_import_resolves_against_importer_directory():
    files = {"/src/scenes/Intro.tsx": "", "/src/theme.ts": ""}

    assert resolve_import("./scenes/Intro", "/src/Video.tsx", files).path == "/src/scenes/Intro.tsx"
    assert resolve_import("../theme", "/src/scenes/Intro.tsx", files).path == "/src/theme.ts"
    assert resolve_import("/src/theme", "/anything.tsx", files).path == "/src/theme.ts"


def test_extension_lookup_prefers_file_over_index():
    files = {"/src/Scene.tsx": "", "/src/Scene/index.tsx": ""}
    assert resolve_import("./Scene", "/src/Video.tsx", files).path == "/src/Scene.tsx"


def test_index_file_is_used_when_no_sibling_file_exists():
    files = {"/src/Scene/index.jsx": ""}
    assert resolve_import("./Scene", "/src/Video.tsx", files).path == "/src/Scene/index.jsx"


def test_extension_order_follows_supported_list():
    files = {"/src/util.js": "", "/src/util.ts": ""}
    assert resolve_import("./util", "/src/Video.tsx", files).path == "/src/util.ts"


def test_recognized_extension_must_exist_verbatim():
    files = {"/src/logo.svg.tsx": ""}
    with pytest.raises(ResolutionError):
        resolve_import("./logo.svg", "/src/Video.tsx", files)


def test_candidate_paths_order():
    candidates = candidate_paths("/src/Scene")
    assert candidates[0] == "/src/Scene"
    assert candidates[1] == "/src/Scene.tsx"
    assert candidates.index("/src/Scene.ogg") < candidates.index("/src/Scene/index.tsx")
    assert candidate_paths("/src/data.json") == ["/src/data.json"]


def test_unresolved_import_names_specifier_and_importer():
    with pytest.raises(ResolutionError) as excinfo:
        resolve_import("./X", "/src/Video.tsx", {"/src/Video.tsx": ""})

    assert str(excinfo.value) == 'Cannot resolve import "./X" from "/src/Video.tsx".'
    assert excinfo.value.specifier == "./X"
    assert excinfo.value.importer == "/src/Video.tsx"


@pytest.mark.parametrize("importer", [None, "<stdin>"])
def test_missing_importer_falls_back_to_entry(importer):
    files = {"/src/Title.tsx": ""}
    resolved = resolve_import("./Title", importer, files, entry_file="/src/Video.tsx")
    assert resolved.path == "/src/Title.tsx"


def test_resolution_is_idempotent():
    files = {"/src/a.tsx": "", "/src/b/index.ts": ""}
    first = [resolve_import(spec, "/src/Video.tsx", files) for spec in ("./a", "./b", "react", "lodash")]
    second = [resolve_import(spec, "/src/Video.tsx", files) for spec in ("./a", "./b", "react", "lodash")]
    assert first == second
