from __future__ import annotations

import json

import pytest

from project_errors import ValidationError
from video_project import ProjectDocument, UpdateMode, parse_files_argument, parse_video_request, validate_positive_number


def test_parse_video_request_defaults():
    request = parse_video_request({})

    assert request.files is None
    assert request.use_previous_project is True
    assert request.update_mode is UpdateMode.MERGE
    assert request.delete_files == []
    assert request.reset_project is False


def test_parse_video_request_reads_camel_case_fields():
    request = parse_video_request(
        {
            "title": "Intro",
            "compositionId": "Intro",
            "width": 1080,
            "height": 1920,
            "fps": 24.0,
            "durationInFrames": 96,
            "entryFile": "/src/Intro.tsx",
            "files": {"/src/Intro.tsx": "x"},
            "defaultProps": {"accent": "#fff"},
            "usePreviousProject": False,
            "updateMode": "replace",
            "deleteFiles": ["/src/Old.tsx"],
            "resetProject": True,
        }
    )

    assert (request.title, request.composition_id, request.entry_file) == ("Intro", "Intro", "/src/Intro.tsx")
    assert (request.width, request.height, request.fps, request.duration_in_frames) == (1080, 1920, 24.0, 96)
    assert request.files == {"/src/Intro.tsx": "x"}
    assert request.default_props == {"accent": "#fff"}
    assert request.input_props is None
    assert request.update_mode is UpdateMode.REPLACE
    assert request.delete_files == ["/src/Old.tsx"]
    assert request.use_previous_project is False and request.reset_project is True


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"updateMode": "append"}, "updateMode: Expected 'merge' | 'replace'"),
        ({"deleteFiles": "/src/a.tsx"}, "deleteFiles: Expected array of strings"),
        ({"fps": True}, "fps: Expected number, received bool"),
        ({"title": 3}, "title: Expected string, received int"),
        ({"usePreviousProject": "yes"}, "usePreviousProject: Expected boolean"),
        ({"inputProps": []}, "inputProps: Expected object"),
    ],
)
def test_parse_video_request_rejects_bad_shapes(payload, message):
    with pytest.raises(ValidationError) as excinfo:
        parse_video_request(payload)
    assert str(excinfo.value).startswith(message)


def test_parse_files_argument_accepts_json_string():
    assert parse_files_argument(json.dumps({"/a.tsx": "1"})) == {"/a.tsx": "1"}


@pytest.mark.parametrize(
    "value, message",
    [
        ("{not json", "files must be a valid JSON string"),
        ("[1]", "files must be a JSON object like"),
        ({"/a.tsx": 1}, 'files./a.tsx: File "/a.tsx" must be a string.'),
    ],
)
def test_parse_files_argument_errors(value, message):
    with pytest.raises(ValidationError) as excinfo:
        parse_files_argument(value)
    assert str(excinfo.value).startswith(message)


@pytest.mark.parametrize("value", [0, -1, float("nan"), float("inf"), "30", None, True])
def test_validate_positive_number_rejects(value):
    assert validate_positive_number("fps", value) == "fps must be a positive number."


def test_validate_positive_number_accepts():
    assert validate_positive_number("fps", 29.97) is None


def test_project_document_wire_form_and_copy():
    document = ProjectDocument(
        title="Demo",
        composition_id="Main",
        width=640,
        height=360,
        fps=25,
        duration_in_frames=50,
        entry_file="/src/Video.tsx",
        files={"/src/Video.tsx": "x"},
        input_props={"nested": {"value": 1}},
    )

    wire = document.to_dict()
    assert wire == {
        "title": "Demo",
        "compositionId": "Main",
        "width": 640,
        "height": 360,
        "fps": 25,
        "durationInFrames": 50,
        "entryFile": "/src/Video.tsx",
        "files": {"/src/Video.tsx": "x"},
        "defaultProps": {},
        "inputProps": {"nested": {"value": 1}},
    }

    duplicate = document.copy()
    duplicate.input_props["nested"]["value"] = 2
    assert document.input_props["nested"]["value"] == 1
