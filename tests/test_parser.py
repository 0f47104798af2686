import pytest

from ciagent.errors import PipelineParseError
from ciagent.pipeline.model import (
    CommandStep,
    GroupStep,
    InputStep,
    Step,
    TriggerStep,
    UnknownStep,
    WaitStep,
    pipeline_from_obj,
)
from ciagent.pipeline.ordered import DuplicateKeyError, OrderedMap
from ciagent.pipeline.parser import decode_document, iter_documents, split_documents
from ciagent.upload.if_changed import IfChangedApplicator


def _docs(text):
    return list(iter_documents(text))


def test_split_documents_keeps_markers_with_their_document():
    text = "steps:\n  - command: a\n---\nsteps:\n  - command: b\n...\n"
    docs = split_documents(text)
    assert len(docs) == 2
    assert docs[1].startswith("---")


def test_comment_only_and_empty_segments_are_dropped():
    text = "# leading comment\n---\nsteps: [wait]\n---\n# nothing here\n---\n"
    assert len(split_documents(text)) == 1


def test_content_on_the_marker_line_stays_with_its_document():
    docs = _docs("--- {steps: [{command: a}]}\n--- {steps: [{command: b}]}\n")
    assert [err for _, err in docs] == [None, None]
    assert [doc["steps"][0]["command"] for doc, _ in docs] == ["a", "b"]


def test_marker_with_only_a_comment_is_blank():
    assert split_documents("--- # nothing\n---\nsteps: [wait]\n") == ["---\nsteps: [wait]\n"]


def test_empty_input_is_a_single_error():
    results = _docs("")
    assert len(results) == 1
    doc, err = results[0]
    assert doc is None
    assert isinstance(err, PipelineParseError)
    assert "empty document" in str(err)


def test_multiple_documents_decode_in_order():
    text = (
        "steps:\n  - command: first\n"
        "---\n"
        "steps:\n  - command: second\n"
    )
    docs = [d for d, err in _docs(text)]
    assert [d["steps"][0]["command"] for d in docs] == ["first", "second"]


def test_bad_document_does_not_stop_the_stream():
    text = "steps: [wait]\n---\nsteps: [\n---\nsteps: [block]\n"
    results = _docs(text)
    assert len(results) == 3
    assert results[0][1] is None
    assert isinstance(results[1][1], PipelineParseError)
    assert results[2][0] == {"steps": ["block"]}


def test_json_documents():
    assert decode_document('{"steps": [{"command": "make"}]}') == {"steps": [{"command": "make"}]}
    assert decode_document('[{"command": "make"}]') == [{"command": "make"}]


def test_yaml_flow_mapping_that_is_not_json():
    assert decode_document("{steps: [wait]}") == {"steps": ["wait"]}


def test_timestamps_stay_strings():
    assert decode_document("when: 2024-01-02\n") == {"when": "2024-01-02"}


def test_pipeline_env_order_is_preserved():
    doc = decode_document("env:\n  ZED: z\n  ALPHA: a\n  MID: m\nsteps:\n  - command: x\n")
    p = pipeline_from_obj(doc)
    assert p.env.keys() == ["ZED", "ALPHA", "MID"]
    assert list(p.to_dict()["env"]) == ["ZED", "ALPHA", "MID"]


def test_env_values_are_coerced_to_strings():
    p = pipeline_from_obj({"env": {"N": 1, "B": True, "E": None}, "steps": ["wait"]})
    assert p.env.to_dict() == {"N": "1", "B": "true", "E": ""}


def test_step_kinds():
    p = pipeline_from_obj(
        {
            "steps": [
                {"command": "make test", "label": "test"},
                {"commands": ["one", "two"]},
                {"plugins": [{"docker#v5": {"image": "x"}}]},
                "wait",
                {"wait": None, "continue_on_failure": True},
                "block",
                {"input": "Details?"},
                {"trigger": "deploy"},
                {"group": "g", "steps": [{"command": "inner"}]},
                {"label": "mystery"},
                {"type": "script", "command": "legacy"},
            ]
        }
    )
    kinds = [type(s) for s in p.steps]
    assert kinds == [
        CommandStep,
        CommandStep,
        CommandStep,
        WaitStep,
        WaitStep,
        InputStep,
        InputStep,
        TriggerStep,
        GroupStep,
        UnknownStep,
        CommandStep,
    ]
    assert p.steps[1].command == "one\ntwo"
    assert p.steps[2].has_command is False
    assert "command" not in p.steps[2].to_obj()
    assert p.steps[8].steps[0].command == "inner"


def test_unknown_step_type_is_an_error():
    with pytest.raises(PipelineParseError, match="unknown step type"):
        pipeline_from_obj({"steps": [{"type": "teleport"}]})


def test_misclassified_step_is_kept_verbatim():
    p = pipeline_from_obj({"steps": [{"command": {"not": "a string"}}]})
    assert isinstance(p.steps[0], UnknownStep)
    assert p.to_dict()["steps"] == [{"command": {"not": "a string"}}]



def test_unknown_step_if_changed_is_removed(console):
    p = pipeline_from_obj({"steps": [{"command": 123, "if_changed": "x/**"}]})
    assert isinstance(p.steps[0], UnknownStep)
    IfChangedApplicator(enabled=False).apply(console, p.steps)
    assert p.to_dict()["steps"] == [{"command": 123}]


def test_step_is_abstract():
    with pytest.raises(TypeError):
        Step()

def test_legacy_list_of_steps():
    p = pipeline_from_obj([{"command": "x"}])
    assert p.to_dict() == {"steps": [{"command": "x"}]}


@pytest.mark.parametrize("doc, msg", [(None, "empty document"), ({"env": {}}, "no steps"), ("hello", "unsupported")])
def test_invalid_documents(doc, msg):
    with pytest.raises(PipelineParseError, match=msg):
        pipeline_from_obj(doc)


def test_to_dict_round_trip_keeps_unmodelled_fields():
    doc = {
        "agents": {"queue": "default"},
        "notify": [{"email": "dev@example.com"}],
        "steps": [
            {"label": ":hammer:", "command": "make", "env": {"A": "1"}, "retry": {"automatic": True}},
            {"group": "g", "key": "grp", "steps": [{"trigger": "other", "build": {"branch": "main"}}]},
        ],
    }
    p = pipeline_from_obj(doc)
    out = p.to_dict()
    assert out["agents"] == {"queue": "default"}
    assert out["notify"] == [{"email": "dev@example.com"}]
    assert out["steps"][0] == {"command": "make", "env": {"A": "1"}, "label": ":hammer:", "retry": {"automatic": True}}
    assert out["steps"][1] == {
        "group": "g",
        "steps": [{"trigger": "other", "build": {"branch": "main"}}],
        "key": "grp",
    }


def test_ordered_map():
    m = OrderedMap([("b", 1), ("a", 2)])
    m.set("c", 3)
    m.replace("a", "z", 9)
    assert m.items() == [("b", 1), ("z", 9), ("c", 3)]
    m.delete("b")
    assert m.keys() == ["z", "c"]
    assert "z" in m and "b" not in m
    assert m == OrderedMap.from_dict({"z": 9, "c": 3})
    assert m != OrderedMap.from_dict({"c": 3, "z": 9})
    with pytest.raises(DuplicateKeyError):
        OrderedMap([("a", 1), ("a", 2)])
