import json

import pytest

from folio_rag.generation.prompt_builder import PromptBuilder


def test_with_defaults_registers_book_assistant():
    builder = PromptBuilder.with_defaults()
    assert builder.has_prompt("book_assistant")
    assert "book_assistant" in builder.list_prompts()


def test_register_from_file_relative_to_base_dir(tmp_path):
    (tmp_path / "prompts.json").write_text(
        json.dumps([{"name": "short", "system": "Be brief.", "user": "Q: {{ question }}"}]),
        encoding="utf-8",
    )
    builder = PromptBuilder()

    names = builder.register_from_source("file:prompts.json", base_dir=tmp_path)

    assert names == ["short"]
    assert builder.build_messages("short", question="Why?") == [("system", "Be brief."), ("human", "Q: Why?")]
    assert builder.build("short", question="Why?") == "Be brief.\nQ: Why?"


def test_few_shot_messages_keep_roles():
    builder = PromptBuilder()
    builder.register_from_dict({
        "name": "fs",
        "few_shot": [{"role": "human", "content": "Hi"}, {"role": "ai", "content": "Hello {{ name }}"}],
        "user": "{{ question }}",
    })

    messages = builder.build_messages("fs", name="Ada", question="Ok?")
    assert messages == [("human", "Hi"), ("ai", "Hello Ada"), ("human", "Ok?")]


def test_unknown_template_raises_key_error():
    with pytest.raises(KeyError):
        PromptBuilder().build("missing")


@pytest.mark.parametrize(
    "data, exc",
    [
        ({"system": "no name"}, KeyError),
        ({"name": 3}, TypeError),
        ({"name": "  "}, ValueError),
        ({"name": "x", "few_shot": "nope"}, TypeError),
    ],
)
def test_register_from_dict_validates(data, exc):
    with pytest.raises(exc):
        PromptBuilder().register_from_dict(data)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PromptBuilder().register_from_file(tmp_path / "absent.json")


def test_malformed_pkg_source_raises():
    with pytest.raises(ValueError):
        PromptBuilder().register_from_source("pkg:folio_rag.generation")
