import io
import zipfile

import pytest

from mclang_flow.documents.jar import list_lang_entries, read_entry_mapping
from mclang_flow.documents.lang_map import (
    FileFormat,
    dumps_mapping,
    parse_json_mapping,
    parse_lang_mapping,
    read_mapping,
    sanitize_json_content,
    write_mapping,
)


@pytest.mark.unit
def test_file_format_from_name():
    assert FileFormat.from_name("en_us.lang") is FileFormat.LANG
    assert FileFormat.from_name("EN_US.LANG") is FileFormat.LANG
    assert FileFormat.from_name("en_us.json") is FileFormat.JSON


@pytest.mark.unit
def test_sanitize_strips_comments_and_fixes_raw_newlines():
    content = (
        "\ufeff{\n"
        "  // leading comment\n"
        '  "a": "x\ny", # trailing comment\n'
        '  "b": "http://example.com/#anchor"\n'
        "}"
    )
    assert parse_json_mapping(content) == {
        "a": "x\ny",
        "b": "http://example.com/#anchor",
    }
    assert not sanitize_json_content(content).startswith("\ufeff")


@pytest.mark.unit
def test_sanitize_drops_control_characters_inside_strings():
    assert parse_json_mapping('{"a": "tab\there\x07"}') == {"a": "tab\there"}


@pytest.mark.unit
@pytest.mark.parametrize("content", ["", "not json", "[1, 2]", '"text"'])
def test_parse_json_mapping_returns_empty_for_unusable_input(content):
    assert parse_json_mapping(content) == {}


@pytest.mark.unit
def test_parse_lang_mapping():
    content = "# comment\n\ntile.ore.name=Ore\nitem.eq=a=b\nbroken line\n"
    assert parse_lang_mapping(content) == {"tile.ore.name": "Ore", "item.eq": "a=b"}


@pytest.mark.unit
def test_dumps_lang_escapes_newlines_and_skips_non_strings():
    text = dumps_mapping({"a": "one\ntwo", "b": 3}, FileFormat.LANG)
    assert text == "a=one\\ntwo\n"


@pytest.mark.unit
def test_dumps_json_keeps_unicode_and_order():
    text = dumps_mapping({"z": "宝石", "a": "矿石"}, FileFormat.JSON)
    assert text.index('"z"') < text.index('"a"')
    assert "宝石" in text


@pytest.mark.unit
def test_read_mapping_missing_file_is_empty(tmp_path):
    assert read_mapping(str(tmp_path / "missing.json"), FileFormat.JSON) == {}


@pytest.mark.unit
def test_write_then_read_mapping(tmp_path):
    path = str(tmp_path / "assets" / "m" / "lang" / "zh_cn.json")
    write_mapping(path, {"k": "值"}, FileFormat.JSON)
    assert read_mapping(path, FileFormat.JSON) == {"k": "值"}


def _jar(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    buffer.seek(0)
    return zipfile.ZipFile(buffer)


@pytest.mark.unit
def test_list_lang_entries_finds_source_and_builtin():
    archive = _jar(
        {
            "assets/gems/lang/en_us.json": '{"item.gems.ruby": "Ruby"}',
            "assets/gems/lang/ZH_CN.json": '{"item.gems.ruby": "红宝石"}',
            "assets/gems/lang/de_de.json": "{}",
            "assets/old/lang/en_US.lang": "tile.old.name=Old\n",
            "assets/gems/textures/en_us.json": "{}",
            "data/gems/recipes/ruby.json": "{}",
        }
    )

    entries = {entry.entry_name: entry for entry in list_lang_entries(archive, "en_us", "zh_cn")}

    assert set(entries) == {"assets/gems/lang/en_us.json", "assets/old/lang/en_US.lang"}
    gems = entries["assets/gems/lang/en_us.json"]
    assert gems.mod_id == "gems"
    assert gems.fmt is FileFormat.JSON
    assert gems.builtin_entry == "assets/gems/lang/ZH_CN.json"
    old = entries["assets/old/lang/en_US.lang"]
    assert old.fmt is FileFormat.LANG
    assert old.builtin_entry is None

    assert read_entry_mapping(archive, gems.builtin_entry, gems.fmt) == {
        "item.gems.ruby": "红宝石"
    }
    assert read_entry_mapping(archive, old.entry_name, old.fmt) == {"tile.old.name": "Old"}
