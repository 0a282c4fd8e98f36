import json
import os
import threading
import zipfile
from types import SimpleNamespace

import pytest

import mclang_flow.main as main_module
import mclang_flow.pipelines.runner as runner_module
from mclang_flow.pipelines.incremental import RunMode
from mclang_flow.pipelines.runner import (
    RUN_CANCELLED,
    RUN_COMPLETED,
    RUN_COMPLETED_WITH_DROPS,
    RUN_COMPLETED_WITH_ERRORS,
    TranslationRunner,
)
from mclang_flow.registry.config_store import AppConfig
from mclang_flow.parsers.base import ParserError
from mclang_flow.utils.cancellation import CancellationToken
from mclang_flow.utils.log_protocol import PipelineObserver

QUEST = """{
\ttitle: "Getting Started"
\tdescription: [
\t\t"Punch a tree"
\t]
}
"""


class FakeTranslator:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def translate_texts(self, texts, context_id, cancel=None):
        with self._lock:
            self.calls.append((context_id, list(texts)))
        return [text.upper() for text in texts]


def _write(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    mode = "wb" if isinstance(content, bytes) else "w"
    kwargs = {} if isinstance(content, bytes) else {"encoding": "utf-8"}
    with open(path, mode, **kwargs) as f:
        f.write(content)


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def modpack(tmp_path):
    root = tmp_path / "in"
    jar_path = root / "mods" / "gems.jar"
    os.makedirs(jar_path.parent)
    with zipfile.ZipFile(jar_path, "w") as archive:
        archive.writestr(
            "assets/gems/lang/en_us.json",
            json.dumps({"item.gems.ruby": "Ruby", "item.gems.sapphire": "Sapphire"}),
        )
        archive.writestr(
            "assets/gems/lang/zh_cn.json", json.dumps({"item.gems.ruby": "红宝石"})
        )
        archive.writestr("assets/gems/textures/item/ruby.png", b"\x89PNG")
    _write(str(root / "mods" / "broken.jar"), b"not a zip archive")
    lang_dir = root / "resourcepacks" / "legacy" / "assets" / "legacy" / "lang"
    _write(str(lang_dir / "en_us.lang"), "tile.legacy.name=Legacy Block\n")
    _write(str(lang_dir / "de_de.lang"), "tile.legacy.name=Altblock\n")
    _write(str(root / "config" / "ftbquests" / "quests" / "chapters" / "start.snbt"), QUEST)
    _write(str(root / "notes.txt"), "ignore me")
    return root


def _config(tmp_path, modpack, output="out", **overrides):
    values = dict(
        input_path=str(modpack),
        output_path=str(tmp_path / output),
        batch_size=2,
        file_concurrency=2,
        network_concurrency=2,
        skip_quest=False,
    )
    values.update(overrides)
    return AppConfig(**values)


def _run(config, mode=RunMode.FULL, cancel=None, translator=None):
    translator = translator or FakeTranslator()
    runner = TranslationRunner(config, translator=translator, cancel=cancel)
    try:
        return runner.run(config.input_path, mode), translator
    finally:
        runner.close()


@pytest.mark.integration
def test_full_run_over_modpack_directory(tmp_path, modpack):
    config = _config(tmp_path, modpack)

    summary, translator = _run(config)

    out = tmp_path / "out"
    assert summary.status == RUN_COMPLETED_WITH_ERRORS
    assert _read_json(str(out / "assets" / "gems" / "lang" / "zh_cn.json")) == {
        "item.gems.ruby": "RUBY",
        "item.gems.sapphire": "SAPPHIRE",
    }
    with open(out / "assets" / "legacy" / "lang" / "zh_cn.lang", encoding="utf-8") as f:
        assert f.read() == "tile.legacy.name=LEGACY BLOCK\n"
    quest = (out / "config" / "ftbquests" / "quests" / "chapters" / "start.snbt").read_text(
        encoding="utf-8"
    )
    assert 'title: "GETTING STARTED"' in quest
    assert '"PUNCH A TREE"' in quest
    assert (out / "pack.mcmeta").exists()

    errors = [o for o in summary.outcomes if o.status == "error"]
    assert len(errors) == 1
    assert errors[0].artifact_id.endswith("broken.jar")
    assert "BadZipFile" in errors[0].message
    assert {context for context, _ in translator.calls} == {"gems", "legacy", "Quest_start"}

    data = summary.to_dict()
    assert data["persisted"] == 3
    assert data["errors"] == 1


@pytest.mark.integration
def test_full_run_skips_existing_outputs_on_second_pass(tmp_path, modpack):
    config = _config(tmp_path, modpack)
    _run(config)

    summary, translator = _run(config)

    assert summary.count("skipped") == 3
    assert translator.calls == []


@pytest.mark.integration
def test_quests_are_skipped_by_default(tmp_path, modpack):
    config = _config(tmp_path, modpack, skip_quest=True)

    summary, translator = _run(config)

    assert not (tmp_path / "out" / "config").exists()
    assert "Quest_start" not in {context for context, _ in translator.calls}
    assert summary.count("skipped") == 1


@pytest.mark.integration
def test_incremental_run_recovers_builtin_and_is_idempotent(tmp_path, modpack):
    config = _config(tmp_path, modpack, skip_quest=True)

    first, translator = _run(config, RunMode.INCREMENTAL)

    out = tmp_path / "out"
    assert _read_json(str(out / "assets" / "gems" / "lang" / "zh_cn.json")) == {
        "item.gems.ruby": "红宝石",
        "item.gems.sapphire": "SAPPHIRE",
    }
    assert ("gems", ["Sapphire"]) in translator.calls
    backup = _read_json(str(out / "raw_content" / "gems_en_us.json"))
    assert backup == {"item.gems.sapphire": "Sapphire"}
    assert first.count("persisted") == 2

    second, translator = _run(config, RunMode.INCREMENTAL)
    assert translator.calls == []
    assert second.count("noop") == 2
    assert second.count("persisted") == 0


@pytest.mark.integration
def test_cancelled_run_writes_nothing(tmp_path, modpack):
    config = _config(tmp_path, modpack)
    token = CancellationToken()
    token.cancel()

    summary, translator = _run(config, cancel=token)

    assert summary.status == RUN_CANCELLED
    assert translator.calls == []
    assert not (tmp_path / "out").exists()


@pytest.mark.integration
def test_single_file_input(tmp_path, modpack):
    jar = str(modpack / "mods" / "gems.jar")
    config = _config(tmp_path, modpack, input_path=jar)

    summary, _ = _run(config)

    assert summary.status == RUN_COMPLETED
    assert [o.artifact_id for o in summary.outcomes] == ["gems/en_us.json"]


@pytest.mark.integration
def test_failing_jar_entry_keeps_sibling_outcomes(tmp_path):
    root = tmp_path / "in"
    os.makedirs(root)
    with zipfile.ZipFile(root / "two.jar", "w") as archive:
        archive.writestr("assets/alpha/lang/en_us.json", json.dumps({"a.name": "Alpha"}))
        archive.writestr("assets/beta/lang/en_us.json", json.dumps({"b.name": "Beta"}))
    _write(str(tmp_path / "out" / "assets" / "beta"), "not a directory")
    config = _config(tmp_path, root)

    summary, _ = _run(config)

    statuses = {o.artifact_id: o.status for o in summary.outcomes}
    assert statuses == {"alpha/en_us.json": "persisted", "beta/en_us.json": "error"}
    assert summary.status == RUN_COMPLETED_WITH_ERRORS
    assert _read_json(str(tmp_path / "out" / "assets" / "alpha" / "lang" / "zh_cn.json")) == {
        "a.name": "ALPHA"
    }
    assert (tmp_path / "out" / "pack.mcmeta").exists()


class RejectingTranslator:
    def translate_texts(self, texts, context_id, cancel=None):
        raise ParserError("JsonListParser: invalid JSON")


@pytest.mark.integration
def test_failed_quest_batches_are_reported_as_drops(tmp_path, modpack):
    quest = str(modpack / "config" / "ftbquests" / "quests" / "chapters" / "start.snbt")
    config = _config(tmp_path, modpack, input_path=quest)

    summary, _ = _run(config, translator=RejectingTranslator())

    assert summary.status == RUN_COMPLETED_WITH_DROPS
    assert [(o.artifact_id, o.status, o.dropped) for o in summary.outcomes] == [
        ("start", "persisted", 2)
    ]
    assert summary.to_dict()["droppedEntries"] == 2
    assert summary.failed_batches == 1


class CancelAfterWrite(PipelineObserver):
    def __init__(self, token):
        self.token = token

    def on_event(self, level, message):
        if message.startswith("SNBT translation done"):
            self.token.cancel()


@pytest.mark.integration
def test_cancel_after_last_write_still_completes(tmp_path, modpack):
    quest = str(modpack / "config" / "ftbquests" / "quests" / "chapters" / "start.snbt")
    config = _config(tmp_path, modpack, input_path=quest)
    token = CancellationToken()
    runner = TranslationRunner(
        config, translator=FakeTranslator(), observer=CancelAfterWrite(token), cancel=token
    )
    try:
        summary = runner.run(config.input_path)
    finally:
        runner.close()

    assert token.is_cancelled()
    assert summary.status == RUN_COMPLETED
    assert summary.count("persisted") == 1
    assert (tmp_path / "out" / "pack.mcmeta").exists()


@pytest.fixture
def cli_env(monkeypatch):
    translator = FakeTranslator()
    monkeypatch.setattr(
        runner_module,
        "TextBatchTranslator",
        SimpleNamespace(from_config=lambda config, observer=None: translator),
    )
    monkeypatch.setattr(main_module.signal, "signal", lambda *args: None)
    return translator


@pytest.mark.integration
def test_cli_json_log_run(tmp_path, modpack, cli_env, capsys):
    out = tmp_path / "cli_out"
    code = main_module.main(
        [
            "--input", str(modpack / "resourcepacks"),
            "--output", str(out),
            "--config", str(tmp_path / "missing.yaml"),
            "--batch-size", "5",
            "--json-log",
        ]
    )

    assert code == 0
    stdout = capsys.readouterr().out
    finals = [
        json.loads(line[len("JSON_FINAL:") :])
        for line in stdout.splitlines()
        if line.startswith("JSON_FINAL:")
    ]
    assert finals and finals[0]["status"] == RUN_COMPLETED
    assert "JSON_OUTPUT_PATH:" in stdout
    assert "JSON_LOG:" in stdout
    assert (out / "assets" / "legacy" / "lang" / "zh_cn.lang").exists()
    assert cli_env.calls == [("legacy", ["Legacy Block"])]


@pytest.mark.integration
def test_cli_stop_flag_exits_130(tmp_path, modpack, cli_env):
    flag = tmp_path / "stop.flag"
    flag.write_text("1", encoding="utf-8")

    code = main_module.main(
        [
            "--input", str(modpack),
            "--output", str(tmp_path / "cli_out"),
            "--config", str(tmp_path / "missing.yaml"),
            "--stop-flag", str(flag),
        ]
    )

    assert code == 130
    assert cli_env.calls == []


@pytest.mark.integration
def test_cli_missing_input_returns_1(tmp_path, cli_env):
    code = main_module.main(
        ["--input", str(tmp_path / "nope"), "--config", str(tmp_path / "missing.yaml")]
    )
    assert code == 1


@pytest.mark.integration
def test_cli_invalid_config_returns_1(tmp_path, modpack, cli_env):
    config = tmp_path / "config.yaml"
    config.write_text("batch_size: lots\n", encoding="utf-8")

    code = main_module.main(["--input", str(modpack), "--config", str(config)])

    assert code == 1
