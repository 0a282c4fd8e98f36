"""mclang-translator entrypoint."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import traceback

from mclang_flow.pipelines.incremental import RunMode
from mclang_flow.pipelines.runner import RUN_CANCELLED, TranslationRunner
from mclang_flow.providers.base import ProviderError
from mclang_flow.providers.openai_compat import OpenAICompatProvider
from mclang_flow.providers.retry import RetryableTransport, RetryPolicy
from mclang_flow.registry.config_store import AppConfig, ConfigError, ConfigStore
from mclang_flow.utils.cancellation import CancellationToken, TranslationCancelled
from mclang_flow.utils.log_protocol import (
    JsonLogObserver,
    LoggingObserver,
    PipelineObserver,
    emit_error,
    emit_final,
    emit_output_path,
)

DEFAULT_CONFIG_PATH = "config.yaml"

logger = logging.getLogger("mclang")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mclang-translate",
        description="Translate Minecraft mod language files with an OpenAI-compatible API",
    )
    parser.add_argument("--input", help="Mod JAR, language file, quest file or directory")
    parser.add_argument("--output", help="Output resource pack directory")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML config file")
    parser.add_argument("--update", action="store_true", help="Incremental update of existing output")
    parser.add_argument("--api-key", dest="api_key", help="API key")
    parser.add_argument("--base-url", dest="base_url", help="API base URL")
    parser.add_argument("--model", help="Model name")
    parser.add_argument("--source-lang", dest="source_lang", help="Source language tag (e.g. en_us)")
    parser.add_argument("--target-lang", dest="target_lang", help="Target language tag (e.g. zh_cn)")
    parser.add_argument("--batch-size", dest="batch_size", type=int, help="Entries per request")
    parser.add_argument("--stop-flag", dest="stop_flag", help="Stop request marker file path")
    parser.add_argument("--json-log", dest="json_log", action="store_true", help="JSON line logs on stdout")
    parser.add_argument("--list-models", dest="list_models", action="store_true", help="List models and exit")
    parser.add_argument(
        "--no-skip-existing",
        dest="no_skip_existing",
        action="store_true",
        help="Retranslate files whose output already exists",
    )
    parser.add_argument(
        "--include-quests",
        dest="include_quests",
        action="store_true",
        help="Also translate FTB Quests .snbt files",
    )
    return parser


def _overrides_from_args(args: argparse.Namespace) -> dict:
    overrides = {
        "input_path": args.input,
        "output_path": args.output,
        "api_key": args.api_key,
        "base_url": args.base_url,
        "model": args.model,
        "source_lang": args.source_lang,
        "target_lang": args.target_lang,
        "batch_size": args.batch_size,
    }
    if args.no_skip_existing:
        overrides["skip_existing"] = False
    if args.include_quests:
        overrides["skip_quest"] = False
    return overrides


def list_models(config: AppConfig, cancel: CancellationToken) -> int:
    provider = OpenAICompatProvider(config.api_profile())
    transport = RetryableTransport(
        RetryPolicy(max_retries=0, base_delay=config.retry_delay),
        timeout=config.timeout,
    )
    try:
        models = provider.fetch_models(transport, cancel)
    finally:
        transport.close()
    for model in models:
        print(model)
    logger.info("Connection OK, %d models available", len(models))
    return 0


def run(
    config: AppConfig,
    mode: RunMode,
    observer: PipelineObserver,
    cancel: CancellationToken,
    json_log: bool = False,
) -> int:
    runner = TranslationRunner(config, observer=observer, cancel=cancel)
    try:
        if json_log:
            emit_output_path(os.path.abspath(config.output_path))
        summary = runner.run(config.input_path, mode)
    finally:
        runner.close()

    if json_log:
        emit_final(summary.to_dict())
    logger.info(
        "Run %s in %.1fs: %d persisted, %d skipped, %d errors, %d retries",
        summary.status,
        summary.total_time,
        summary.count("persisted"),
        summary.count("skipped"),
        summary.count("error"),
        summary.total_retries,
    )
    return 130 if summary.status == RUN_CANCELLED else 0


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr if args.json_log else sys.stdout,
    )

    cancel = CancellationToken(args.stop_flag)

    def _on_sigint(signum, frame):
        logger.warning("Stop requested, finishing in-flight work")
        cancel.cancel()

    signal.signal(signal.SIGINT, _on_sigint)

    observer: PipelineObserver = JsonLogObserver() if args.json_log else LoggingObserver(logger)
    try:
        config = ConfigStore(args.config).load_with_overrides(_overrides_from_args(args))
        if args.list_models:
            return list_models(config, cancel)
        if not config.input_path:
            print("[Error] No input path given (--input or input_path in config)")
            return 1
        if not os.path.exists(config.input_path):
            print(f"[Error] Input path not found: {config.input_path}")
            return 1
        mode = RunMode.INCREMENTAL if args.update else RunMode.FULL
        return run(config, mode, observer, cancel, args.json_log)
    except TranslationCancelled:
        logger.warning("Stop requested, nothing further was written")
        return 130
    except (ConfigError, ProviderError) as exc:
        if args.json_log:
            emit_error(str(exc), title="Translation Error")
        logger.error("%s", exc)
        return 1
    except Exception as exc:
        if args.json_log:
            emit_error(f"{exc}\n\n{traceback.format_exc()}", title="Translation Fatal Error")
        logger.error("Fatal error: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
