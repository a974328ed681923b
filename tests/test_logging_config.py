from loguru import logger

from fetchguard.logging_config import setup_logging


def test_file_handler_receives_debug_records(tmp_path):
    log_file = tmp_path / "logs" / "fetchguard.log"
    setup_logging(verbose=False, log_file=log_file)
    try:
        logger.debug("arbiter unreachable, failing open")
    finally:
        # Removing handlers drains the enqueued file sink
        logger.remove()

    content = log_file.read_text()
    assert "arbiter unreachable, failing open" in content
    assert "DEBUG" in content, "File sink logs at debug regardless of verbosity"


def test_json_logs_are_serialized(capsys):
    setup_logging(json_logs=True)
    try:
        logger.info("gate check complete")
    finally:
        logger.remove()

    out = capsys.readouterr().out
    assert '"message": "gate check complete"' in out
