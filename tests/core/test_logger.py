from core.logger import AppLogger


def test_logger_emits_messages(app):
    logger = AppLogger()
    received = []
    logger.message_logged.connect(lambda cat, msg: received.append((cat, msg)))
    logger.log("STATE", "restored 3 parameters")
    assert len(received) == 1
    assert received[0] == ("STATE", "restored 3 parameters")


def test_logger_categories(app):
    logger = AppLogger()
    received = []
    logger.message_logged.connect(lambda cat, msg: received.append(cat))
    logger.state("restored")
    logger.preset("added preset")
    logger.file("saved bank")
    logger.general("Ready")
    assert received == ["STATE", "PRESET", "FILE", "GENERAL"]


def test_logger_prints_category_prefix(app, capsys):
    AppLogger().file("saved program (64 bytes)")
    assert "[FILE] saved program (64 bytes)" in capsys.readouterr().out
