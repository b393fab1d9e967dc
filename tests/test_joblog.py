import re

from filemailer.joblog import JobLog, format_entry, format_value


def test_format_value_quoting():
    assert format_value("size", 1048576) == "1048576"
    assert format_value("url", "https://h/r.pdf?a=1&b=2") == "https://h/r.pdf?a=1&b=2"
    assert format_value("username", None) == "-"
    assert format_value("username", "") == '""'
    assert format_value("path", "/tmp/my file.pdf") == '"/tmp/my file.pdf"'
    assert format_value("error", "refused") == '"refused"'
    assert format_value("error", 'say "hi"') == '"say \\"hi\\""'


def test_format_entry_field_order():
    line = format_entry(
        "send_error",
        url="https://h/r.pdf",
        user_id=3,
        username="alice",
        stage="smtp",
        email="alice@example.com",
        error="connection refused",
    )
    assert line == (
        "user_id=3 username=alice email=alice@example.com url=https://h/r.pdf "
        'status=send_error stage=smtp error="connection refused"'
    )


def test_unauthorized_entry_carries_url_only():
    line = format_entry("unauthorized", url="https://h/x", user_id=None, username=None)
    assert line == "user_id=- username=- url=https://h/x status=unauthorized"


def test_record_writes_one_line_per_call(tmp_path):
    path = tmp_path / "logs" / "send.log"
    log = JobLog(path)
    try:
        log.record("received", url="https://h/r.pdf", user_id=3, username="alice")
        log.record("downloaded", url="https://h/r.pdf", user_id=3, username="alice", size=10, path="/tmp/d/r.pdf")
    finally:
        log.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert re.match(r"^\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} user_id=3 ", lines[0])
    assert lines[0].endswith("status=received")
    assert lines[1].endswith("status=downloaded size=10 path=/tmp/d/r.pdf")


def test_record_appends_to_existing_file(tmp_path):
    path = tmp_path / "send.log"
    path.write_text("previous\n", encoding="utf-8")
    log = JobLog(path)
    log.record("sent", url="u", user_id=1, username="a", email="a@x", size=1)
    log.close()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "previous"
    assert "status=sent" in lines[1]


def test_job_lines_do_not_propagate(list_handler, caplog):
    log = JobLog(handler=list_handler)
    with caplog.at_level("INFO"):
        log.record("received", url="u", user_id=1, username="a")
    assert len(list_handler.lines) == 1
    assert "status=received" not in caplog.text
